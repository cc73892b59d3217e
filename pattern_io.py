"""JSON persistence for seed patterns and image export of generated grids."""

from __future__ import annotations

import json
import logging
import os
from typing import Any

from PIL import Image

from fractal_engine import APP_NAME, Color, Pattern, PatternError, Pixel, Symmetry, quantize

logger = logging.getLogger(APP_NAME)


class PatternParseError(PatternError):
    pass


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise PatternParseError(msg)


def _is_number(x: Any) -> bool:
    return isinstance(x, (int, float)) and not isinstance(x, bool)


def _is_int(x: Any) -> bool:
    return isinstance(x, int) and not isinstance(x, bool)


def _parse_color(x: Any, path: str) -> Color:
    _require(isinstance(x, list) and len(x) == 4, f"{path} must be an array of 4 numbers [r, g, b, a]")
    for i, v in enumerate(x):
        _require(_is_number(v), f"{path}[{i}] must be a number")
    return Color(*(float(v) for v in x))


def _parse_perm(x: Any, path: str) -> Symmetry:
    # Entry count, ranges and bijection are judged by validate_pattern.
    _require(isinstance(x, list), f"{path} must be an array of [row, col] pairs")
    mapping = []
    for i, pair in enumerate(x):
        _require(
            isinstance(pair, list) and len(pair) == 2 and all(_is_int(c) for c in pair),
            f"{path}[{i}] must be a pair of integers [row, col]",
        )
        mapping.append((pair[0], pair[1]))
    return Symmetry(tuple(mapping))


def pattern_from_dict(obj: Any) -> Pattern:
    """Build a Pattern from its persisted record. Checks shape only."""
    _require(isinstance(obj, dict), "pattern must be an object")
    rows = obj.get("pixels")
    _require(
        isinstance(rows, list) and len(rows) == 2 and all(isinstance(r, list) and len(r) == 2 for r in rows),
        "pixels must be a 2x2 array",
    )
    parsed = []
    for y, row in enumerate(rows):
        cells = []
        for x, cell in enumerate(row):
            path = f"pixels[{y}][{x}]"
            _require(isinstance(cell, dict), f"{path} must be an object")
            _require("color" in cell, f"{path}.color is required")
            _require("perm" in cell, f"{path}.perm is required")
            cells.append(Pixel(_parse_color(cell["color"], f"{path}.color"), _parse_perm(cell["perm"], f"{path}.perm")))
        parsed.append(tuple(cells))
    return Pattern(tuple(parsed))


def pattern_to_dict(pattern: Pattern) -> dict[str, Any]:
    return {
        "pixels": [
            [
                {
                    "color": list(pixel.color.channels()),
                    "perm": [list(coord) for coord in pixel.perm.mapping],
                }
                for pixel in row
            ]
            for row in pattern.pixels
        ]
    }


def _ensure_parent_dir(path: str) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)) or ".", exist_ok=True)


def load_pattern(path: str) -> Pattern:
    with open(path, encoding="utf-8") as f:
        try:
            obj = json.load(f)
        except json.JSONDecodeError as e:
            raise PatternParseError(f"Invalid JSON in {path}: {e}") from e
    return pattern_from_dict(obj)


def save_pattern(pattern: Pattern, path: str) -> None:
    _ensure_parent_dir(path)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(pattern_to_dict(pattern), f, indent=2)
        f.write("\n")
    logger.info(f"Pattern saved to {path}")


def to_image(grid) -> Image.Image:
    """Quantize a generated grid (row-major, RGBA floats) into a Pillow image."""
    return Image.fromarray(quantize(grid))


def export_image(grid, path: str) -> None:
    """Save a generated grid; JPEG output drops the alpha channel."""
    logger.info(f"Exporting image to {path}...")
    _ensure_parent_dir(path)
    img = to_image(grid)
    # For JPEG, we must convert to RGB as it doesn't support alpha
    if path.lower().endswith((".jpg", ".jpeg")):
        img = img.convert("RGB")
    img.save(path, quality=95)
    logger.info("Image export successful.")
