"""Core of the pattern weaver: symmetries, colors, seed patterns and the
expansion algorithm that grows a 2x2 seed into a 2**n x 2**n color grid."""

from __future__ import annotations

import logging
import numbers
import time
from dataclasses import dataclass, replace

import numpy as np

# --- CONSTANTS & CONFIG ---
APP_NAME = "Fractal Pattern Weaver"
VERSION = "1.0"
DEFAULT_ITERATIONS = 11
DEFAULT_DECAY = 0.5
MAX_RECOMMENDED_ITERATIONS = 11  # 4**11 cells, ~64 MB of float32 colors

# Single precision keeps quantized output identical to the reference renders.
DTYPE = np.float32

CELLS = ((0, 0), (0, 1), (1, 0), (1, 1))

logger = logging.getLogger(APP_NAME)


def cell_index(coord):
    """Flatten a (row, col) cell coordinate to 0..3."""
    row, col = coord
    return row * 2 + col


# --- SYMMETRY ---


@dataclass(frozen=True)
class Symmetry:
    """Permutation of the cells of a 2x2 grid.

    ``mapping[i]`` is the destination (row, col) of source cell ``i``, with
    sources in row-major order. Values built from external data are not
    checked here; run the pattern through ``validate_pattern`` first.
    """

    mapping: tuple[tuple[int, int], ...]

    @classmethod
    def identity(cls) -> Symmetry:
        return cls(((0, 0), (0, 1), (1, 0), (1, 1)))

    @classmethod
    def rotate_90(cls) -> Symmetry:
        return cls(((0, 1), (1, 1), (0, 0), (1, 0)))

    @classmethod
    def rotate_270(cls) -> Symmetry:
        return cls(((1, 0), (0, 0), (1, 1), (0, 1)))

    @classmethod
    def flip_h(cls) -> Symmetry:
        return cls(((0, 1), (0, 0), (1, 1), (1, 0)))

    @classmethod
    def flip_v(cls) -> Symmetry:
        return cls(((1, 0), (1, 1), (0, 0), (0, 1)))

    def compose(self, other: Symmetry) -> Symmetry:
        """Apply ``self`` first, then ``other``."""
        return Symmetry(tuple(other.mapping[cell_index(dest)] for dest in self.mapping))

    def apply(self, grid):
        """Return a new 2x2 grid with the element of source cell i moved to ``mapping[i]``."""
        result = [[None, None], [None, None]]
        for i, (to_y, to_x) in enumerate(self.mapping):
            from_y, from_x = divmod(i, 2)
            result[to_y][to_x] = grid[from_y][from_x]
        return (tuple(result[0]), tuple(result[1]))

    def indices(self) -> tuple[int, ...]:
        return tuple(cell_index(dest) for dest in self.mapping)


# --- COLOR ---


@dataclass(frozen=True)
class Color:
    r: float
    g: float
    b: float
    a: float

    def channels(self) -> tuple[float, float, float, float]:
        return (self.r, self.g, self.b, self.a)

    def opaque(self) -> Color:
        return replace(self, a=1.0)

    def blend(self, other: Color, t: float) -> Color:
        """Linear interpolation towards ``other``. ``t`` is not clamped."""
        return Color(
            self.r + (other.r - self.r) * t,
            self.g + (other.g - self.g) * t,
            self.b + (other.b - self.b) * t,
            self.a + (other.a - self.a) * t,
        )

    def to_rgba8(self) -> tuple[int, int, int, int]:
        return tuple(int(v) for v in quantize(np.array(self.channels(), dtype=DTYPE)))


def quantize(colors):
    """Scale channels by 255 and truncate to uint8 (0.999 -> 254, not 255).

    Out-of-range values saturate at 0 and 255 before truncation.
    """
    scaled = np.asarray(colors, dtype=DTYPE) * DTYPE(255.0)
    return np.clip(scaled, 0.0, 255.0).astype(np.uint8)


# --- PATTERN ---


@dataclass(frozen=True)
class Pixel:
    color: Color
    perm: Symmetry


@dataclass(frozen=True)
class Pattern:
    """The 2x2 seed: ``pixels[row][col]``."""

    pixels: tuple[tuple[Pixel, Pixel], tuple[Pixel, Pixel]]

    def cells(self):
        """Yield ``((row, col), pixel)`` in row-major order."""
        for row, col in CELLS:
            yield (row, col), self.pixels[row][col]

    def color_array(self):
        return np.array([p.color.channels() for _, p in self.cells()], dtype=DTYPE)

    def symmetry_array(self):
        return np.array([p.perm.indices() for _, p in self.cells()], dtype=np.intp)


def classic_pattern() -> Pattern:
    """Seed used by the reference renders."""
    return Pattern((
        (
            Pixel(Color(0.2, 0.4, 0.6, 1.0), Symmetry.identity()),
            Pixel(Color(0.0, 0.0, 0.0, 0.1), Symmetry.flip_h()),
        ),
        (
            Pixel(Color(0.6, 0.4, 0.2, 1.0), Symmetry.rotate_270()),
            Pixel(Color(0.0, 0.0, 0.0, 1.0), Symmetry.rotate_90()),
        ),
    ))


# --- ERRORS / VALIDATION ---


class PatternError(ValueError):
    pass


class PatternValidationError(PatternError):
    def __init__(self, message, cell):
        super().__init__(f"pixel {cell}: {message}")
        self.cell = cell


class ColorRangeError(PatternValidationError):
    pass


class CoordinateRangeError(PatternValidationError):
    pass


class DuplicateMappingError(PatternValidationError):
    pass


class IncompleteMappingError(PatternValidationError):
    pass


def validate_pattern(pattern: Pattern) -> None:
    """Raise the first violated rule as a ``PatternValidationError`` subclass.

    Rules are checked across the whole pattern in this order: color range,
    coordinate range, duplicate destinations, complete coverage.
    """
    for cell, pixel in pattern.cells():
        for name, value in zip("rgba", pixel.color.channels()):
            if not 0.0 <= value <= 1.0:
                raise ColorRangeError(f"channel {name}={value} is outside [0, 1]", cell)

    for cell, pixel in pattern.cells():
        for coord in pixel.perm.mapping:
            if len(coord) != 2:
                raise CoordinateRangeError(f"mapping entry {tuple(coord)} is not a (row, col) pair", cell)
            if any(c not in (0, 1) for c in coord):
                raise CoordinateRangeError(f"mapping coordinate {tuple(coord)} is outside the 2x2 grid", cell)

    for cell, pixel in pattern.cells():
        seen = set()
        for coord in pixel.perm.mapping:
            coord = tuple(coord)
            if coord in seen:
                raise DuplicateMappingError(f"more than one source cell maps to {coord}", cell)
            seen.add(coord)

    for cell, pixel in pattern.cells():
        covered = {tuple(coord) for coord in pixel.perm.mapping}
        missing = [coord for coord in CELLS if coord not in covered]
        if missing:
            raise IncompleteMappingError(f"mapping never reaches {missing}", cell)
        if len(pixel.perm.mapping) != len(CELLS):
            raise IncompleteMappingError(f"mapping has {len(pixel.perm.mapping)} entries, expected 4", cell)


# --- GENERATOR ---


def _unblock(blocks):
    """Lay out per-cell 2x2 blocks (s, s, 4, k) as a (2s, 2s, k) grid."""
    size = blocks.shape[0]
    depth = blocks.shape[-1]
    blocks = blocks.reshape(size, size, 2, 2, depth)
    return blocks.transpose(0, 2, 1, 3, 4).reshape(size * 2, size * 2, depth)


def _expand(colors, syms, seed_colors, seed_syms, blend, final_step):
    """Grow every cell of the current level into its 2x2 sub-block.

    ``syms`` holds each cell's accumulated symmetry as destination indices.
    The permuted seed at destination d comes from source ``argsort(sym)[d]``.
    """
    alpha = colors[..., 3]
    parent = colors.copy()
    parent[..., 3] = 1.0
    parent = parent[:, :, np.newaxis, :]

    sources = np.argsort(syms, axis=-1)
    sub_colors = seed_colors[sources]
    one = DTYPE(1.0)
    factor = one - (one - blend) * alpha
    new_colors = _unblock(parent + (sub_colors - parent) * factor[:, :, np.newaxis, np.newaxis])

    size = colors.shape[0] * 2
    if final_step:
        # Nothing reads the symmetries past the last level.
        identity = np.array(Symmetry.identity().indices(), dtype=np.intp)
        return new_colors, np.broadcast_to(identity, (size, size, 4))

    sub_syms = seed_syms[sources]
    lookup = np.broadcast_to(syms[:, :, np.newaxis, :], sub_syms.shape)
    return new_colors, _unblock(np.take_along_axis(sub_syms, lookup, axis=-1))


def generate(pattern: Pattern, iterations: int, decay: float):
    """Render ``pattern`` to a ``(2**iterations, 2**iterations, 4)`` float32 grid.

    Each level multiplies the running blend weight by ``decay``. A cell with
    alpha ``a`` mixes its opaque color towards its permuted sub-pattern with
    factor ``1 - (1 - blend) * a``, and hands down its symmetry composed with
    the sub-pixel's own.
    """
    if isinstance(iterations, bool) or not isinstance(iterations, numbers.Integral) or iterations < 1:
        raise ValueError(f"iterations must be an integer >= 1, got {iterations!r}")
    iterations = int(iterations)
    if not (0.0 <= decay <= 1.0):
        raise ValueError(f"decay must be within [0, 1], got {decay!r}")
    validate_pattern(pattern)

    if iterations > MAX_RECOMMENDED_ITERATIONS:
        cells = 4 ** iterations
        logger.warning(f"Depth {iterations} needs {cells:,} cells; memory use grows as 4**n.")

    final_size = 1 << iterations
    logger.info(f"Generating fractal: {final_size}x{final_size}, Iter: {iterations}, Decay: {decay:.3f}")
    start_time = time.time()

    seed_colors = pattern.color_array()
    seed_syms = pattern.symmetry_array()
    colors = seed_colors.reshape(2, 2, 4).copy()
    syms = seed_syms.reshape(2, 2, 4)

    blend = DTYPE(1.0)
    current_size = 2
    while current_size < final_size:
        blend = blend * DTYPE(decay)
        colors, syms = _expand(
            colors, syms, seed_colors, seed_syms, blend, final_step=current_size * 2 == final_size
        )
        current_size *= 2

    logger.info(f"Generation finished in {time.time() - start_time:.2f} seconds.")
    return colors
