import json
import logging
import os
import sys
from logging.handlers import RotatingFileHandler

import pytest
from PIL import Image

import fractal
import fractal_engine
from fractal import main, setup_logging
from fractal_engine import APP_NAME, classic_pattern
from pattern_io import pattern_to_dict

_EXAMPLE_DIR = os.path.join(os.path.dirname(__file__), "example")


@pytest.fixture(autouse=True)
def _isolate_logging(monkeypatch):
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)
    yield
    logger = logging.getLogger(APP_NAME)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


@pytest.fixture
def log_args(tmp_path):
    return ["--log-file", str(tmp_path / "weaver.log")]


class TestLogging:
    def test_single_rotating_handler(self, tmp_path) -> None:
        log_file = str(tmp_path / "app.log")
        setup_logging(log_file)
        logger = setup_logging(log_file)
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0], RotatingFileHandler)
        assert logger.level == logging.INFO

    def test_verbose(self, tmp_path) -> None:
        logger = setup_logging(str(tmp_path / "app.log"), verbose=True)
        assert logger.level == logging.DEBUG

    def test_excepthook_logs(self, tmp_path) -> None:
        log_file = tmp_path / "app.log"
        setup_logging(str(log_file))
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            sys.excepthook(*sys.exc_info())
        logging.getLogger(APP_NAME).handlers[0].flush()
        text = log_file.read_text(encoding="utf-8")
        assert "Uncaught exception" in text
        assert "boom" in text


class TestCLI:
    def test_render_default_pattern(self, tmp_path, log_args, capsys) -> None:
        out = str(tmp_path / "fractal.png")
        assert main(log_args + ["render", out, "--iterations", "4"]) == 0
        with Image.open(out) as img:
            assert img.size == (16, 16)
        assert "Wrote 16x16 image" in capsys.readouterr().out

    def test_render_with_pattern_file(self, tmp_path, log_args) -> None:
        out = str(tmp_path / "mirror.png")
        pattern = os.path.join(_EXAMPLE_DIR, "mirror.json")
        assert main(log_args + ["render", out, "--pattern", pattern, "--iterations", "3", "--decay", "0.8"]) == 0
        with Image.open(out) as img:
            assert img.size == (8, 8)

    def test_render_writes_log(self, tmp_path) -> None:
        log_file = tmp_path / "weaver.log"
        out = str(tmp_path / "fractal.png")
        assert main(["--log-file", str(log_file), "render", out, "--iterations", "2"]) == 0
        text = log_file.read_text(encoding="utf-8")
        assert "Started: render" in text
        assert "Generating fractal: 4x4" in text
        assert "Image export successful." in text

    def test_init_then_validate(self, tmp_path, log_args, capsys) -> None:
        path = str(tmp_path / "seed.json")
        assert main(log_args + ["init", path]) == 0
        with open(path, encoding="utf-8") as f:
            assert json.load(f) == pattern_to_dict(classic_pattern())

        assert main(log_args + ["validate", path]) == 0
        out = capsys.readouterr().out
        assert f"{path}: ok" in out
        assert "(1,1)" in out

    def test_invalid_pattern_returns_error_code(self, tmp_path, log_args, capsys) -> None:
        record = pattern_to_dict(classic_pattern())
        record["pixels"][0][1]["perm"] = [[0, 0], [0, 0], [1, 0], [1, 1]]
        path = tmp_path / "dup.json"
        path.write_text(json.dumps(record), encoding="utf-8")

        assert main(log_args + ["validate", str(path)]) == 2
        assert "Pattern error" in capsys.readouterr().err
        assert main(log_args + ["render", str(tmp_path / "x.png"), "--pattern", str(path), "--iterations", "2"]) == 2

    def test_malformed_pattern_returns_error_code(self, tmp_path, log_args) -> None:
        path = tmp_path / "bad.json"
        path.write_text('{"pixels": []}', encoding="utf-8")
        assert main(log_args + ["validate", str(path)]) == 2

    def test_missing_file_returns_error_code(self, tmp_path, log_args, capsys) -> None:
        assert main(log_args + ["validate", str(tmp_path / "missing.json")]) == 2
        assert "File error" in capsys.readouterr().err

    def test_force_depth_renders_past_ceiling(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setattr(fractal, "MAX_RECOMMENDED_ITERATIONS", 2)
        monkeypatch.setattr(fractal_engine, "MAX_RECOMMENDED_ITERATIONS", 2)
        log_file = tmp_path / "weaver.log"
        out = tmp_path / "deep.png"

        args = ["--log-file", str(log_file), "render", str(out), "--iterations", "3"]
        assert main(args) == 2
        assert not out.exists()

        assert main(args + ["--force-depth"]) == 0
        with Image.open(out) as img:
            assert img.size == (8, 8)
        text = log_file.read_text(encoding="utf-8")
        assert "WARNING - Depth 3 needs 64 cells" in text

    @pytest.mark.parametrize(
        "extra",
        [
            ["--iterations", "0"],
            ["--iterations", "12"],
            ["--decay", "1.5"],
            ["--decay", "-0.5"],
        ],
    )
    def test_bad_parameters_return_error_code(self, tmp_path, log_args, capsys, extra) -> None:
        out = tmp_path / "x.png"
        assert main(log_args + ["render", str(out)] + extra) == 2
        assert "Parameter error" in capsys.readouterr().err
        assert not out.exists()
