"""fractal.py

Command line front end for the pattern weaver.

Run:
  python fractal.py render fractal.png
  python fractal.py render out.png --pattern seed.json --iterations 9 --decay 0.7
  python fractal.py validate seed.json
  python fractal.py init seed.json
"""

import argparse
import logging
import os
import sys
import time
from logging.handlers import RotatingFileHandler

from fractal_engine import (
    APP_NAME,
    DEFAULT_DECAY,
    DEFAULT_ITERATIONS,
    MAX_RECOMMENDED_ITERATIONS,
    VERSION,
    PatternError,
    classic_pattern,
    generate,
    validate_pattern,
)
from pattern_io import export_image, load_pattern, save_pattern

LOG_FILE_NAME = "fractal_weaver.log"


# --- LOGGING SETUP ---
def default_log_file():
    # Determine log directory based on execution mode (frozen exe vs. script)
    if getattr(sys, 'frozen', False):
        log_dir = os.path.dirname(sys.executable)
    else:
        log_dir = os.path.dirname(os.path.abspath(__file__))
    return os.path.join(log_dir, LOG_FILE_NAME)


def setup_logging(log_file=None, verbose=False):
    """Configures a rotating file logger for the application."""
    logger = logging.getLogger(APP_NAME)
    if logger.hasHandlers():
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()

    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    log_file = log_file or default_log_file()

    # Use a rotating file handler to prevent log files from growing indefinitely
    log_formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s', datefmt='%Y-%m-%d %H:%M:%S')
    handler = RotatingFileHandler(log_file, maxBytes=5*1024*1024, backupCount=2) # 5MB file size limit
    handler.setFormatter(log_formatter)
    logger.addHandler(handler)

    # Also log unhandled exceptions
    def handle_exception(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return
        logger.error("Uncaught exception:", exc_info=(exc_type, exc_value, exc_traceback))

    sys.excepthook = handle_exception

    return logger


# --- COMMANDS ---
def build_argparser():
    p = argparse.ArgumentParser(
        prog="fractal.py",
        description=f"{APP_NAME} v{VERSION}: grow a 2x2 seed pattern into a self-similar image.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    p.add_argument("--log-file", default=None, help=f"Log file path. Default: {LOG_FILE_NAME} next to this script.")
    p.add_argument("--verbose", action="store_true", help="Log at DEBUG level.")

    sub = p.add_subparsers(dest="cmd", required=True)

    pr = sub.add_parser("render", help="Generate the fractal and save it as an image.")
    pr.add_argument("output", help="Image path (.png keeps alpha, .jpg drops it).")
    pr.add_argument("--pattern", default=None, help="Seed pattern JSON. Default: the built-in classic seed.")
    pr.add_argument(
        "--iterations",
        type=int,
        default=DEFAULT_ITERATIONS,
        help=f"Subdivision depth, output side is 2**N. Range 1-{MAX_RECOMMENDED_ITERATIONS}. Default: {DEFAULT_ITERATIONS}.",
    )
    pr.add_argument("--decay", type=float, default=DEFAULT_DECAY, help=f"Per-level blend decay in [0, 1]. Default: {DEFAULT_DECAY}.")
    pr.add_argument(
        "--force-depth",
        action="store_true",
        help=f"Allow --iterations above {MAX_RECOMMENDED_ITERATIONS} (memory grows as 4**N).",
    )

    pv = sub.add_parser("validate", help="Check a seed pattern JSON file and print a summary.")
    pv.add_argument("pattern", help="Seed pattern JSON.")

    pi = sub.add_parser("init", help="Write the built-in classic seed pattern as JSON.")
    pi.add_argument("output", help="Where to write the pattern JSON.")

    return p


def cmd_render(logger, output_path, pattern_path, iterations, decay, force_depth):
    if iterations > MAX_RECOMMENDED_ITERATIONS and not force_depth:
        raise ValueError(
            f"iterations {iterations} exceeds {MAX_RECOMMENDED_ITERATIONS}; pass --force-depth to render anyway"
        )
    if pattern_path:
        pattern = load_pattern(pattern_path)
        logger.info(f"Loaded pattern from {pattern_path}")
    else:
        pattern = classic_pattern()

    grid = generate(pattern, iterations, decay)
    export_image(grid, output_path)
    print(f"Wrote {grid.shape[1]}x{grid.shape[0]} image to {output_path}")


def cmd_validate(pattern_path):
    pattern = load_pattern(pattern_path)
    validate_pattern(pattern)
    print(f"{pattern_path}: ok")
    for (row, col), pixel in pattern.cells():
        r, g, b, a = pixel.color.channels()
        print(f"  ({row},{col}) color=({r:g}, {g:g}, {b:g}, {a:g}) perm={list(pixel.perm.mapping)}")


def cmd_init(output_path):
    save_pattern(classic_pattern(), output_path)
    print(f"Wrote classic pattern to {output_path}")


def main(argv=None):
    args = build_argparser().parse_args(argv)
    logger = setup_logging(args.log_file, args.verbose)
    logger.info(f"--- {APP_NAME} v{VERSION} Started: {args.cmd} ---")
    start_time = time.time()

    try:
        if args.cmd == "render":
            cmd_render(logger, args.output, args.pattern, args.iterations, args.decay, args.force_depth)
        elif args.cmd == "validate":
            cmd_validate(args.pattern)
        elif args.cmd == "init":
            cmd_init(args.output)
        else:
            raise AssertionError("unreachable")
    except PatternError as e:
        logger.error(f"Pattern rejected: {e}")
        print(f"Pattern error: {e}", file=sys.stderr)
        return 2
    except ValueError as e:
        logger.error(f"Invalid parameters: {e}")
        print(f"Parameter error: {e}", file=sys.stderr)
        return 2
    except OSError as e:
        logger.error(f"File operation failed: {e}", exc_info=True)
        print(f"File error: {e}", file=sys.stderr)
        return 2
    finally:
        logger.info(f"Finished in {time.time() - start_time:.2f} seconds.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
