"""
Command line interface for subimage search.

Loads a main image and a smaller search image, lists the placements where
the search image appears, and optionally exports an overlay, a CSV of the
matches and a JSON document.

Usage examples
--------------

Find up to 10 placements differing by at most 1%::

    python -m subimage_search.cli screenshot.png button.png

Exact matches only, with an overlay and a CSV report::

    python -m subimage_search.cli map.png tile.png --max-diff 0 \\
        --overlay out/overlay.png --csv out/matches.csv
"""

from __future__ import annotations

import argparse
import csv
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from PIL import Image, UnidentifiedImageError

from .config import DEFAULT_MAX_RESULTS, MAX_RESULTS_LIMIT, SearchConfig
from .overlay import render_matches, save_overlay
from .pixel_buffer import PixelBuffer
from .results import SearchResults
from .search import DimensionError, find_subimage

logger = logging.getLogger("subimage_search")


def _setup_logging(debug: bool = False, quiet: bool = False):
    if debug:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


class _ProgressLogger:
    """Logs progress each time another ``step`` of the scan completes."""

    def __init__(self, step: float = 0.1):
        self.step = step
        self._next = step

    def __call__(self, fraction: float) -> None:
        if fraction >= self._next:
            logger.info("Progress: %d%%", int(fraction * 100))
            while self._next <= fraction:
                self._next += self.step


def _load(path: Path, role: str) -> Optional[PixelBuffer]:
    try:
        return PixelBuffer.open(path)
    except (OSError, UnidentifiedImageError, Image.DecompressionBombError) as exc:
        logger.error("Could not load %s image %s: %s", role, path, exc)
        return None


def _write_matches_csv(results: SearchResults, path: Path) -> None:
    fieldnames = ["rank", "x", "y", "width", "height", "tse", "mse", "percent"]
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="") as csvfile:
        writer = csv.DictWriter(csvfile, fieldnames=fieldnames)
        writer.writeheader()
        for rank, match in enumerate(results, start=1):
            writer.writerow({
                "rank": rank,
                "x": match.x,
                "y": match.y,
                "width": results.template_width,
                "height": results.template_height,
                "tse": match.tse,
                "mse": f"{match.mse:.8f}",
                "percent": f"{match.percent:.4f}",
            })
    logger.info("Matches written to %s", path)


def _write_json(results: SearchResults, config: SearchConfig, path: Path) -> None:
    document = {"settings": config.to_dict(), **results.to_dict()}
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w") as f:
        json.dump(document, f, indent=2)
    logger.info("JSON written to %s", path)


def _print_summary(results: SearchResults, config: SearchConfig) -> None:
    print(f"Search image: {results.template_width}x{results.template_height}, "
          f"main image: {results.main_width}x{results.main_height}")
    print(config.summary())
    if not len(results):
        print("No matches found.")
        return
    print(f"{len(results)} match(es):")
    for rank, match in enumerate(results, start=1):
        print(f"  #{rank}: ({match.x}, {match.y}) difference {match.percent:.4f}%")
    if results.has_overflown():
        print(f"More matches were found; only the best {config.max_results} are listed.")


def _max_results(value: str) -> int:
    count = int(value)
    if not 0 <= count <= MAX_RESULTS_LIMIT:
        raise argparse.ArgumentTypeError(f"must be between 0 and {MAX_RESULTS_LIMIT}")
    return count


def _max_diff(value: str) -> float:
    percent = float(value)
    if not 0.0 <= percent <= 100.0:
        raise argparse.ArgumentTypeError("must be between 0 and 100")
    return percent


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Find placements of a search image inside a main image.",
    )
    parser.add_argument("main", type=Path, help="Image to search in.")
    parser.add_argument("search", type=Path, help="Image to look for.")
    parser.add_argument(
        "--max-diff",
        type=_max_diff,
        default=1.0,
        help="Maximum difference as mean squared error in percent "
             "(0 = exact match, 100 = anything; default: 1).",
    )
    parser.add_argument(
        "--max-results",
        type=_max_results,
        default=DEFAULT_MAX_RESULTS,
        help=f"Maximum number of matches to keep (default: {DEFAULT_MAX_RESULTS}).",
    )
    parser.add_argument("--overlay", type=Path, help="Write an RGB overlay of the matches.")
    parser.add_argument("--csv", type=Path, help="Write the matches to a CSV file.")
    parser.add_argument("--json", type=Path, help="Write settings and matches as JSON.")
    parser.add_argument("--debug", action="store_true", help="Enable per-row debug logging.")
    parser.add_argument("--quiet", action="store_true", help="Only log warnings and errors.")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    _setup_logging(args.debug, args.quiet)

    config = SearchConfig.from_percent(args.max_diff, args.max_results)

    main_image = _load(args.main, "main")
    search_image = _load(args.search, "search")
    if main_image is None or search_image is None:
        return 1

    logger.info(
        "Searching %s (%dx%d) for %s (%dx%d)",
        args.main.name, main_image.width, main_image.height,
        args.search.name, search_image.width, search_image.height,
    )

    try:
        results = find_subimage(
            main_image,
            search_image,
            _ProgressLogger(),
            max_mse=config.max_mse,
            max_results=config.max_results,
        )
    except DimensionError as exc:
        logger.error("%s: %s does not fit inside %s", exc, args.search.name, args.main.name)
        return 1

    _print_summary(results, config)

    if args.overlay:
        save_overlay(args.overlay, render_matches(main_image, results))
    if args.csv:
        _write_matches_csv(results, args.csv)
    if args.json:
        _write_json(results, config, args.json)
    return 0


if __name__ == "__main__":
    sys.exit(main())
