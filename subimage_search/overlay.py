"""Draw search results on top of the main image.

Produces an inspection-friendly RGB image: the main image composited on a
light background, with one rectangle per match.  The best match is drawn
last so it stays visible where matches overlap.
"""

import logging
from pathlib import Path
from typing import Tuple, Union

import cv2
import numpy as np
from PIL import Image

from .pixel_buffer import PixelBuffer
from .results import SearchResults

logger = logging.getLogger(__name__)

MATCH_COLOR = (255, 0, 0)
BEST_MATCH_COLOR = (0, 200, 0)
BACKGROUND_GREY = 220.0


def _composite_rgb(pixels: np.ndarray) -> np.ndarray:
    """Flatten RGBA onto a light grey background."""
    alpha = pixels[:, :, 3:4].astype(np.float32) / 255.0
    rgb = pixels[:, :, :3].astype(np.float32)
    bg = np.full_like(rgb, BACKGROUND_GREY)
    return (rgb * alpha + bg * (1 - alpha)).astype(np.uint8)


def render_matches(
    main: PixelBuffer,
    results: SearchResults,
    color: Tuple[int, int, int] = MATCH_COLOR,
    best_color: Tuple[int, int, int] = BEST_MATCH_COLOR,
    thickness: int = 1,
    label: bool = True,
) -> np.ndarray:
    """Render match rectangles over the main image.

    Args:
        main: The image that was searched.
        results: Results of searching in ``main``.
        color: RGB colour for ordinary matches.
        best_color: RGB colour for the best match.
        thickness: Rectangle line width in pixels.
        label: Annotate each rectangle with its rank and difference.

    Returns:
        RGB uint8 array of shape (H, W, 3).
    """
    if (results.main_width, results.main_height) != main.size:
        raise ValueError(
            f"Results were computed for a {results.main_width}x{results.main_height} "
            f"image, got {main.width}x{main.height}"
        )

    canvas = np.ascontiguousarray(_composite_rgb(main.pixels))
    tw, th = results.template_width, results.template_height

    matches = results.matches
    for rank in range(len(matches), 0, -1):
        match = matches[rank - 1]
        rect_color = best_color if rank == 1 else color
        cv2.rectangle(
            canvas,
            (match.x, match.y),
            (match.x + tw - 1, match.y + th - 1),
            rect_color,
            thickness,
        )
        if label:
            text = f"#{rank} {match.percent:.2f}%"
            origin = (match.x + 2, max(match.y - 3, 10))
            cv2.putText(canvas, text, origin, cv2.FONT_HERSHEY_SIMPLEX,
                        0.35, rect_color, 1, cv2.LINE_AA)

    return canvas


def save_overlay(path: Union[str, Path], image: np.ndarray) -> Path:
    """Write an overlay image, creating parent directories as needed."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.fromarray(image).save(path)
    logger.info("Overlay written to %s", path)
    return path
