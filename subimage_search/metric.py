"""Total squared error between a template and a window of the main image.

Sample depth is 8 bits, so a squared channel difference needs 16 bits.  A
1920x1080 window adds another 21 bits plus 2 for the four channels, which
is why errors are accumulated as 64-bit integers.

MSE values handed to users are expressed on a fixed-point scale: the mean
squared error per channel sample divided by ``TSE_SCALE``.  With
``255 ** 2 < TSE_SCALE`` an MSE of 1.0 accepts any window.
"""

import math

import numpy as np

from .pixel_buffer import CHANNELS, PixelBuffer

TSE_SCALE = 65536


def error_divisor(search: PixelBuffer) -> int:
    """Number of channel samples in the template."""
    return search.width * search.height * CHANNELS


def mse_to_tse(max_mse: float, divisor: int) -> int:
    """Convert a relative error tolerance into an absolute TSE ceiling."""
    return int(math.ceil(max_mse * divisor * TSE_SCALE))


def tse_to_mse(tse: int, divisor: int) -> float:
    if divisor <= 0:
        return 0.0
    return tse / divisor / TSE_SCALE


def total_squared_error(
    main: PixelBuffer,
    search: PixelBuffer,
    x: int,
    y: int,
    ceiling: int,
) -> int:
    """Sum of squared channel differences of ``search`` placed at (x, y) in ``main``.

    ``ceiling`` is a pruning hint.  The total is checked after every template
    row and returned as soon as it exceeds the ceiling, so any result above
    ``ceiling`` is only known to be too large: it must not be compared with
    another rejected value.
    """
    width = search.width
    tse = 0
    for dy in range(search.height):
        main_row = main.row_slice(x, y + dy, width).astype(np.int64)
        search_row = search.row_slice(0, dy, width).astype(np.int64)
        diff = main_row - search_row
        tse += int(np.dot(diff, diff))

        # Checked per row rather than per pixel to keep the inner loop in numpy
        if tse > ceiling:
            return tse
    return tse
