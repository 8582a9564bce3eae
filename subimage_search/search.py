"""Exhaustive subimage search with adaptive pruning.

Every top-left offset at which the search image fits inside the main image
is scored with :func:`~subimage_search.metric.total_squared_error`.  Scoring
stops early once a window is known to be worse than the current ceiling,
and the ceiling tightens as the result collection fills with better
matches, so strict tolerances and small result caps make the scan cheaper.

The scan is a single cooperative worker.  It reports progress and then
suspends once per row of offsets; nothing inside a row suspends.

Usage:
    results = find_subimage(main, search, print, max_mse=0.01, max_results=10)

    # or, inside an event loop
    results = await find_subimage_async(main, search, on_progress, 0.01, 10)

    # or, driving the rows yourself (stop iterating to cancel)
    job = SubimageSearch(main, search, 0.01, 10)
    for fraction in job.steps():
        ...
    results = job.results
"""

import asyncio
import logging
from typing import Callable, Iterator, Optional

from .metric import error_divisor, mse_to_tse, total_squared_error, tse_to_mse
from .pixel_buffer import PixelBuffer
from .results import SearchResult, SearchResults

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


class DimensionError(ValueError):
    """The search image does not fit inside the main image."""

    def __init__(self, axis: str, main_size: int, search_size: int):
        self.axis = axis
        self.main_size = main_size
        self.search_size = search_size
        super().__init__(
            f"Search image {axis} ({search_size}px) exceeds main image {axis} ({main_size}px)"
        )


class SubimageSearch:
    """One search of ``search`` inside ``main``.

    The constructor validates the inputs; the scan itself runs through
    :meth:`steps`.  An instance is single use.
    """

    def __init__(
        self,
        main: PixelBuffer,
        search: PixelBuffer,
        max_mse: float,
        max_results: int,
    ):
        """
        Args:
            main: Image to search in.
            search: Template to look for.
            max_mse: Relative error tolerance in [0, 1].  0 accepts exact
                     matches only, 1 accepts anything.
            max_results: Number of best matches to keep.  0 is allowed and
                         keeps nothing.

        Raises:
            DimensionError: If ``search`` is wider or taller than ``main``.
            ValueError: If ``max_mse`` is outside [0, 1] or ``max_results`` is negative.
        """
        if main.height < search.height:
            raise DimensionError("height", main.height, search.height)
        if main.width < search.width:
            raise DimensionError("width", main.width, search.width)
        if not 0.0 <= max_mse <= 1.0:
            raise ValueError(f"max_mse must be within [0, 1], got {max_mse}")
        if max_results < 0:
            raise ValueError(f"max_results must be non-negative, got {max_results}")

        self.main = main
        self.search = search
        self.max_mse = max_mse
        self.divisor = error_divisor(search)
        self.max_tse = mse_to_tse(max_mse, self.divisor)
        self.total_rows = main.height - search.height + 1
        self.total_columns = main.width - search.width + 1
        self._results = SearchResults(
            max_results,
            search.width, search.height,
            main.width, main.height,
            error_divisor=self.divisor,
            max_tse=self.max_tse,
        )
        self._started = False

        logger.info("max_tse: %d", self.max_tse)
        logger.info("MSE for max_tse: %.6f", tse_to_mse(self.max_tse, self.divisor))

    @property
    def results(self) -> SearchResults:
        return self._results

    def _pruning_ceiling(self) -> int:
        # Until a qualifying candidate has been refused, every window must be
        # judged against the original ceiling or has_overflown() could miss
        # one that falls between the tightened and the original ceiling.
        if self._results.has_overflown():
            return self._results.ceiling
        return self.max_tse

    def _scan_row(self, y: int) -> int:
        """Score every offset in row ``y``.  Returns the number of candidates pushed."""
        pushed = 0
        for x in range(self.total_columns):
            ceiling = self._pruning_ceiling()
            tse = total_squared_error(self.main, self.search, x, y, ceiling)
            if tse <= ceiling:
                self._results.push(SearchResult(x, y, tse))
                pushed += 1
        return pushed

    def steps(self, progress_callback: Optional[ProgressCallback] = None) -> Iterator[float]:
        """Scan row by row, yielding the progress fraction after each row.

        ``progress_callback`` is invoked once per row, in row order, before
        the generator suspends, and once more with 1.0 at the end.  The
        results are finalized when the generator is exhausted.  Exceptions
        raised by the callback abort the scan.
        """
        if self._started:
            raise RuntimeError("SubimageSearch instances cannot be reused")
        self._started = True

        for y in range(self.total_rows):
            pushed = self._scan_row(y)
            logger.debug("Checked line %d (%d candidates)", y, pushed)

            progress = y / self.total_rows
            if progress_callback is not None:
                progress_callback(progress)
            yield progress

        if progress_callback is not None:
            progress_callback(1.0)
        self._results.finalize()
        logger.info(
            "Found %d match(es)%s",
            len(self._results),
            " (more matches were dropped)" if self._results.has_overflown() else "",
        )


def find_subimage(
    main: PixelBuffer,
    search: PixelBuffer,
    progress_callback: Optional[ProgressCallback] = None,
    max_mse: float = 0.01,
    max_results: int = 10,
) -> SearchResults:
    """Run a complete search synchronously.

    Returns:
        Finalized :class:`SearchResults`, best match first.

    Raises:
        DimensionError: If the search image does not fit, before any progress
                        is reported.
    """
    job = SubimageSearch(main, search, max_mse, max_results)
    for _ in job.steps(progress_callback):
        pass
    return job.results


async def find_subimage_async(
    main: PixelBuffer,
    search: PixelBuffer,
    progress_callback: Optional[ProgressCallback] = None,
    max_mse: float = 0.01,
    max_results: int = 10,
) -> SearchResults:
    """Run a search on the event loop, letting other tasks run between rows.

    Cancelling the awaiting task stops the scan at the next row boundary.
    """
    job = SubimageSearch(main, search, max_mse, max_results)
    for _ in job.steps(progress_callback):
        await asyncio.sleep(0)
    return job.results
