"""Public interface for the subimage search toolkit."""

from __future__ import annotations

from .config import SearchConfig
from .metric import TSE_SCALE, total_squared_error
from .pixel_buffer import PixelBuffer
from .results import SearchResult, SearchResults
from .search import (
    DimensionError,
    SubimageSearch,
    find_subimage,
    find_subimage_async,
)

__all__ = [
    "DimensionError",
    "PixelBuffer",
    "SearchConfig",
    "SearchResult",
    "SearchResults",
    "SubimageSearch",
    "TSE_SCALE",
    "find_subimage",
    "find_subimage_async",
    "total_squared_error",
]
