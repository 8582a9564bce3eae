"""Bounded, error-ordered collection of subimage matches."""

from __future__ import annotations

import bisect
from dataclasses import dataclass, replace
from typing import Iterator, List, Optional

from .metric import tse_to_mse


@dataclass(frozen=True)
class SearchResult:
    """A placement of the template at (x, y) in the main image."""
    x: int
    y: int
    tse: int            # total squared error over the window
    mse: float = 0.0    # tse on the fixed-point MSE scale, set by SearchResults

    @property
    def percent(self) -> float:
        return self.mse * 100.0

    def to_dict(self) -> dict:
        return {
            "x": int(self.x),
            "y": int(self.y),
            "tse": int(self.tse),
            "mse": float(self.mse),
        }


class SearchResults:
    """Keeps the ``capacity`` best matches sorted ascending by error.

    Once the collection is full its ``ceiling`` drops to one below the worst
    kept error, so candidates tying the worst match are rejected before the
    error metric has to finish them.  ``has_overflown()`` reports whether a
    qualifying candidate arrived while the collection was already full.
    """

    # Capacities stay around a hundred, so O(n) list insertion is fine.

    def __init__(
        self,
        capacity: int,
        template_width: int,
        template_height: int,
        main_width: int,
        main_height: int,
        error_divisor: int = 0,
        max_tse: int = 0,
    ):
        if capacity < 0:
            raise ValueError(f"capacity must be non-negative, got {capacity}")
        self._capacity = capacity
        self._results: List[SearchResult] = []
        self._keys: List[int] = []
        self._overflown = False
        self._finalized = False
        self._template_width = template_width
        self._template_height = template_height
        self._main_width = main_width
        self._main_height = main_height
        self._error_divisor = error_divisor
        self._max_tse = max_tse
        self._ceiling = max_tse

    # ── Mutation ─────────────────────────────────────────────────────

    def push(self, result: SearchResult) -> None:
        """Offer a candidate that passed the original ceiling."""
        if self._finalized:
            raise RuntimeError("Cannot push into finalized search results")

        if len(self._results) < self._capacity:
            self._insert_ordered(result)
        else:
            self._overflown = True
            if self._results and result.tse < self._results[-1].tse:
                self._results.pop()
                self._keys.pop()
                self._insert_ordered(result)
            # otherwise not worth keeping

        if self._capacity and len(self._results) == self._capacity:
            self._ceiling = max(self._results[-1].tse - 1, 0)

        assert len(self._results) <= self._capacity, "results exceed capacity"

    def _insert_ordered(self, result: SearchResult) -> None:
        result = replace(result, mse=tse_to_mse(result.tse, self._error_divisor))
        # insert before the first element with a strictly greater error
        pos = bisect.bisect_right(self._keys, result.tse)
        self._keys.insert(pos, result.tse)
        self._results.insert(pos, result)

    def finalize(self) -> "SearchResults":
        """Freeze the collection.  Calling it again is a no-op."""
        self._finalized = True
        return self

    # ── Accessors ────────────────────────────────────────────────────

    def has_overflown(self) -> bool:
        return self._overflown

    @property
    def is_finalized(self) -> bool:
        return self._finalized

    @property
    def matches(self) -> List[SearchResult]:
        """Matches ordered best first.  Returns a copy."""
        return list(self._results)

    @property
    def best(self) -> Optional[SearchResult]:
        return self._results[0] if self._results else None

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def ceiling(self) -> int:
        """Largest TSE a new candidate may have and still be kept."""
        return self._ceiling

    @property
    def max_tse(self) -> int:
        """Ceiling the search started with, before any tightening."""
        return self._max_tse

    @property
    def error_divisor(self) -> int:
        return self._error_divisor

    @property
    def template_width(self) -> int:
        return self._template_width

    @property
    def template_height(self) -> int:
        return self._template_height

    @property
    def main_width(self) -> int:
        return self._main_width

    @property
    def main_height(self) -> int:
        return self._main_height

    def mse(self, result: SearchResult) -> float:
        return tse_to_mse(result.tse, self._error_divisor)

    def __len__(self) -> int:
        return len(self._results)

    def __iter__(self) -> Iterator[SearchResult]:
        return iter(list(self._results))

    def to_dict(self) -> dict:
        return {
            "template": {"width": self._template_width, "height": self._template_height},
            "main": {"width": self._main_width, "height": self._main_height},
            "error_divisor": self._error_divisor,
            "max_tse": self._max_tse,
            "overflown": self._overflown,
            "matches": [r.to_dict() for r in self._results],
        }

    def __repr__(self) -> str:
        return (
            f"SearchResults(matches={len(self._results)}, capacity={self._capacity}, "
            f"overflown={self._overflown})"
        )
