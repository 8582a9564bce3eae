"""End-to-end tests for the subimage search engine.

Synthetic images are built with numpy; expected answers come from a
brute-force error map computed independently of the engine.
"""

from __future__ import annotations

import asyncio

import numpy as np
import pytest

from subimage_search.metric import mse_to_tse, tse_to_mse
from subimage_search.pixel_buffer import PixelBuffer
from subimage_search.search import (
    DimensionError,
    SubimageSearch,
    find_subimage,
    find_subimage_async,
)


# ---------------------------------------------------------------------------
# Synthetic image helpers
# ---------------------------------------------------------------------------


def _solid(width: int, height: int, color) -> np.ndarray:
    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    pixels[:, :] = color
    return pixels


def _noise(width: int, height: int, seed: int = 0) -> np.ndarray:
    rng = np.random.RandomState(seed)
    return rng.randint(0, 256, (height, width, 4)).astype(np.uint8)


def _brute_force_tse(main: np.ndarray, search: np.ndarray) -> np.ndarray:
    """Exact TSE for every offset, indexed [y, x]."""
    mh, mw = main.shape[:2]
    sh, sw = search.shape[:2]
    out = np.zeros((mh - sh + 1, mw - sw + 1), dtype=np.int64)
    tpl = search.astype(np.int64)
    for y in range(out.shape[0]):
        for x in range(out.shape[1]):
            diff = main[y:y + sh, x:x + sw].astype(np.int64) - tpl
            out[y, x] = int(np.sum(diff * diff))
    return out


def _embed(main: np.ndarray, search: np.ndarray, positions) -> np.ndarray:
    main = main.copy()
    sh, sw = search.shape[:2]
    for x, y in positions:
        main[y:y + sh, x:x + sw] = search
    return main


# ---------------------------------------------------------------------------
# Reference scenarios
# ---------------------------------------------------------------------------


def test_exact_match_of_identical_images():
    pixels = _noise(9, 7, seed=1)
    results = find_subimage(PixelBuffer(pixels), PixelBuffer(pixels), None, 0.0, 5)
    assert [(m.x, m.y, m.tse) for m in results.matches] == [(0, 0, 0)]
    assert not results.has_overflown()


def test_no_match():
    main = PixelBuffer(_solid(12, 10, (0, 0, 0, 255)))
    search = PixelBuffer(_solid(3, 3, (255, 0, 0, 255)))
    results = find_subimage(main, search, None, 0.0, 5)
    assert results.matches == []
    assert not results.has_overflown()


def test_dimension_error_before_scanning():
    calls = []
    main = PixelBuffer(_solid(10, 10, (0, 0, 0, 255)))
    search = PixelBuffer(_solid(20, 20, (0, 0, 0, 255)))
    with pytest.raises(DimensionError) as excinfo:
        find_subimage(main, search, calls.append, 0.5, 5)
    assert calls == []
    assert excinfo.value.main_size == 10
    assert excinfo.value.search_size == 20


@pytest.mark.parametrize(
    "main_size, search_size, axis",
    [((10, 20), (11, 5), "width"), ((20, 10), (5, 11), "height")],
)
def test_dimension_error_names_axis(main_size, search_size, axis):
    main = PixelBuffer(_solid(*main_size, (0, 0, 0, 255)))
    search = PixelBuffer(_solid(*search_size, (0, 0, 0, 255)))
    with pytest.raises(DimensionError) as excinfo:
        find_subimage(main, search, None, 0.5, 5)
    assert excinfo.value.axis == axis
    assert axis in str(excinfo.value)


def test_dimension_error_is_value_error():
    assert issubclass(DimensionError, ValueError)


@pytest.mark.parametrize(
    "max_mse, max_results",
    [(-0.1, 5), (1.5, 5), (7.5, 5), (float("nan"), 5), (0.1, -1)],
)
def test_out_of_range_parameters_rejected(max_mse, max_results):
    pixels = _noise(4, 4)
    with pytest.raises(ValueError):
        find_subimage(PixelBuffer(pixels), PixelBuffer(pixels), None, max_mse, max_results)


def test_finds_embedded_template():
    search = _noise(4, 3, seed=7)
    main = _embed(_noise(20, 15, seed=8), search, [(11, 6)])
    results = find_subimage(PixelBuffer(main), PixelBuffer(search), None, 0.0, 3)
    assert [(m.x, m.y) for m in results.matches] == [(11, 6)]
    assert results.matches[0].mse == 0.0


def test_inclusive_scan_range_reaches_bottom_right():
    search = _noise(3, 3, seed=2)
    main = _embed(_noise(10, 8, seed=3), search, [(7, 5)])
    results = find_subimage(PixelBuffer(main), PixelBuffer(search), None, 0.0, 3)
    assert [(m.x, m.y) for m in results.matches] == [(7, 5)]


def test_search_same_width_as_main():
    search = _noise(6, 2, seed=4)
    main = _embed(_noise(6, 9, seed=5), search, [(0, 4)])
    results = find_subimage(PixelBuffer(main), PixelBuffer(search), None, 0.0, 3)
    assert [(m.x, m.y) for m in results.matches] == [(0, 4)]


# ---------------------------------------------------------------------------
# Ranking, capacity and overflow
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("max_results", [1, 3, 10, 200])
def test_keeps_best_matches_sorted(max_results):
    main = _noise(14, 11, seed=11)
    search = _noise(3, 2, seed=12)
    expected = np.sort(_brute_force_tse(main, search).ravel())

    results = find_subimage(PixelBuffer(main), PixelBuffer(search), None, 1.0, max_results)
    tses = [m.tse for m in results.matches]

    assert len(tses) <= max_results
    assert tses == sorted(tses)
    assert tses == expected[:max_results].tolist()


@pytest.mark.parametrize("max_mse", [0.0, 0.05, 0.1, 0.2, 0.3, 1.0])
@pytest.mark.parametrize("max_results", [0, 1, 4, 25])
def test_overflow_matches_brute_force_count(max_mse, max_results):
    main = _noise(12, 10, seed=21)
    search = _noise(3, 3, seed=22)
    errors = _brute_force_tse(main, search)
    ceiling = mse_to_tse(max_mse, 3 * 3 * 4)
    qualifying = int(np.count_nonzero(errors <= ceiling))

    results = find_subimage(PixelBuffer(main), PixelBuffer(search), None, max_mse, max_results)

    assert results.has_overflown() == (qualifying > max_results)
    assert len(results) == min(qualifying, max_results)


def test_returned_errors_are_exact_and_within_ceiling():
    main = _noise(12, 10, seed=31)
    search = _noise(4, 3, seed=32)
    errors = _brute_force_tse(main, search)
    max_mse = 0.25

    results = find_subimage(PixelBuffer(main), PixelBuffer(search), None, max_mse, 6)

    ceiling = mse_to_tse(max_mse, 4 * 3 * 4)
    for match in results.matches:
        assert match.tse == errors[match.y, match.x]
        assert match.tse <= ceiling


def test_duplicates_overflow_with_small_cap():
    search = _noise(3, 3, seed=41)
    main = _embed(_noise(16, 12, seed=42), search, [(0, 0), (6, 2), (12, 8)])

    capped = find_subimage(PixelBuffer(main), PixelBuffer(search), None, 0.0, 2)
    assert len(capped) == 2
    assert capped.has_overflown()
    assert all(m.tse == 0 for m in capped.matches)

    exact = find_subimage(PixelBuffer(main), PixelBuffer(search), None, 0.0, 3)
    assert sorted((m.x, m.y) for m in exact.matches) == [(0, 0), (6, 2), (12, 8)]
    assert not exact.has_overflown()


def test_zero_results_overflow_when_anything_qualifies():
    pixels = _noise(5, 5, seed=51)
    results = find_subimage(PixelBuffer(pixels), PixelBuffer(pixels), None, 0.0, 0)
    assert len(results) == 0
    assert results.has_overflown()


def test_deterministic():
    main = PixelBuffer(_noise(13, 9, seed=61))
    search = PixelBuffer(_noise(3, 2, seed=62))
    first = find_subimage(main, search, None, 0.4, 7)
    second = find_subimage(main, search, None, 0.4, 7)
    assert first.matches == second.matches
    assert first.has_overflown() == second.has_overflown()


def test_result_metadata():
    main = PixelBuffer(_noise(13, 9, seed=71))
    search = PixelBuffer(_noise(3, 2, seed=72))
    results = find_subimage(main, search, None, 0.1, 4)
    assert (results.template_width, results.template_height) == (3, 2)
    assert (results.main_width, results.main_height) == (13, 9)
    assert results.error_divisor == 24
    assert results.is_finalized
    for match in results.matches:
        assert match.mse == pytest.approx(results.mse(match))


# ---------------------------------------------------------------------------
# Progress and cooperative stepping
# ---------------------------------------------------------------------------


def test_progress_reported_once_per_row_then_complete():
    main = PixelBuffer(_noise(8, 9, seed=81))
    search = PixelBuffer(_noise(2, 3, seed=82))
    progress = []
    find_subimage(main, search, progress.append, 0.1, 3)

    total_rows = 9 - 3 + 1
    assert len(progress) == total_rows + 1
    assert progress == sorted(progress)
    assert progress[0] == 0.0
    assert progress[-1] == 1.0
    assert all(0.0 <= p <= 1.0 for p in progress)


def test_progress_callback_failure_aborts_scan():
    main = PixelBuffer(_noise(8, 8, seed=91))
    search = PixelBuffer(_noise(2, 2, seed=92))

    def explode(_fraction):
        raise RuntimeError("ui went away")

    with pytest.raises(RuntimeError, match="ui went away"):
        find_subimage(main, search, explode, 0.1, 3)


def test_steps_yield_after_each_row():
    main = PixelBuffer(_noise(6, 6, seed=101))
    search = PixelBuffer(_noise(2, 2, seed=102))
    job = SubimageSearch(main, search, 0.2, 4)

    seen = []
    for fraction in job.steps(seen.append):
        # the callback for a row has run by the time the row is yielded
        assert seen[-1] == fraction
    assert len(seen) == job.total_rows + 1
    assert job.results.is_finalized


def test_abandoning_steps_stops_scan():
    main = PixelBuffer(_noise(10, 10, seed=111))
    search = PixelBuffer(_noise(2, 2, seed=112))
    job = SubimageSearch(main, search, 1.0, 100)

    steps = job.steps()
    next(steps)
    steps.close()

    # only the first row of offsets was scanned
    assert len(job.results) == job.total_columns
    assert all(m.y == 0 for m in job.results.matches)
    assert not job.results.is_finalized


def test_search_instance_is_single_use():
    pixels = _noise(4, 4, seed=121)
    job = SubimageSearch(PixelBuffer(pixels), PixelBuffer(pixels), 0.0, 1)
    list(job.steps())
    with pytest.raises(RuntimeError):
        list(job.steps())


def test_async_matches_sync():
    main = PixelBuffer(_noise(12, 9, seed=131))
    search = PixelBuffer(_noise(3, 3, seed=132))
    progress = []

    async_results = asyncio.run(find_subimage_async(main, search, progress.append, 0.3, 5))
    sync_results = find_subimage(main, search, None, 0.3, 5)

    assert async_results.matches == sync_results.matches
    assert async_results.has_overflown() == sync_results.has_overflown()
    assert progress[-1] == 1.0


def test_async_yields_to_other_tasks():
    main = PixelBuffer(_noise(8, 10, seed=141))
    search = PixelBuffer(_noise(2, 2, seed=142))
    ticks = []

    async def ticker():
        while True:
            ticks.append(1)
            await asyncio.sleep(0)

    async def run():
        task = asyncio.ensure_future(ticker())
        await find_subimage_async(main, search, None, 0.1, 3)
        task.cancel()

    asyncio.run(run())
    assert len(ticks) > 1


def test_match_mse_follows_tse():
    main = PixelBuffer(_noise(10, 8, seed=151))
    search = PixelBuffer(_noise(3, 3, seed=152))
    results = find_subimage(main, search, None, 1.0, 5)
    for match in results.matches:
        assert match.mse == tse_to_mse(match.tse, results.error_divisor)
    mses = [m.mse for m in results.matches]
    assert mses == sorted(mses)
    assert mses[-1] > 0.0
