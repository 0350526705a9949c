"""Tests for gap-fill window selection."""

import pytest

from cinemirror.services.gap_fill import FetchWindow, compute_fetch_window


class TestFetchWindow:
    def test_width_and_pages(self) -> None:
        window = FetchWindow(101, 150)
        assert window.width == 50
        assert list(window.pages()) == list(range(101, 151))

    def test_empty_window(self) -> None:
        assert FetchWindow(10, 9).width == 0
        assert list(FetchWindow(10, 9).pages()) == []


class TestComputeFetchWindow:
    """Window selection for target T and high-water mark H."""

    def test_far_target_continues_from_high_water_mark(self) -> None:
        """H=100, T=150 fetches exactly pages 101..150."""
        assert compute_fetch_window(150, 100) == FetchWindow(101, 150)

    def test_far_target_is_batched(self) -> None:
        window = compute_fetch_window(300, 0)
        assert window == FetchWindow(1, 50)

    def test_near_target_reads_ahead(self) -> None:
        assert compute_fetch_window(50, 0) == FetchWindow(1, 52)
        assert compute_fetch_window(10, 7) == FetchWindow(8, 12)

    def test_hole_is_patched_around_target(self) -> None:
        assert compute_fetch_window(50, 100) == FetchWindow(45, 55)

    def test_hole_never_passes_high_water_mark(self) -> None:
        assert compute_fetch_window(98, 100) == FetchWindow(93, 100)

    def test_hole_near_first_page(self) -> None:
        assert compute_fetch_window(2, 10) == FetchWindow(1, 7)

    def test_target_equal_to_high_water_mark(self) -> None:
        assert compute_fetch_window(3, 3) == FetchWindow(1, 3)

    def test_clamped_to_max_page(self) -> None:
        window = compute_fetch_window(499, 480, max_page=500)
        assert window.end == 500
        assert compute_fetch_window(500, 499, max_page=500) == FetchWindow(500, 500)

    def test_clamped_to_max_width(self) -> None:
        assert compute_fetch_window(50, 0, max_width=10) == FetchWindow(1, 10)

    @pytest.mark.parametrize("high_water_mark", [0, 1, 37, 99, 100, 250, 480])
    def test_window_width_never_exceeds_limit(self, high_water_mark: int) -> None:
        for target in range(1, 501):
            window = compute_fetch_window(target, high_water_mark, max_page=500)
            assert 1 <= window.start
            assert window.width <= 100
            assert window.end <= 500

    @pytest.mark.parametrize("high_water_mark", [0, 20, 100, 333])
    def test_window_starts_after_high_water_mark_when_ahead(
        self, high_water_mark: int
    ) -> None:
        for target in range(high_water_mark + 1, 501):
            window = compute_fetch_window(target, high_water_mark, max_page=500)
            assert window.start == high_water_mark + 1
            assert window.width >= 1
