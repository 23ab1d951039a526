"""
Tests for the injectable clocks.
"""

from datetime import datetime, timedelta, timezone

import pytest

from pharmacy_kernel.domain.clock import DeterministicClock, SystemClock


class TestDeterministicClock:
    def test_default_start(self):
        assert DeterministicClock().now() == datetime(2024, 1, 1, 12, tzinfo=timezone.utc)

    def test_stable_until_advanced(self):
        clock = DeterministicClock()

        assert clock.now() == clock.now()

    def test_advance_and_tick(self):
        clock = DeterministicClock()
        start = clock.now()

        clock.advance(30)
        assert clock.now() == start + timedelta(seconds=30)
        assert clock.tick() == start + timedelta(seconds=31)

        clock.advance_days(2)
        assert clock.now() == start + timedelta(days=2, seconds=31)

    def test_set_time_resets_offset(self):
        clock = DeterministicClock()
        clock.advance(100)
        target = datetime(2025, 6, 1, tzinfo=timezone.utc)

        clock.set_time(target)

        assert clock.now() == target

    def test_naive_datetime_rejected(self):
        with pytest.raises(ValueError):
            DeterministicClock(datetime(2024, 1, 1))
        with pytest.raises(ValueError):
            DeterministicClock().set_time(datetime(2024, 1, 1))


class TestSystemClock:
    def test_timezone_aware(self):
        assert SystemClock().now().tzinfo is not None
