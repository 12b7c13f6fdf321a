"""Tests for the minute sweep-line peak calculation."""

import random
from datetime import datetime, timedelta, timezone

import pytest

WINDOW_START = datetime(2024, 2, 16, 10, 0, tzinfo=timezone.utc)
WINDOW_END = datetime(2024, 2, 16, 12, 0, tzinfo=timezone.utc)


def _interval(start, end, session="s1"):
    from genesys_peak.models import Interval

    return Interval(conversation_id="c", participant_id="p", session_id=session, start=start, end=end)


def _at(minute, second=0):
    return WINDOW_START + timedelta(minutes=minute, seconds=second)


def _brute_force(intervals, window_start, window_end):
    """Count intervals overlapping each minute of the window."""
    counts = []
    minute = window_start
    while minute < window_end:
        active = 0
        for interval in intervals:
            start = max(interval.start, window_start)
            end = min(interval.end, window_end)
            if end <= start:
                continue
            if start < minute + timedelta(minutes=1) and end > minute:
                active += 1
        counts.append((minute, active))
        minute += timedelta(minutes=1)
    return counts


def test_floor_and_ceiling_boundaries():
    """Test that [10:00:30, 10:01:00) floors to 10:00 and ends at 10:01."""
    from genesys_peak.sweep import build_deltas, ceil_minute, floor_minute

    assert floor_minute(_at(0, 30)) == _at(0)
    assert ceil_minute(_at(1)) == _at(1)
    assert ceil_minute(_at(1, 1)) == _at(2)

    deltas, used = build_deltas([_interval(_at(0, 30), _at(1))], WINDOW_START, WINDOW_END)
    assert used == 1
    assert deltas == {_at(0): 1, _at(1): -1}


def test_partial_minute_counts_whole_minute():
    from genesys_peak.sweep import compute_peak

    result = compute_peak([_interval(_at(5, 10), _at(5, 20))], WINDOW_START, WINDOW_END)

    assert result.peak_concurrent == 1
    assert result.peak_minute == _at(5)
    assert result.peak_minutes == [_at(5)]


def test_empty_input_has_zero_peak():
    from genesys_peak.sweep import compute_peak

    result = compute_peak([], WINDOW_START, WINDOW_END)

    assert result.peak_concurrent == 0
    assert result.peak_minute is None
    assert result.peak_minutes == []
    assert len(result.series) == 120
    assert all(count == 0 for _, count in result.series)


def test_interval_outside_window_contributes_nothing():
    from genesys_peak.sweep import compute_peak

    before = _interval(WINDOW_START - timedelta(hours=2), WINDOW_START - timedelta(hours=1))
    after = _interval(WINDOW_END, WINDOW_END + timedelta(minutes=30))
    result = compute_peak([before, after], WINDOW_START, WINDOW_END)

    assert result.peak_concurrent == 0
    assert result.interval_count == 0


def test_partially_overlapping_interval_is_clamped():
    """Test that an interval straddling the window start counts from the first minute."""
    from genesys_peak.sweep import compute_peak

    straddling = _interval(WINDOW_START - timedelta(minutes=30), _at(2, 30))
    tail = _interval(_at(118), WINDOW_END + timedelta(hours=1), session="s2")
    result = compute_peak([straddling, tail], WINDOW_START, WINDOW_END)

    series = dict(result.series)
    assert series[_at(0)] == 1
    assert series[_at(2)] == 1
    assert series[_at(3)] == 0
    assert series[_at(119)] == 1
    assert result.interval_count == 2


def test_first_peak_minute_and_ties():
    """Test that the first minute at the maximum is reported and ties are listed."""
    from genesys_peak.sweep import compute_peak

    intervals = [
        _interval(_at(10), _at(12), "a"),
        _interval(_at(11), _at(13), "b"),
        _interval(_at(30), _at(31), "c"),
        _interval(_at(30), _at(32), "d"),
    ]
    result = compute_peak(intervals, WINDOW_START, WINDOW_END)

    assert result.peak_concurrent == 2
    assert result.peak_minute == _at(11)
    assert result.peak_minutes == [_at(11), _at(30)]


def test_back_to_back_calls_do_not_overlap():
    from genesys_peak.sweep import compute_peak

    intervals = [_interval(_at(10), _at(11), "a"), _interval(_at(11), _at(12), "b")]
    assert compute_peak(intervals, WINDOW_START, WINDOW_END).peak_concurrent == 1


def test_unaligned_window_is_widened_to_minutes():
    from genesys_peak.sweep import compute_peak

    result = compute_peak([], _at(0, 15), _at(3, 15))
    assert result.window_start == _at(0)
    assert result.window_end == _at(4)
    assert len(result.series) == 4


def test_inverted_window_rejected():
    from genesys_peak.sweep import compute_peak

    with pytest.raises(ValueError):
        compute_peak([], WINDOW_END, WINDOW_START)


def test_series_can_be_omitted():
    from genesys_peak.sweep import compute_peak

    result = compute_peak([_interval(_at(1), _at(2))], WINDOW_START, WINDOW_END, include_series=False)
    assert result.series == []
    assert result.peak_concurrent == 1


@pytest.mark.parametrize("seed", range(25))
def test_matches_brute_force(seed):
    """Test peak and first peak minute against per-minute brute force counting."""
    from genesys_peak.sweep import compute_peak

    rng = random.Random(seed)
    intervals = []
    for i in range(rng.randint(0, 20)):
        start = WINDOW_START + timedelta(seconds=rng.randint(-1800, 7000))
        end = start + timedelta(seconds=rng.randint(1, 3600))
        intervals.append(_interval(start, end, session=f"s{i}"))

    result = compute_peak(intervals, WINDOW_START, WINDOW_END)
    expected = _brute_force(intervals, WINDOW_START, WINDOW_END)

    expected_peak = max(count for _, count in expected)
    assert result.peak_concurrent == expected_peak
    assert result.series == expected
    if expected_peak:
        assert result.peak_minute == next(m for m, c in expected if c == expected_peak)
        assert result.peak_minutes == [m for m, c in expected if c == expected_peak]
    else:
        assert result.peak_minute is None
