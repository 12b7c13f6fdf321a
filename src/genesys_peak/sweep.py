"""Minute-granularity sweep-line for peak concurrent calls."""

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Iterable

from genesys_peak.models import Interval, PeakResult

MINUTE = timedelta(minutes=1)


def floor_minute(dt: datetime) -> datetime:
    return dt.replace(second=0, microsecond=0)


def ceil_minute(dt: datetime) -> datetime:
    floored = floor_minute(dt)
    return floored if floored == dt else floored + MINUTE


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def build_deltas(
    intervals: Iterable[Interval],
    window_start: datetime,
    window_end: datetime,
) -> tuple[dict[datetime, int], int]:
    """Build the sparse minute -> delta map for intervals clamped to the window.

    Intervals are half-open: a call active for part of a minute counts for
    that whole minute. Returns the map and how many intervals contributed.
    """
    deltas: dict[datetime, int] = defaultdict(int)
    used = 0
    for interval in intervals:
        start = max(_as_utc(interval.start), window_start)
        end = min(_as_utc(interval.end), window_end)
        if end <= start:
            continue
        deltas[floor_minute(start)] += 1
        deltas[ceil_minute(end)] -= 1
        used += 1
    return dict(deltas), used


def compute_peak(
    intervals: Iterable[Interval],
    window_start: datetime,
    window_end: datetime,
    include_series: bool = True,
) -> PeakResult:
    """Compute peak concurrency over ``[window_start, window_end)``.

    The window is widened to whole minutes. The first minute reaching the
    maximum is ``peak_minute``; every minute at the maximum is listed in
    ``peak_minutes``. With no active intervals the peak is 0 and the
    peak minute is None.
    """
    window_start = floor_minute(_as_utc(window_start))
    window_end = ceil_minute(_as_utc(window_end))
    if window_end <= window_start:
        raise ValueError("window end must be after window start")

    deltas, used = build_deltas(intervals, window_start, window_end)

    running = 0
    peak = 0
    peak_minutes: list[datetime] = []
    series: list[tuple[datetime, int]] = []

    minute = window_start
    while minute < window_end:
        running += deltas.get(minute, 0)
        if include_series:
            series.append((minute, running))
        if running > peak:
            peak = running
            peak_minutes = [minute]
        elif running == peak and peak > 0:
            peak_minutes.append(minute)
        minute += MINUTE

    return PeakResult(
        peak_concurrent=peak,
        peak_minute=peak_minutes[0] if peak_minutes else None,
        peak_minutes=peak_minutes,
        window_start=window_start,
        window_end=window_end,
        interval_count=used,
        series=series,
    )
