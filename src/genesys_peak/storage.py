"""Run output files: interval and per-minute CSVs plus a JSON summary."""

import csv
import hashlib
import json
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from genesys_peak.models import Interval, PeakResult, format_timestamp

# Default storage directory (cross-platform)
DEFAULT_STORAGE_DIR = Path(tempfile.gettempdir()) / "genesys-peak"

INTERVAL_COLUMNS = [
    "conversationId",
    "participantId",
    "sessionId",
    "startUtc",
    "endUtc",
    "ani",
    "dnis",
    "divisionIds",
]

SERIES_COLUMNS = ["minuteUtc", "activeCalls"]


def _get_storage_dir(output_dir: str | Path | None = None) -> Path:
    """Get and ensure the output directory exists."""
    storage_dir = Path(output_dir) if output_dir else DEFAULT_STORAGE_DIR
    storage_dir.mkdir(parents=True, exist_ok=True)
    return storage_dir


def _generate_prefix(tool_name: str, params: dict[str, Any]) -> str:
    """Generate a unique file prefix for a run.

    Format: {tool}_{md5_8chars}_{timestamp}
    """
    params_str = json.dumps(params, sort_keys=True, default=str)
    hash_str = hashlib.md5(params_str.encode()).hexdigest()[:8]
    return f"{tool_name}_{hash_str}_{int(time.time())}"


def write_intervals_csv(intervals: Iterable[Interval], path: Path) -> Path:
    with open(path, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(INTERVAL_COLUMNS)
        for interval in intervals:
            writer.writerow([
                interval.conversation_id,
                interval.participant_id,
                interval.session_id,
                format_timestamp(interval.start),
                format_timestamp(interval.end),
                interval.ani or "",
                interval.dnis or "",
                ";".join(interval.division_ids),
            ])
    return path


def write_series_csv(series: Iterable[tuple[datetime, int]], path: Path) -> Path:
    with open(path, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(SERIES_COLUMNS)
        for minute, count in series:
            writer.writerow([format_timestamp(minute), count])
    return path


def build_summary(
    params: dict[str, Any],
    peak: PeakResult,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build the JSON summary for a run."""
    summary = {
        "parameters": params,
        "PeakConcurrentCalls": peak.peak_concurrent,
        "PeakMinuteUtc": format_timestamp(peak.peak_minute) if peak.peak_minute else None,
        "PeakMinutesUtc": [format_timestamp(m) for m in peak.peak_minutes],
        "windowStartUtc": format_timestamp(peak.window_start),
        "windowEndUtc": format_timestamp(peak.window_end),
        "intervalCount": peak.interval_count,
        "generatedAt": format_timestamp(datetime.now(timezone.utc)),
    }
    if extra:
        summary.update(extra)
    return summary


def save_run(
    params: dict[str, Any],
    peak: PeakResult,
    intervals: list[Interval],
    output_dir: str | Path | None = None,
    extra: dict[str, Any] | None = None,
    tool_name: str = "peak",
) -> dict[str, str]:
    """Write the intervals CSV, series CSV and summary JSON for a run.

    Returns:
        Dict mapping artifact name to file path
    """
    storage_dir = _get_storage_dir(output_dir)
    prefix = _generate_prefix(tool_name, params)

    intervals_path = write_intervals_csv(intervals, storage_dir / f"{prefix}_intervals.csv")
    series_path = write_series_csv(peak.series, storage_dir / f"{prefix}_series.csv")

    summary_path = storage_dir / f"{prefix}_summary.json"
    with open(summary_path, "w") as f:
        json.dump(build_summary(params, peak, extra), f, indent=2, default=str)

    return {
        "intervals": str(intervals_path),
        "series": str(series_path),
        "summary": str(summary_path),
    }


def load_records(file_path: str | Path) -> list[dict]:
    """Load conversation records saved as JSON.

    Accepts a bare list, a results page (``{"conversations": [...]}``) or a
    list of such pages.

    Raises:
        FileNotFoundError: If file doesn't exist
        json.JSONDecodeError: If file is not valid JSON
        ValueError: If the JSON has none of the accepted shapes
    """
    with open(file_path) as f:
        data = json.load(f)

    if isinstance(data, dict):
        if "conversations" not in data:
            raise ValueError(f"{file_path}: expected a 'conversations' list")
        return list(data["conversations"] or [])

    if isinstance(data, list):
        records: list[dict] = []
        for item in data:
            if isinstance(item, dict) and "conversations" in item and "conversationId" not in item:
                records.extend(item["conversations"] or [])
            else:
                records.append(item)
        return records

    raise ValueError(f"{file_path}: unsupported JSON shape")
