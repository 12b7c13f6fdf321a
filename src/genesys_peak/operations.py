"""Peak concurrency run driver.

Plans the analysis window into chunks, runs one analytics job per chunk,
extracts and merges intervals, and hands the merged set to the sweep-line.
All functions are async where they touch the API and return plain models.
"""

import asyncio
import calendar
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable, Optional

from pydantic import BaseModel, Field, model_validator

from genesys_peak.client import GenesysAuthError, GenesysClient, GenesysClientError
from genesys_peak.dedup import IntervalStore
from genesys_peak.extract import IntervalExtractor, ParticipantPredicate
from genesys_peak.jobs import (
    DEFAULT_MAX_POLL_WAIT,
    DEFAULT_PAGE_SIZE,
    DEFAULT_POLL_INTERVAL,
    VOICE_SEGMENT_FILTER,
    iter_conversation_details,
    run_job,
)
from genesys_peak.models import Interval, JobChunk, PeakResult, parse_timestamp
from genesys_peak.sweep import compute_peak

logger = logging.getLogger(__name__)


class ChunkFailurePolicy(str, Enum):
    ABORT = "abort"
    SKIP = "skip"


class ChunkFailedError(GenesysClientError):
    """A chunk could not be processed; wraps the underlying error."""

    def __init__(self, chunk: JobChunk, cause: Exception):
        status = getattr(cause, "status_code", None)
        detail = f" (HTTP {status})" if status else ""
        super().__init__(f"Chunk {chunk.interval} failed{detail}: {cause}")
        self.chunk = chunk
        self.cause = cause
        self.status_code = status


def month_window(month: str) -> tuple[datetime, datetime]:
    """Return the UTC ``[start, end)`` window for a ``YYYY-MM`` month."""
    try:
        year_str, month_str = month.split("-")
        year, month_num = int(year_str), int(month_str)
    except ValueError as e:
        raise ValueError(f"Invalid month {month!r}, expected YYYY-MM") from e
    if not 1 <= month_num <= 12:
        raise ValueError(f"Invalid month {month!r}, expected YYYY-MM")

    days = calendar.monthrange(year, month_num)[1]
    start = datetime(year, month_num, 1, tzinfo=timezone.utc)
    return start, start + timedelta(days=days)


def build_chunks(start: datetime, end: datetime, chunk_days: int) -> list[JobChunk]:
    """Split ``[start, end)`` into contiguous chunks of ``chunk_days`` days.

    The last chunk is shortened so the chunks cover the window exactly once.
    """
    if chunk_days < 1:
        raise ValueError("chunk_days must be at least 1")
    if end <= start:
        raise ValueError("window end must be after window start")

    step = timedelta(days=chunk_days)
    chunks = []
    cursor = start
    while cursor < end:
        chunk_end = min(cursor + step, end)
        chunks.append(JobChunk(start=cursor, end=chunk_end))
        cursor = chunk_end
    return chunks


class RunParameters(BaseModel):
    """Inputs of one peak concurrency run."""

    window_start: datetime
    window_end: datetime
    chunk_days: int = Field(default=7, ge=1)
    page_size: int = Field(default=DEFAULT_PAGE_SIZE, ge=1)
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL, gt=0)
    max_poll_wait: float = Field(default=DEFAULT_MAX_POLL_WAIT, gt=0)
    loose: bool = False
    media_filter: bool = True
    on_chunk_failure: ChunkFailurePolicy = ChunkFailurePolicy.ABORT
    max_parallel_chunks: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def _check_window(self) -> "RunParameters":
        for name in ("window_start", "window_end"):
            value = getattr(self, name)
            if value.tzinfo is None:
                setattr(self, name, value.replace(tzinfo=timezone.utc))
        if self.window_end <= self.window_start:
            raise ValueError("window end must be after window start")
        return self

    @classmethod
    def for_month(cls, month: str, **kwargs) -> "RunParameters":
        start, end = month_window(month)
        return cls(window_start=start, window_end=end, **kwargs)


class ChunkReport(BaseModel):
    interval: str
    job_pages: int = 0
    conversations: int = 0
    intervals_extracted: int = 0
    new_intervals: int = 0
    error: Optional[str] = None


class RunReport(BaseModel):
    parameters: RunParameters
    peak: PeakResult
    intervals: list[Interval]
    chunks: list[ChunkReport] = Field(default_factory=list)

    @property
    def failed_chunks(self) -> list[ChunkReport]:
        return [c for c in self.chunks if c.error]


async def process_chunk(
    client: GenesysClient,
    chunk: JobChunk,
    params: RunParameters,
    extractor: IntervalExtractor,
    store: IntervalStore,
    report: ChunkReport | None = None,
) -> ChunkReport:
    """Run one chunk's job and merge its intervals into the shared store.

    Intervals are held back until the job is fully drained, so a chunk that
    fails midway contributes nothing to the store. Counters on ``report``
    reflect how far the chunk got either way.
    """
    if report is None:
        report = ChunkReport(interval=chunk.interval)
    logger.info("Chunk %s: submitting job", chunk.interval)

    pending: list[Interval] = []
    async for page in run_job(
        client,
        chunk,
        page_size=params.page_size,
        poll_interval=params.poll_interval,
        max_wait=params.max_poll_wait,
        media_filter=params.media_filter,
    ):
        report.job_pages += 1
        report.conversations += len(page)
        intervals = extractor.extract_all(page)
        report.intervals_extracted += len(intervals)
        pending.extend(intervals)
        logger.info(
            "Chunk %s: page %d, %d intervals extracted",
            chunk.interval, report.job_pages, len(intervals),
        )

    report.new_intervals = store.merge_all(pending)
    logger.info(
        "Chunk %s: %d new intervals, %d unique so far",
        chunk.interval, report.new_intervals, len(store),
    )
    return report


async def _gather_or_cancel(coroutines) -> list:
    """Run coroutines concurrently; on the first failure cancel the rest and re-raise."""
    tasks = [asyncio.ensure_future(coro) for coro in coroutines]
    done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    if pending:
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            if task.exception() is not None:
                raise task.exception()
    return [task.result() for task in tasks]


async def run_peak_analysis(
    client: GenesysClient,
    params: RunParameters,
    predicate: ParticipantPredicate | None = None,
) -> RunReport:
    """Compute peak concurrent calls over the run window.

    Raises:
        ChunkFailedError: Under the abort policy, for the first failing chunk
    """
    chunks = build_chunks(params.window_start, params.window_end, params.chunk_days)
    extractor = IntervalExtractor(predicate=predicate, loose=params.loose)
    store = IntervalStore()
    semaphore = asyncio.Semaphore(params.max_parallel_chunks)

    logger.info(
        "Analyzing %s/%s in %d chunk(s) of %d day(s)",
        params.window_start.isoformat(), params.window_end.isoformat(), len(chunks), params.chunk_days,
    )

    async def _guarded(index: int, chunk: JobChunk) -> ChunkReport:
        async with semaphore:
            logger.info("Chunk %d/%d: %s", index, len(chunks), chunk.interval)
            report = ChunkReport(interval=chunk.interval)
            try:
                return await process_chunk(client, chunk, params, extractor, store, report=report)
            except GenesysAuthError:
                raise
            except GenesysClientError as e:
                if params.on_chunk_failure is ChunkFailurePolicy.ABORT:
                    raise ChunkFailedError(chunk, e) from e
                logger.error("Chunk %s failed, skipping: %s", chunk.interval, e)
                report.error = str(e)
                return report

    if params.max_parallel_chunks == 1:
        reports = [await _guarded(i, chunk) for i, chunk in enumerate(chunks, start=1)]
    else:
        reports = await _gather_or_cancel(
            _guarded(i, chunk) for i, chunk in enumerate(chunks, start=1)
        )

    intervals = store.intervals()
    peak = compute_peak(intervals, params.window_start, params.window_end)
    logger.info(
        "Peak concurrent calls: %d at %s (%d unique intervals)",
        peak.peak_concurrent, peak.peak_minute, len(intervals),
    )
    return RunReport(parameters=params, peak=peak, intervals=intervals, chunks=reports)


def analyze_conversations(
    records: Iterable[dict],
    window_start: datetime,
    window_end: datetime,
    loose: bool = False,
    predicate: ParticipantPredicate | None = None,
) -> tuple[PeakResult, list[Interval]]:
    """Run extraction, merging and the sweep over already-fetched records."""
    extractor = IntervalExtractor(predicate=predicate, loose=loose)
    store = IntervalStore()
    for record in records:
        store.merge_all(extractor.extract(record))
    intervals = store.intervals()
    return compute_peak(intervals, window_start, window_end), intervals


async def run_details_query(
    client: GenesysClient,
    window_start: datetime,
    window_end: datetime,
    page_size: int = DEFAULT_PAGE_SIZE,
    loose: bool = False,
    media_filter: bool = True,
    max_pages: int | None = None,
) -> RunReport:
    """Compute peak concurrency using the synchronous details query.

    Meant for small validation windows where a job would be overkill.
    """
    params = RunParameters(
        window_start=window_start,
        window_end=window_end,
        page_size=page_size,
        loose=loose,
        media_filter=media_filter,
    )
    chunk = JobChunk(start=params.window_start, end=params.window_end)
    extractor = IntervalExtractor(loose=loose)
    store = IntervalStore()
    report = ChunkReport(interval=chunk.interval)

    async for page in iter_conversation_details(
        client,
        chunk.interval,
        page_size=page_size,
        segment_filters=VOICE_SEGMENT_FILTER if media_filter else None,
        max_pages=max_pages,
    ):
        report.job_pages += 1
        report.conversations += len(page)
        intervals = extractor.extract_all(page)
        report.intervals_extracted += len(intervals)
        report.new_intervals += store.merge_all(intervals)

    intervals = store.intervals()
    peak = compute_peak(intervals, params.window_start, params.window_end)
    return RunReport(parameters=params, peak=peak, intervals=intervals, chunks=[report])


def parse_window_bound(value: str) -> datetime:
    """Parse a CLI window bound (date or ISO timestamp) as UTC."""
    dt = parse_timestamp(value)
    if dt is None:
        raise ValueError(f"Invalid date/time {value!r}, expected ISO-8601 (e.g. 2024-02-01 or 2024-02-01T00:00:00Z)")
    return dt
