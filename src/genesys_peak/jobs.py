"""Asynchronous conversation-details jobs and the synchronous details query.

A job goes Created -> Polling -> Fulfilled -> Draining -> Done, or ends in
a failure state. Result pages are drained strictly in cursor order and the
absence of a cursor is the only end-of-results signal.
"""

import logging
from typing import Any, AsyncIterator

from genesys_peak.client import GenesysAPIError, GenesysClient, GenesysClientError
from genesys_peak.models import JobChunk, JobState

logger = logging.getLogger(__name__)

JOBS_ENDPOINT = "analytics/conversations/details/jobs"
QUERY_ENDPOINT = "analytics/conversations/details/query"

DEFAULT_PAGE_SIZE = 100
DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_MAX_POLL_WAIT = 3600.0

# Statuses meaning "the server did not understand this body"
_REJECTED_BODY_STATUSES = {400, 422}

VOICE_SEGMENT_FILTER = [
    {
        "type": "and",
        "predicates": [
            {"type": "dimension", "dimension": "mediaType", "operator": "matches", "value": "voice"},
        ],
    }
]


class JobFailedError(GenesysClientError):
    """The analytics job reached a failed, cancelled or expired state."""

    def __init__(self, job_id: str, state: JobState):
        super().__init__(f"Analytics job {job_id} ended in state {state.value}")
        self.job_id = job_id
        self.state = state


class JobTimeoutError(GenesysClientError):
    """The analytics job did not complete within the poll budget."""

    def __init__(self, job_id: str, waited: float):
        super().__init__(f"Analytics job {job_id} did not complete within {waited:.0f}s")
        self.job_id = job_id
        self.waited = waited


def build_job_body(chunk: JobChunk, media_filter: bool = True) -> dict[str, Any]:
    """Build the job creation body for a chunk."""
    body: dict[str, Any] = {
        "interval": chunk.interval,
        "order": "asc",
        "orderBy": "conversationStart",
    }
    if media_filter:
        body["segmentFilters"] = VOICE_SEGMENT_FILTER
    return body


async def create_job(client: GenesysClient, chunk: JobChunk, media_filter: bool = True) -> str:
    """Submit a details job for a chunk and return its id.

    If the server rejects the filtered body, the job is resubmitted once
    with the minimal unfiltered body.
    """
    body = build_job_body(chunk, media_filter)
    try:
        result = await client.post(JOBS_ENDPOINT, json_data=body)
    except GenesysAPIError as e:
        if not media_filter or e.status_code not in _REJECTED_BODY_STATUSES:
            raise
        logger.warning(
            "Filtered job body rejected for %s (%s); retrying without segment filters",
            chunk.interval, e.status_code,
        )
        result = await client.post(JOBS_ENDPOINT, json_data=build_job_body(chunk, media_filter=False))

    job_id = result.get("jobId") or result.get("id")
    if not job_id:
        raise GenesysAPIError(f"Job creation response did not include a job id: {result}")
    logger.info("Created job %s for %s", job_id, chunk.interval)
    return job_id


async def get_job_state(client: GenesysClient, job_id: str) -> JobState:
    result = await client.get(f"{JOBS_ENDPOINT}/{job_id}")
    return JobState.normalize(result.get("state"))


async def wait_for_job(
    client: GenesysClient,
    job_id: str,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    max_wait: float = DEFAULT_MAX_POLL_WAIT,
) -> JobState:
    """Poll a job until it reaches a terminal state.

    Waiting is measured as the sum of poll sleeps, so the budget holds no
    matter how long individual requests take.

    Raises:
        JobFailedError: If the job fails, is cancelled or expires
        JobTimeoutError: If the poll budget is exhausted first
    """
    waited = 0.0
    previous: JobState | None = None

    while True:
        state = await get_job_state(client, job_id)
        if state is not previous:
            logger.info("Job %s state: %s", job_id, state.value)
            previous = state

        if state.is_failure:
            raise JobFailedError(job_id, state)
        if state is JobState.FULFILLED:
            return state
        if waited >= max_wait:
            raise JobTimeoutError(job_id, waited)

        await client.sleep(poll_interval)
        waited += poll_interval


async def iter_job_pages(
    client: GenesysClient,
    job_id: str,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> AsyncIterator[list[dict]]:
    """Yield the conversation list of each results page in cursor order."""
    cursor: str | None = None
    page_number = 0

    while True:
        params: dict[str, Any] = {"pageSize": page_size}
        if cursor:
            params["cursor"] = cursor

        result = await client.get(f"{JOBS_ENDPOINT}/{job_id}/results", params=params)
        page_number += 1
        conversations = result.get("conversations") or []
        logger.info("Job %s page %d: %d conversations", job_id, page_number, len(conversations))
        yield conversations

        cursor = result.get("cursor")
        if not cursor:
            return


async def run_job(
    client: GenesysClient,
    chunk: JobChunk,
    page_size: int = DEFAULT_PAGE_SIZE,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    max_wait: float = DEFAULT_MAX_POLL_WAIT,
    media_filter: bool = True,
) -> AsyncIterator[list[dict]]:
    """Submit, await and drain one chunk's job, yielding result pages."""
    job_id = await create_job(client, chunk, media_filter)
    await wait_for_job(client, job_id, poll_interval, max_wait)
    async for page in iter_job_pages(client, job_id, page_size):
        yield page


# =============================================================================
# Synchronous details query
# =============================================================================


async def query_conversation_details(
    client: GenesysClient,
    interval: str,
    page_size: int = DEFAULT_PAGE_SIZE,
    page_number: int = 1,
    segment_filters: list[dict] | None = None,
    conversation_filters: list[dict] | None = None,
) -> dict[str, Any]:
    """Run one page of the synchronous details query.

    Args:
        client: API client
        interval: ISO interval string ``start/end``
        page_size: Records per page
        page_number: 1-based page number
        segment_filters: Optional segment filter predicate trees
        conversation_filters: Optional conversation filter predicate trees

    Returns:
        Raw response dict (``conversations`` and ``totalHits`` when present)
    """
    body: dict[str, Any] = {
        "interval": interval,
        "order": "asc",
        "orderBy": "conversationStart",
        "paging": {"pageSize": page_size, "pageNumber": page_number},
    }
    if segment_filters:
        body["segmentFilters"] = segment_filters
    if conversation_filters:
        body["conversationFilters"] = conversation_filters
    return await client.post(QUERY_ENDPOINT, json_data=body)


async def iter_conversation_details(
    client: GenesysClient,
    interval: str,
    page_size: int = DEFAULT_PAGE_SIZE,
    segment_filters: list[dict] | None = None,
    max_pages: int | None = None,
) -> AsyncIterator[list[dict]]:
    """Yield details-query pages until a short or empty page."""
    page_number = 1
    while max_pages is None or page_number <= max_pages:
        result = await query_conversation_details(
            client, interval, page_size, page_number, segment_filters
        )
        conversations = result.get("conversations") or []
        logger.info("Details query page %d: %d conversations", page_number, len(conversations))
        if conversations:
            yield conversations
        if len(conversations) < page_size:
            return
        page_number += 1
