"""Shared fixtures: recorded conversation data and a fake analytics API."""

import json
import re
from pathlib import Path

import httpx
import pytest

from genesys_peak.auth.token_auth import TokenAuthProvider
from genesys_peak.client import GenesysClient, RetryPolicy
from genesys_peak.models import parse_timestamp

FIXTURES = Path(__file__).parent / "fixtures"

_JOB_PATH = re.compile(r"/api/v2/analytics/conversations/details/jobs/([^/]+)(/results)?$")


class RecordingSleep:
    """Async sleep stand-in that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeAnalyticsApi:
    """In-memory conversation details jobs API.

    A job returns every record whose conversation overlaps the job interval,
    so conversations spanning a chunk boundary show up in both chunks.
    Jobs listed in ``lost_cursor_intervals`` answer 404 to every page after
    the first.
    """

    def __init__(
        self,
        records: list[dict],
        pending_polls: int = 1,
        reject_filtered: bool = False,
        failing_intervals: tuple[str, ...] = (),
        lost_cursor_intervals: tuple[str, ...] = (),
    ):
        self.records = records
        self.pending_polls = pending_polls
        self.reject_filtered = reject_filtered
        self.failing_intervals = failing_intervals
        self.lost_cursor_intervals = lost_cursor_intervals
        self.jobs: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []

    def _overlapping(self, interval: str) -> list[dict]:
        start_str, end_str = interval.split("/")
        start, end = parse_timestamp(start_str), parse_timestamp(end_str)
        return [
            r for r in self.records
            if parse_timestamp(r["conversationStart"]) < end
            and parse_timestamp(r["conversationEnd"]) > start
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and path.endswith("/details/jobs"):
            body = json.loads(request.content)
            if self.reject_filtered and "segmentFilters" in body:
                return httpx.Response(400, json={"message": "segmentFilters not supported"})
            job_id = f"job-{len(self.jobs) + 1}"
            self.jobs[job_id] = {
                "interval": body["interval"],
                "records": self._overlapping(body["interval"]),
                "polls": 0,
            }
            return httpx.Response(202, json={"jobId": job_id})

        match = _JOB_PATH.search(path)
        if request.method == "GET" and match:
            job = self.jobs[match.group(1)]
            if match.group(2):
                page_size = int(request.url.params["pageSize"])
                offset = int(request.url.params.get("cursor", 0))
                if offset and job["interval"] in self.lost_cursor_intervals:
                    return httpx.Response(404, json={"message": "cursor not found"})
                page = job["records"][offset:offset + page_size]
                result = {"conversations": page}
                if offset + page_size < len(job["records"]):
                    result["cursor"] = str(offset + page_size)
                return httpx.Response(200, json=result)

            job["polls"] += 1
            if job["interval"] in self.failing_intervals:
                return httpx.Response(200, json={"state": "FAILED"})
            if job["polls"] <= self.pending_polls:
                return httpx.Response(200, json={"state": "RUNNING"})
            return httpx.Response(200, json={"state": "FULFILLED"})

        return httpx.Response(404, json={"message": f"no route for {request.method} {path}"})

    def client(self, sleep=None, max_attempts: int = 6) -> GenesysClient:
        return make_client(self.handler, sleep=sleep, max_attempts=max_attempts)


def make_client(handler, sleep=None, max_attempts: int = 6) -> GenesysClient:
    return GenesysClient(
        auth=TokenAuthProvider("test-token", region="mypurecloud.com"),
        retry_policy=RetryPolicy(max_attempts=max_attempts),
        transport=httpx.MockTransport(handler),
        sleep=sleep or RecordingSleep(),
    )


@pytest.fixture
def feb_records() -> list[dict]:
    with open(FIXTURES / "conversations_feb2024.json") as f:
        return json.load(f)


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()
