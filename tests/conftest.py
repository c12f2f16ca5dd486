"""In-memory stand-ins for the boto3 Athena and S3 clients.

They accept the same keyword arguments and return the same response shapes
as the real clients for the handful of operations the harvester uses.
"""

from __future__ import annotations

import gzip
import io
import json
from collections import defaultdict
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any

import pytest
from botocore.exceptions import ClientError

SUBMISSION_TIME = datetime(2018, 12, 11, 10, 9, 8, tzinfo=timezone.utc)
COMPLETION_TIME = datetime(2018, 12, 11, 10, 9, 8, tzinfo=timezone.utc)


def client_error(code: str, operation: str, status: int = 400) -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation,
    )


def make_ids(n: int, offset: int = 0) -> list[str]:
    return [f"q{i + offset:02x}" for i in range(n)]


def read_archive(body: bytes) -> list[dict[str, Any]]:
    return [json.loads(line) for line in gzip.decompress(body).decode("utf-8").splitlines()]


class FakeAthena:
    def __init__(
        self,
        ids_by_group: dict[str, list[str]] | None = None,
        *,
        work_groups: list[str] | None = None,
        region: str = "us-stubbed-1",
        page_size: int = 30,
        submission_time: datetime | None = SUBMISSION_TIME,
        completion_time: datetime | None = COMPLETION_TIME,
    ) -> None:
        self.ids_by_group = ids_by_group if ids_by_group is not None else {"primary": make_ids(11)}
        self.work_groups = work_groups if work_groups is not None else list(self.ids_by_group) or ["primary"]
        self.meta = SimpleNamespace(region_name=region)
        self.page_size = page_size
        self.submission_time = submission_time
        self.completion_time = completion_time
        self.calls: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.throttle: dict[str, int] = {}

    def _maybe_throttle(self, operation: str) -> None:
        remaining = self.throttle.get(operation, 0)
        if remaining > 0:
            self.throttle[operation] = remaining - 1
            raise client_error("ThrottlingException", operation)

    def list_work_groups(self, **kwargs: Any) -> dict[str, Any]:
        self.calls["list_work_groups"].append(kwargs)
        self._maybe_throttle("list_work_groups")
        return {"WorkGroups": [{"Name": name, "State": "ENABLED"} for name in self.work_groups]}

    def list_query_executions(self, **kwargs: Any) -> dict[str, Any]:
        self.calls["list_query_executions"].append(kwargs)
        self._maybe_throttle("list_query_executions")
        ids = self.ids_by_group.get(kwargs["WorkGroup"], [])
        start = int(kwargs.get("NextToken", 0))
        end = start + self.page_size
        page: dict[str, Any] = {"QueryExecutionIds": ids[start:end]}
        if end < len(ids):
            page["NextToken"] = str(end)
        return page

    def batch_get_query_execution(self, **kwargs: Any) -> dict[str, Any]:
        self.calls["batch_get_query_execution"].append(kwargs)
        self._maybe_throttle("batch_get_query_execution")
        return {
            "QueryExecutions": [self.execution(i) for i in kwargs["QueryExecutionIds"]],
            "UnprocessedQueryExecutionIds": [],
        }

    def execution(self, query_execution_id: str) -> dict[str, Any]:
        status: dict[str, Any] = {"State": "SUCCEEDED", "SubmissionDateTime": self.submission_time}
        if self.completion_time is not None:
            status["CompletionDateTime"] = self.completion_time
        return {
            "QueryExecutionId": query_execution_id,
            "Query": "SELECT 1",
            "StatementType": "DML",
            "ResultConfiguration": {"OutputLocation": f"s3://results/{query_execution_id}.csv"},
            "QueryExecutionContext": {"Database": "default"},
            "Status": status,
            "Statistics": {"DataScannedInBytes": 1024, "EngineExecutionTimeInMillis": 250},
            "WorkGroup": "primary",
        }

    def fetched_batches(self) -> list[list[str]]:
        return [call["QueryExecutionIds"] for call in self.calls["batch_get_query_execution"]]


class FakeS3:
    def __init__(self, locations: dict[str, str | None] | None = None) -> None:
        self.locations = locations or {}
        self.objects: dict[tuple[str, str], bytes] = {}
        self.puts: list[dict[str, Any]] = []
        self.location_lookups: list[str] = []
        self.get_error: ClientError | None = None

    def get_bucket_location(self, *, Bucket: str) -> dict[str, Any]:
        self.location_lookups.append(Bucket)
        return {"LocationConstraint": self.locations.get(Bucket, "no-region-1")}

    def get_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:
        if self.get_error is not None:
            raise self.get_error
        try:
            body = self.objects[(Bucket, Key)]
        except KeyError:
            raise client_error("NoSuchKey", "GetObject", 404) from None
        return {"Body": io.BytesIO(body)}

    def put_object(self, *, Bucket: str, Key: str, Body: bytes) -> dict[str, Any]:
        self.puts.append({"Bucket": Bucket, "Key": Key, "Body": Body})
        self.objects[(Bucket, Key)] = Body
        return {}

    def puts_to(self, bucket: str, key_prefix: str = "") -> list[dict[str, Any]]:
        return [p for p in self.puts if p["Bucket"] == bucket and p["Key"].startswith(key_prefix)]


class FakeS3Factory:
    """Hands out the same FakeS3 for every region, recording the regions asked for."""

    def __init__(self, s3: FakeS3) -> None:
        self.s3 = s3
        self.regions: list[str | None] = []

    def __call__(self, region_name: str | None = None) -> FakeS3:
        self.regions.append(region_name)
        return self.s3


@pytest.fixture
def athena() -> FakeAthena:
    return FakeAthena()


@pytest.fixture
def s3() -> FakeS3:
    return FakeS3({"athena-query-history": "hi-story-3", "state": "st-ate-9"})


@pytest.fixture
def s3_factory(s3: FakeS3) -> FakeS3Factory:
    return FakeS3Factory(s3)


@pytest.fixture
def sleeps() -> list[float]:
    return []
