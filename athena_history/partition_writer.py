# athena_history/partition_writer.py
"""Archive object layout for harvested query execution metadata.

Each flush becomes one gzip-compressed JSON Lines object at::

    <prefix>/region=<region>/month=<YYYY-MM-01>/work_group=<name>/<first id>.json.gz

The ``region=``, ``month=`` and ``work_group=`` path segments are Hive-style
partitions, so the archive can be queried by Athena itself. Timestamps are
written as ``YYYY-MM-DD HH:MM:SS.mmm`` in UTC, the format Hive's TIMESTAMP
type parses, and keys are snake_case to match the existing table schema.
"""

from __future__ import annotations

import gzip
import io
import json
import logging
import re
from collections.abc import Mapping, Sequence
from datetime import date, datetime
from typing import Any

from athena_history.metadata import ExecutionMetadata, as_utc
from athena_history.regions import BucketRegionResolver
from athena_history.s3_uri import normalize_prefix, split_s3_uri

logger = logging.getLogger(__name__)

ERR_EMPTY_BATCH = "Cannot write an empty batch of query executions"

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def snake_case(name: str) -> str:
    """QueryExecutionId -> query_execution_id, S3AclOption -> s3_acl_option."""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def _snake_keys(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {snake_case(str(k)): _snake_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_snake_keys(v) for v in value]
    return value


def format_timestamp(value: datetime) -> str:
    utc = as_utc(value)
    return f"{utc:%Y-%m-%d %H:%M:%S}.{utc.microsecond // 1000:03d}"


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, date):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def archive_record(execution: ExecutionMetadata, region: str) -> dict[str, Any]:
    record = _snake_keys(execution.raw)
    status = dict(record.get("status") or {})
    status["submission_date_time"] = format_timestamp(execution.submission_date_time)
    if execution.completion_date_time is not None:
        status["completion_date_time"] = format_timestamp(execution.completion_date_time)
    else:
        status["completion_date_time"] = None
    record["status"] = status
    record["region"] = region
    return record


def encode_archive_body(executions: Sequence[ExecutionMetadata], region: str) -> bytes:
    buf = io.BytesIO()
    with gzip.GzipFile(fileobj=buf, mode="wb") as gz:
        for execution in executions:
            line = json.dumps(archive_record(execution, region), default=_json_default)
            gz.write(line.encode("utf-8") + b"\n")
    return buf.getvalue()


def partition_key(prefix: str, region: str, work_group: str, first: ExecutionMetadata) -> str:
    month = first.submission_date_time.strftime("%Y-%m-01")
    return (
        f"{normalize_prefix(prefix)}region={region}/month={month}/"
        f"work_group={work_group}/{first.query_execution_id}.json.gz"
    )


class PartitionWriter:
    def __init__(self, resolver: BucketRegionResolver) -> None:
        self._resolver = resolver

    def write(
        self,
        destination_uri: str,
        work_group: str,
        region: str,
        executions: Sequence[ExecutionMetadata],
    ) -> ExecutionMetadata:
        """Write one archive object and return the first execution in it."""
        if not executions:
            raise ValueError(ERR_EMPTY_BATCH)

        first = executions[0]
        bucket, prefix = split_s3_uri(destination_uri)
        key = partition_key(prefix, region, work_group, first)
        body = encode_archive_body(executions, region)

        logger.debug("Saving execution metadata for %d queries to s3://%s/%s", len(executions), bucket, key)
        s3 = self._resolver.client_for(bucket)
        s3.put_object(Bucket=bucket, Key=key, Body=body)
        logger.info("Saved execution metadata for %d queries", len(executions))
        return first
