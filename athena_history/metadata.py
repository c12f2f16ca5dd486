# athena_history/metadata.py
from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from athena_history.retry import RetryPolicy

logger = logging.getLogger(__name__)

# BatchGetQueryExecution accepts at most 50 IDs per call.
MAX_BATCH_GET_SIZE = 50

ERR_BATCH_TOO_LARGE = "BatchGetQueryExecution accepts at most {} IDs per call; got {}"
ERR_NO_SUBMISSION_TIME = "Query execution {} has no Status.SubmissionDateTime"


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class ExecutionMetadata:
    """One QueryExecution record from Athena.

    Only the ID and the two status timestamps are interpreted; everything else
    rides along untouched in ``raw``.
    """

    query_execution_id: str
    submission_date_time: datetime
    completion_date_time: datetime | None
    raw: Mapping[str, Any] = field(repr=False, compare=False)

    @classmethod
    def from_api(cls, record: Mapping[str, Any]) -> ExecutionMetadata:
        status = record.get("Status") or {}
        submitted = status.get("SubmissionDateTime")
        if submitted is None:
            raise ValueError(ERR_NO_SUBMISSION_TIME.format(record.get("QueryExecutionId")))
        completed = status.get("CompletionDateTime")
        return cls(
            query_execution_id=record["QueryExecutionId"],
            submission_date_time=as_utc(submitted),
            completion_date_time=as_utc(completed) if completed is not None else None,
            raw=record,
        )


class MetadataBatchLoader:
    def __init__(self, athena_client: Any, retry_policy: RetryPolicy) -> None:
        self._athena = athena_client
        self._retry = retry_policy

    def load(self, query_execution_ids: Sequence[str]) -> list[ExecutionMetadata]:
        """Fetch full metadata for up to 50 query executions, in API order.

        IDs Athena reports as unprocessed are requested once more; the records
        are then put back in the order the IDs were given. Whatever is still
        unprocessed after that is logged and left out.
        """
        ids = list(query_execution_ids)
        if len(ids) > MAX_BATCH_GET_SIZE:
            raise ValueError(ERR_BATCH_TOO_LARGE.format(MAX_BATCH_GET_SIZE, len(ids)))
        if not ids:
            return []

        logger.debug("Loading query execution metadata for %d query executions", len(ids))
        records, unprocessed = self._batch_get(ids)

        retry_ids = [item["QueryExecutionId"] for item in unprocessed if item.get("QueryExecutionId")]
        if retry_ids:
            logger.debug("Retrying %d unprocessed query executions", len(retry_ids))
            retried, unprocessed = self._batch_get(retry_ids)
            position = {query_execution_id: i for i, query_execution_id in enumerate(ids)}
            records = sorted(records + retried, key=lambda r: position.get(r["QueryExecutionId"], len(ids)))

        for item in unprocessed:
            logger.warning(
                "Athena did not return query execution %s: %s %s",
                item.get("QueryExecutionId"),
                item.get("ErrorCode"),
                item.get("ErrorMessage"),
            )

        executions = [ExecutionMetadata.from_api(q) for q in records]
        if executions:
            last = executions[-1].submission_date_time
            logger.debug("Last submission time of the batch was %s", last.strftime("%Y-%m-%d %H:%M:%S UTC"))
        return executions

    def _batch_get(self, ids: list[str]) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        response = self._retry.invoke(self._athena.batch_get_query_execution, QueryExecutionIds=ids)
        return list(response.get("QueryExecutions", [])), list(response.get("UnprocessedQueryExecutionIds") or [])
