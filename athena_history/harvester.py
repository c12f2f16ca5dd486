# athena_history/harvester.py
"""Incremental harvesting of Athena query execution history into S3.

For every work group, query execution IDs are listed newest first until the
ID recorded by the previous run is reached. Metadata is fetched 50 IDs at a
time and accumulated; every ``flush_size`` records are written as one archive
object, and after each write the checkpoint is saved with the first (newest)
ID seen for the work group in this run.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from typing import Any

from athena_history.checkpoint import CheckpointStore
from athena_history.metadata import MAX_BATCH_GET_SIZE, ExecutionMetadata, MetadataBatchLoader
from athena_history.partition_writer import PartitionWriter
from athena_history.regions import BucketRegionResolver
from athena_history.retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_FLUSH_SIZE = 10_000

ERR_NO_HISTORY_URI = "No history base URI specified"
ERR_BAD_FLUSH_SIZE = "flush_size must be a positive integer, got {!r}"


class ConfigurationError(ValueError):
    """Raised before any remote call when the run is not configured correctly."""


class HistoryHarvester:
    def __init__(
        self,
        athena_client: Any,
        resolver: BucketRegionResolver,
        history_base_uri: str | None,
        *,
        state_uri: str | None = None,
        flush_size: int = DEFAULT_FLUSH_SIZE,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        if not isinstance(flush_size, int) or flush_size < 1:
            raise ValueError(ERR_BAD_FLUSH_SIZE.format(flush_size))
        self._athena = athena_client
        self._retry = retry_policy or RetryPolicy()
        self.history_base_uri = history_base_uri
        self.flush_size = flush_size
        self.checkpoint_store = CheckpointStore(state_uri, resolver)
        self.loader = MetadataBatchLoader(athena_client, self._retry)
        self.writer = PartitionWriter(resolver)

    @property
    def region(self) -> str:
        return self._athena.meta.region_name

    def run(self) -> dict[str, str]:
        """Harvest every work group; return the new resume boundary per flushed group."""
        if not self.history_base_uri:
            raise ConfigurationError(ERR_NO_HISTORY_URI)

        checkpoint = self.checkpoint_store.load()
        boundaries: dict[str, str] = {}
        for work_group in self.list_work_groups():
            first_id = self.harvest_work_group(work_group, checkpoint.last_query_execution_id(work_group))
            if first_id is not None:
                boundaries[work_group] = first_id

        logger.info("Done")
        return boundaries

    def list_work_groups(self) -> list[str]:
        pages = self._paginate(self._athena.list_work_groups)
        return [wg["Name"] for page in pages for wg in page.get("WorkGroups", [])]

    def iter_query_execution_ids(self, work_group: str) -> Iterator[str]:
        """Yield IDs newest first; pages are only requested as the caller advances."""
        for page in self._paginate(self._athena.list_query_executions, WorkGroup=work_group):
            yield from page.get("QueryExecutionIds", [])

    def harvest_work_group(self, work_group: str, last_seen_id: str | None) -> str | None:
        """Archive everything newer than ``last_seen_id``.

        Returns the first (newest) ID processed if anything was written,
        otherwise None.
        """
        logger.debug('Loading query execution history for work group "%s"', work_group)

        first_id: str | None = None
        flushed = False
        ids: list[str] = []
        pending: list[ExecutionMetadata] = []

        for query_execution_id in self.iter_query_execution_ids(work_group):
            if query_execution_id == last_seen_id:
                logger.info('Found the last previously processed query execution ID for work group "%s"', work_group)
                break
            if first_id is None:
                first_id = query_execution_id
            ids.append(query_execution_id)
            if len(ids) == MAX_BATCH_GET_SIZE:
                pending.extend(self.loader.load(ids))
                ids = []
                while len(pending) >= self.flush_size:
                    self._flush(work_group, first_id, pending[: self.flush_size])
                    pending = pending[self.flush_size :]
                    flushed = True

        if ids:
            pending.extend(self.loader.load(ids))
        while pending and first_id is not None:
            self._flush(work_group, first_id, pending[: self.flush_size])
            pending = pending[self.flush_size :]
            flushed = True

        return first_id if flushed else None

    def _flush(self, work_group: str, first_id: str, executions: list[ExecutionMetadata]) -> None:
        self.writer.write(self.history_base_uri, work_group, self.region, executions)
        self.checkpoint_store.save(work_group, first_id)

    def _paginate(self, call: Callable[..., dict[str, Any]], **params: Any) -> Iterator[dict[str, Any]]:
        next_token: str | None = None
        while True:
            kwargs = dict(params)
            if next_token:
                kwargs["NextToken"] = next_token
            page = self._retry.invoke(call, **kwargs)
            yield page
            next_token = page.get("NextToken")
            if not next_token:
                return
