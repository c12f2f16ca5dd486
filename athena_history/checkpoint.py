# athena_history/checkpoint.py
"""Persisted resume state: the last archived query execution ID per work group.

State document (JSON object stored at the state URI)::

    {
      "work_groups": {
        "primary": {"last_query_execution_id": "..."},
        "analysts": {"last_query_execution_id": "..."}
      },
      ...any other keys are carried through untouched...
    }

Documents written before work groups existed hold a single top-level
``last_query_execution_id``. ``migrate_state_document`` rewrites them into the
nested shape on load, so nothing else needs to know about the old layout.
"""

from __future__ import annotations

import copy
import json
import logging
from typing import Any

from botocore.exceptions import ClientError

from athena_history.regions import BucketRegionResolver
from athena_history.s3_uri import split_s3_uri

logger = logging.getLogger(__name__)

WORK_GROUPS_KEY = "work_groups"
LAST_ID_KEY = "last_query_execution_id"
LEGACY_WORK_GROUP = "primary"

_NOT_FOUND_CODES = ("NoSuchKey", "404", "NotFound")

ERR_NOT_AN_OBJECT = "State document at {} must be a JSON object, got {}"
ERR_WORK_GROUPS_NOT_AN_OBJECT = "State document work_groups must be a JSON object, got {}"


def migrate_state_document(document: dict[str, Any]) -> dict[str, Any]:
    """Return the canonical (nested) form of a state document.

    A null ``work_groups`` is treated as absent; any other non-object value
    raises ValueError.
    """
    migrated = dict(document)
    if WORK_GROUPS_KEY in migrated and migrated[WORK_GROUPS_KEY] is None:
        del migrated[WORK_GROUPS_KEY]
    groups = migrated.get(WORK_GROUPS_KEY, {})
    if not isinstance(groups, dict):
        raise ValueError(ERR_WORK_GROUPS_NOT_AN_OBJECT.format(type(groups).__name__))
    if WORK_GROUPS_KEY not in migrated and LAST_ID_KEY in migrated:
        legacy_id = migrated.pop(LAST_ID_KEY)
        migrated = {WORK_GROUPS_KEY: {LEGACY_WORK_GROUP: {LAST_ID_KEY: legacy_id}}, **migrated}
    return migrated


class Checkpoint:
    """In-memory view of the state document."""

    def __init__(self, document: dict[str, Any] | None = None) -> None:
        self._document: dict[str, Any] = migrate_state_document(copy.deepcopy(document or {}))

    def last_query_execution_id(self, work_group: str) -> str | None:
        entry = self._document.get(WORK_GROUPS_KEY, {}).get(work_group) or {}
        return entry.get(LAST_ID_KEY)

    def work_groups(self) -> dict[str, str | None]:
        groups = self._document.get(WORK_GROUPS_KEY, {})
        return {name: (entry or {}).get(LAST_ID_KEY) for name, entry in groups.items()}

    def update(self, work_group: str, execution_id: str) -> None:
        groups = self._document.setdefault(WORK_GROUPS_KEY, {})
        entry = groups.get(work_group)
        if not isinstance(entry, dict):
            entry = {}
            groups[work_group] = entry
        entry[LAST_ID_KEY] = execution_id

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._document)

    def to_json(self) -> str:
        return json.dumps(self._document)


class CheckpointStore:
    """Load and save the Checkpoint at ``state_uri``; inert when no URI is configured."""

    def __init__(self, state_uri: str | None, resolver: BucketRegionResolver) -> None:
        self.state_uri = state_uri or None
        self._resolver = resolver
        self._checkpoint = Checkpoint()
        if self.state_uri:
            self._bucket, self._key = split_s3_uri(self.state_uri)

    @property
    def checkpoint(self) -> Checkpoint:
        return self._checkpoint

    def load(self) -> Checkpoint:
        if not self.state_uri:
            self._checkpoint = Checkpoint()
            return self._checkpoint

        logger.debug("Loading state from %s", self.state_uri)
        s3 = self._resolver.client_for(self._bucket)
        try:
            response = s3.get_object(Bucket=self._bucket, Key=self._key)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code not in _NOT_FOUND_CODES:
                raise
            logger.warning("No state found at %s", self.state_uri)
            self._checkpoint = Checkpoint()
            return self._checkpoint

        document = json.loads(response["Body"].read())
        if not isinstance(document, dict):
            raise ValueError(ERR_NOT_AN_OBJECT.format(self.state_uri, type(document).__name__))

        self._checkpoint = Checkpoint(document)
        for work_group, last_id in self._checkpoint.work_groups().items():
            logger.info('Loaded last query execution ID for work group "%s": "%s"', work_group, last_id)
        return self._checkpoint

    def save(self, work_group: str, execution_id: str) -> None:
        if not self.state_uri:
            return

        self._checkpoint.update(work_group, execution_id)
        logger.debug("Saving state to %s", self.state_uri)
        s3 = self._resolver.client_for(self._bucket)
        s3.put_object(Bucket=self._bucket, Key=self._key, Body=self._checkpoint.to_json().encode("utf-8"))
        logger.info('Saved first processed query execution ID for work group "%s": "%s"', work_group, execution_id)
