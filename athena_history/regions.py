from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import boto3

logger = logging.getLogger(__name__)

# GetBucketLocation returns an empty constraint for buckets in us-east-1,
# and "EU" for some very old eu-west-1 buckets.
DEFAULT_REGION = "us-east-1"
LEGACY_LOCATION_CONSTRAINTS = {"EU": "eu-west-1"}


def default_s3_client_factory(region_name: str | None = None) -> Any:
    return boto3.client("s3", region_name=region_name)


def location_to_region(location_constraint: str | None) -> str:
    if not location_constraint:
        return DEFAULT_REGION
    return LEGACY_LOCATION_CONSTRAINTS.get(location_constraint, location_constraint)


class BucketRegionResolver:
    """Look up bucket regions once per run and hand out region-pinned S3 clients."""

    def __init__(
        self,
        client_factory: Callable[..., Any] = default_s3_client_factory,
        *,
        lookup_client: Any | None = None,
    ) -> None:
        self._client_factory = client_factory
        self._lookup_client = lookup_client
        self._regions: dict[str, str] = {}
        self._clients: dict[str, Any] = {}

    def resolve(self, bucket: str) -> str:
        region = self._regions.get(bucket)
        if region is None:
            if self._lookup_client is None:
                self._lookup_client = self._client_factory()
            response = self._lookup_client.get_bucket_location(Bucket=bucket)
            region = location_to_region(response.get("LocationConstraint"))
            logger.debug("Detected region of bucket %s as %s", bucket, region)
            self._regions[bucket] = region
        return region

    def client_for(self, bucket: str) -> Any:
        client = self._clients.get(bucket)
        if client is None:
            client = self._client_factory(region_name=self.resolve(bucket))
            self._clients[bucket] = client
        return client
