from __future__ import annotations

import re

# e.g., s3://athena-query-history/some/prefix/
_PAT = re.compile(r"^s3://([^/]+)/?(.*)$")

ERR_BAD_S3_URI = "Expected an s3://bucket/key URI; got: {!r}"


def split_s3_uri(uri: str) -> tuple[str, str]:
    """
    Split an S3 URI into (bucket, key). The key may be empty for
    bucket-root URIs such as s3://bucket or s3://bucket/.
    """
    m = _PAT.match(uri or "")
    if not m or not m.group(1):
        raise ValueError(ERR_BAD_S3_URI.format(uri))
    bucket, key = m.groups()
    return bucket, key


def normalize_prefix(prefix: str) -> str:
    """Ensure a non-empty key prefix ends with a single '/'."""
    if not prefix:
        return ""
    return prefix if prefix.endswith("/") else prefix + "/"
