"""Retry wrapper for throttled AWS API calls.

Athena rate-limits its control-plane APIs aggressively. Every remote call the
harvester makes goes through ``RetryPolicy.invoke`` which retries throttling
errors with capped exponential backoff (1, 2, 4, 8, 16, 16, ... seconds) and
lets every other error propagate untouched.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any, TypeVar

from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

THROTTLING_ERROR_CODES = frozenset({"ThrottlingException", "TooManyRequestsException"})
DEFAULT_BACKOFF_CAP_SECONDS = 16


def is_throttling_error(exc: BaseException) -> bool:
    if not isinstance(exc, ClientError):
        return False
    code = exc.response.get("Error", {}).get("Code", "")
    return code in THROTTLING_ERROR_CODES


def backoff_delay(attempt: int, cap: int = DEFAULT_BACKOFF_CAP_SECONDS) -> int:
    """Delay before retry number ``attempt`` (1-based): min(2^(attempt-1), cap)."""
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    return min(2 ** (attempt - 1), cap)


class RetryPolicy:
    """Retry throttled calls; unbounded unless ``max_attempts`` is given."""

    def __init__(
        self,
        *,
        sleep: Callable[[float], Any] = time.sleep,
        cap: int = DEFAULT_BACKOFF_CAP_SECONDS,
        max_attempts: int | None = None,
    ) -> None:
        if max_attempts is not None and max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        self._sleep = sleep
        self._cap = cap
        self._max_attempts = max_attempts

    def invoke(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        retries = 0
        while True:
            try:
                return fn(*args, **kwargs)
            except ClientError as exc:
                if not is_throttling_error(exc):
                    raise
                if self._max_attempts is not None and retries + 1 >= self._max_attempts:
                    logger.error("Giving up after %d throttled attempt(s) of %s", retries + 1, _name(fn))
                    raise
                retries += 1
                delay = backoff_delay(retries, self._cap)
                logger.warning(
                    "Throttled calling %s (attempt %d); backing off %ds",
                    _name(fn),
                    retries,
                    delay,
                )
                self._sleep(delay)


def _name(fn: Callable[..., Any]) -> str:
    return getattr(fn, "__name__", type(fn).__name__)
