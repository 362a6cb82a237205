"""
Bounded polling with exponential backoff.

Authorizations and orders settle out-of-band on the CA side, so the client
re-reads them until they leave a transient status.  The loop is bounded by
``RetryPolicy.max_attempts``; a ``Retry-After`` header from the CA always
wins over the computed delay.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

import requests
from urllib3.exceptions import InvalidHeader
from urllib3.util.retry import Retry

from acmelib.errors import PollTimeout, TransportFailure

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 10
    initial_interval: float = 1.0
    backoff_factor: float = 2.0
    max_interval: float = 30.0

    def interval(self, attempt: int) -> float:
        """Default delay after the *attempt*-th (0-based) unsettled read."""
        return min(self.initial_interval * self.backoff_factor ** attempt, self.max_interval)

    @classmethod
    def from_settings(cls, settings=None) -> "RetryPolicy":
        if settings is None:
            from acmelib.config import settings  # noqa: PLC0415
        return cls(
            max_attempts=settings.POLL_MAX_ATTEMPTS,
            initial_interval=settings.POLL_INITIAL_INTERVAL,
            backoff_factor=settings.POLL_BACKOFF_FACTOR,
            max_interval=settings.POLL_MAX_INTERVAL,
        )


def retry_after_seconds(resp: Optional[requests.Response], default: float) -> float:
    """
    Seconds to wait according to the response's ``Retry-After`` header.

    Handles both delta-seconds and HTTP-date forms; falls back to *default*
    when the header is absent or unparsable.
    """
    if resp is None:
        return default
    value = resp.headers.get("Retry-After")
    if not value:
        return default
    try:
        return max(0.0, float(Retry().parse_retry_after(value)))
    except (InvalidHeader, ValueError, OverflowError):
        logger.debug("Ignoring unparsable Retry-After header %r", value)
        return default


def poll(
    fetch: Callable[[], tuple[T, Optional[requests.Response]]],
    settled: Callable[[T], bool],
    policy: RetryPolicy,
    what: str = "resource",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call *fetch* until *settled* accepts the resource it returns.

    *fetch* returns ``(resource, response)``; the response is only consulted
    for ``Retry-After``.  A ``TransportFailure`` consumes one attempt.  Any
    other exception (problem documents, malformed bodies) propagates at once,
    as does whatever *settled* raises for a terminal status.
    """
    last_error: Optional[TransportFailure] = None
    for attempt in range(policy.max_attempts):
        resp: Optional[requests.Response] = None
        try:
            resource, resp = fetch()
        except TransportFailure as exc:
            logger.warning("Polling %s failed (attempt %d/%d): %s",
                           what, attempt + 1, policy.max_attempts, exc)
            last_error = exc
        else:
            if settled(resource):
                return resource
            last_error = None

        if attempt == policy.max_attempts - 1:
            break
        delay = retry_after_seconds(resp, policy.interval(attempt))
        logger.debug("%s not settled, retrying in %.1f seconds", what, delay)
        sleep(delay)

    raise PollTimeout(
        f"{what} did not settle after {policy.max_attempts} attempts"
        + (f" (last error: {last_error})" if last_error else "")
    )
