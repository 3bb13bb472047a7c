"""HTTP client shared by repository endpoints.

Key Responsibilities:
    - Own the pooled ``httpx.Client`` every repository endpoint calls through
    - Apply the transport policy from ``RepositorySettings``: timeout, attempt
      budget, backoff and the response statuses worth repeating (a repository
      answering 503 during maintenance, say)
    - Emit one OpenTelemetry span per attempt

Collaborators:
    - Upstream: ``RepositoryEndpoint`` and ``client_from_settings`` in the
      endpoint registry
    - Downstream: ``httpx`` and ``tenacity``

Thread Safety:
    - Thread-safe; ``httpx.Client`` pools connections across threads, so a
      single client is shared by every concurrent pipeline submission

Performance Characteristics:
    - The default configuration performs a single attempt; stages never retry
      and any retry policy is opt-in transport configuration

Example:
    >>> client = HttpClient(retry=RetryConfig(attempts=3, status_forcelist=(503,)))
    >>> response = client.request("GET", "http://localhost:8080/rest/abc")
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from enum import Enum

import httpx
import structlog
from opentelemetry import trace
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_incrementing,
    wait_none,
    wait_random,
)
from tenacity.wait import wait_base

logger = structlog.get_logger(__name__)


class BackoffStrategy(str, Enum):
    NONE = "none"
    EXPONENTIAL = "exponential"
    LINEAR = "linear"


@dataclass(frozen=True)
class RetryConfig:
    """Transport retry configuration; one attempt means no retries."""

    attempts: int = 1
    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    backoff_initial: float = 0.5
    backoff_max: float = 10.0
    jitter: bool = True
    status_forcelist: Iterable[int] = ()
    timeout: float = 30.0


class RetryableStatus(httpx.HTTPStatusError):
    """A response whose status is in the forcelist, with its Retry-After delay."""

    def __init__(self, response: httpx.Response) -> None:
        super().__init__(
            f"Repository answered {response.status_code}",
            request=response.request,
            response=response,
        )
        self.retry_after = retry_after_seconds(response)


def retry_after_seconds(response: httpx.Response) -> float:
    """Seconds requested by a ``Retry-After`` header (delta or HTTP date); 0 if absent."""
    header = response.headers.get("Retry-After")
    if not header:
        return 0.0
    try:
        return max(float(header), 0.0)
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(header)
    except (TypeError, ValueError):
        return 0.0
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=UTC)
    return max((retry_at - datetime.now(UTC)).total_seconds(), 0.0)


class _HonourRetryAfter(wait_base):
    """Wait for the server's Retry-After when given, else the configured backoff."""

    def __init__(self, backoff: wait_base) -> None:
        self._backoff = backoff

    def __call__(self, retry_state: RetryCallState) -> float:
        failure = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(failure, RetryableStatus) and failure.retry_after > 0:
            return failure.retry_after
        return self._backoff(retry_state)


def _backoff(config: RetryConfig) -> wait_base:
    initial = max(config.backoff_initial, 0.0)
    ceiling = max(config.backoff_max, initial)
    if config.backoff_strategy is BackoffStrategy.NONE:
        return wait_none()
    if config.backoff_strategy is BackoffStrategy.LINEAR:
        wait: wait_base = wait_incrementing(start=initial, increment=initial, max=ceiling)
    else:
        wait = wait_exponential(multiplier=initial or 0.1, max=ceiling)
    return wait + wait_random(0, 0.1) if config.jitter else wait


def _log_retry(retry_state: RetryCallState) -> None:
    failure = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "http.request.retry",
        attempt=retry_state.attempt_number,
        wait_seconds=round(retry_state.next_action.sleep, 3) if retry_state.next_action else None,
        status=failure.response.status_code if isinstance(failure, RetryableStatus) else None,
        error=type(failure).__name__ if failure else None,
    )


class HttpClient:
    """Synchronous HTTP client; retries transport errors and forcelisted statuses."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        retry: RetryConfig | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = retry or RetryConfig()
        client_kwargs: dict[str, object] = {"timeout": self.config.timeout, "transport": transport}
        if base_url:
            client_kwargs["base_url"] = base_url
        self._client = httpx.Client(**client_kwargs)
        self._forcelist = frozenset(self.config.status_forcelist)
        self._retry = Retrying(
            stop=stop_after_attempt(max(self.config.attempts, 1)),
            wait=_HonourRetryAfter(_backoff(self.config)),
            retry=retry_if_exception_type((httpx.TransportError, RetryableStatus)),
            before_sleep=_log_retry,
            reraise=True,
        )
        self._tracer = trace.get_tracer(__name__)

    def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Issue a request within the configured attempt budget.

        Returns:
            The ``httpx`` response. When every attempt ends in a forcelisted
            status the last such response is returned, so the caller still
            decides whether it is a failure.

        Raises:
            httpx.TransportError: When the transport keeps failing after the
                configured attempts.
        """

        def attempt() -> httpx.Response:
            with self._tracer.start_as_current_span("http.request") as span:
                span.set_attribute("http.method", method)
                span.set_attribute("http.url", url)
                response = self._client.request(method, url, **kwargs)
                span.set_attribute("http.status_code", response.status_code)
            if response.status_code in self._forcelist:
                raise RetryableStatus(response)
            return response

        try:
            return self._retry(attempt)
        except RetryableStatus as exc:
            return exc.response

    def close(self) -> None:
        self._client.close()

    @contextmanager
    def lifespan(self) -> Iterator[HttpClient]:
        """Close the client when the block exits."""
        try:
            yield self
        finally:
            self.close()


__all__ = [
    "BackoffStrategy",
    "HttpClient",
    "RetryConfig",
    "RetryableStatus",
    "retry_after_seconds",
]
