"""Passive capture endpoints and the expectation engine.

Key Responsibilities:
    - Accumulate every delivered message in arrival order
    - Answer count, body and header queries over the captured log
    - Evaluate declared expectations with a blocking, timeout-bounded wait

Collaborators:
    - Upstream: ``Deliver`` stages via ``PipelineExecutor``; tests declare
      expectations before submitting and verify them afterwards
    - Downstream: ``ExpectationSettings`` for default timeouts

Side Effects:
    - Emits Prometheus counters for each delivery

Thread Safety:
    - Appends and reads happen under a ``threading.Condition``; every append
      notifies waiters so ``assert_satisfied`` re-evaluates promptly. The wait
      runs on the caller's thread, so a timeout leaves nothing behind.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from resource_flow.config.settings import get_settings
from resource_flow.documents.conversion import body_text
from resource_flow.models.message import Message
from resource_flow.observability.metrics import record_capture
from resource_flow.utils.errors import UnsatisfiedExpectationError

logger = structlog.get_logger(__name__)

CAPTURE_SCHEME = "capture"


@dataclass(frozen=True, slots=True)
class Expectation:
    """A named check over the captured messages.

    ``check`` returns ``None`` when satisfied, otherwise a short description
    of what was actually observed.
    """

    description: str
    check: Callable[[Sequence[Message]], str | None]

    def failure(self, messages: Sequence[Message]) -> str | None:
        observed = self.check(messages)
        if observed is None:
            return None
        return f"{self.description} but {observed}"


def _normalize(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return value


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return frozenset((key, _freeze(item)) for key, item in value.items())
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(_freeze(item) for item in value)
    if isinstance(value, bytearray):
        return bytes(value)
    if type(value).__hash__ is None:
        return repr(value)
    return value


def _same_items(expected: Sequence[Any], actual: Sequence[Any]) -> bool:
    if len(expected) != len(actual):
        return False
    remaining = list(actual)
    for item in expected:
        for index, candidate in enumerate(remaining):
            if candidate == item:
                del remaining[index]
                break
        else:
            return False
    return True


class CaptureEndpoint:
    """Sink that records delivered messages for later verification."""

    def __init__(
        self,
        name: str,
        *,
        timeout: float | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self.name = name
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._messages: list[Message] = []
        self._expectations: list[Expectation] = []
        self._condition = threading.Condition()

    @property
    def uri(self) -> str:
        return f"{CAPTURE_SCHEME}:{self.name}"

    def __repr__(self) -> str:
        return f"CaptureEndpoint({self.name!r}, received={self.count()})"

    # ------------------------------------------------------------------
    # Delivery and queries
    # ------------------------------------------------------------------

    def deliver(self, message: Message) -> None:
        captured = message.derive()
        with self._condition:
            self._messages.append(captured)
            received = len(self._messages)
            self._condition.notify_all()
        record_capture(self.name)
        logger.debug("capture.deliver", endpoint=self.uri, received=received)

    def count(self) -> int:
        with self._condition:
            return len(self._messages)

    def messages(self) -> list[Message]:
        """Snapshot of captured messages in arrival order."""
        with self._condition:
            return list(self._messages)

    def bodies(self) -> list[Any]:
        return [body_text(message) for message in self.messages()]

    def headers(self, key: str) -> set[Any]:
        """Distinct values observed for ``key`` across captured messages.

        List and dict values come back frozen (tuples and frozensets of items)
        so they can be collected.
        """
        return {_freeze(message.headers[key]) for message in self.messages() if key in message.headers}

    def reset(self) -> None:
        """Forget captured messages and declared expectations."""
        with self._condition:
            self._messages.clear()
            self._expectations.clear()
            self._condition.notify_all()

    # ------------------------------------------------------------------
    # Expectations
    # ------------------------------------------------------------------

    def expect(self, expectation: Expectation) -> CaptureEndpoint:
        with self._condition:
            self._expectations.append(expectation)
        return self

    def expect_count(self, count: int) -> CaptureEndpoint:
        def check(messages: Sequence[Message]) -> str | None:
            return None if len(messages) == count else f"received {len(messages)}"

        return self.expect(Expectation(f"expected {count} message(s)", check))

    def expect_minimum_count(self, count: int) -> CaptureEndpoint:
        def check(messages: Sequence[Message]) -> str | None:
            return None if len(messages) >= count else f"received {len(messages)}"

        return self.expect(Expectation(f"expected at least {count} message(s)", check))

    def expect_bodies(self, bodies: Iterable[Any], *, ordered: bool = True) -> CaptureEndpoint:
        expected = [_normalize(body) for body in bodies]

        def check(messages: Sequence[Message]) -> str | None:
            actual = [body_text(message) for message in messages]
            satisfied = actual == expected if ordered else _same_items(expected, actual)
            return None if satisfied else f"received {actual!r}"

        order = "in order" if ordered else "in any order"
        return self.expect(Expectation(f"expected bodies {expected!r} {order}", check))

    def expect_bodies_in_any_order(self, bodies: Iterable[Any]) -> CaptureEndpoint:
        return self.expect_bodies(bodies, ordered=False)

    def expect_header(self, key: str, value: Any) -> CaptureEndpoint:
        def check(messages: Sequence[Message]) -> str | None:
            if not messages:
                return "no messages were received"
            mismatched = [m.headers.get(key) for m in messages if m.headers.get(key) != value]
            return None if not mismatched else f"observed {mismatched!r}"

        return self.expect(Expectation(f"expected header {key}={value!r} on every message", check))

    def expect_header_contains(self, key: str, fragment: str) -> CaptureEndpoint:
        def check(messages: Sequence[Message]) -> str | None:
            if not messages:
                return "no messages were received"
            mismatched = [
                m.headers.get(key) for m in messages if fragment not in str(m.headers.get(key) or "")
            ]
            return None if not mismatched else f"observed {mismatched!r}"

        return self.expect(
            Expectation(f"expected header {key} containing {fragment!r} on every message", check)
        )

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def _failures_locked(self) -> list[str]:
        failures = []
        for expectation in self._expectations:
            failure = expectation.failure(self._messages)
            if failure is not None:
                failures.append(failure)
        return failures

    def unsatisfied(self) -> list[str]:
        """Evaluate expectations once, without waiting."""
        with self._condition:
            return self._failures_locked()

    def is_satisfied(self) -> bool:
        return not self.unsatisfied()

    def assert_satisfied(
        self,
        timeout: float | None = None,
        *,
        poll_interval: float | None = None,
    ) -> None:
        """Block until every expectation holds or ``timeout`` seconds elapse.

        Raises:
            UnsatisfiedExpectationError: Naming each failed expectation with
                the values actually observed when the wait ended.
        """
        defaults = get_settings().expectations
        if timeout is None:
            timeout = self.timeout if self.timeout is not None else defaults.timeout_seconds
        if poll_interval is None:
            poll_interval = self.poll_interval if self.poll_interval is not None else defaults.poll_interval_seconds
        deadline = time.monotonic() + timeout
        with self._condition:
            while True:
                failures = self._failures_locked()
                if not failures:
                    logger.debug("capture.satisfied", endpoint=self.uri, received=len(self._messages))
                    return
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._condition.wait(min(poll_interval, remaining))
        logger.warning("capture.unsatisfied", endpoint=self.uri, failures=failures)
        raise UnsatisfiedExpectationError(self.uri, failures, timeout=timeout)


__all__ = ["CAPTURE_SCHEME", "CaptureEndpoint", "Expectation"]
