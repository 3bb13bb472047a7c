"""Problem detail helpers and the pipeline error taxonomy.

Key Responsibilities:
    - Provide RFC 7807 compliant data structures used when reporting failures
    - Supply a base exception that carries problem details
    - Define the errors raised while a message travels through a pipeline and
      while capture expectations are verified

Collaborators:
    - Upstream: Conversion, predicate evaluation, repository endpoints, the
      pipeline executor and capture endpoints raise these errors
    - Downstream: Callers of ``PipelineOrchestrator.submit`` and test code
      inspect ``error.problem`` for structured details

Side Effects:
    - None; helpers are pure data containers

Thread Safety:
    - Thread-safe; instances are created per failure and never shared
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, field
from typing import Any

# ==============================================================================
# TYPE DEFINITIONS
# ==============================================================================

__all__ = [
    "ConversionError",
    "FoundationError",
    "InvokeError",
    "PipelineConfigError",
    "PipelineError",
    "PredicateError",
    "ProblemDetail",
    "UnknownEndpointError",
    "UnknownPipelineError",
    "UnsatisfiedExpectationError",
]


@dataclass(slots=True)
class ProblemDetail:
    """Lightweight problem details object compliant with RFC 7807."""

    title: str
    status: int
    detail: str | None = None
    type: str = "about:blank"
    instance: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def model_dump(self) -> dict[str, Any]:
        """Return a dictionary representation with optional fields dropped."""
        payload = {key: value for key, value in asdict(self).items() if value is not None}
        if not payload.get("extra"):
            payload.pop("extra", None)
        return payload

    def to_response(self) -> dict[str, Any]:
        """Alias for model_dump used by existing call-sites."""
        return self.model_dump()


class FoundationError(RuntimeError):
    """Base exception that carries a :class:`ProblemDetail` instance."""

    def __init__(
        self,
        message: str,
        *,
        status: int = 500,
        detail: str | None = None,
        type: str = "about:blank",
        instance: str | None = None,
        extra: Mapping[str, Any] | None = None,
    ) -> None:
        """Initialise the exception with structured problem detail attributes.

        Args:
            message: Human readable error summary.
            status: HTTP status code associated with the problem.
            detail: Optional detailed description of the failure.
            type: Problem type URI, defaults to ``about:blank``.
            instance: Optional URI reference identifying the specific occurrence.
            extra: Additional attributes included in the serialized payload.
        """
        super().__init__(message)
        self.problem = ProblemDetail(
            title=message,
            status=status,
            detail=detail,
            type=type,
            instance=instance,
            extra=extra or {},
        )


# ==============================================================================
# PIPELINE ERRORS
# ==============================================================================


class PipelineError(FoundationError):
    """Base class for failures raised while routing a message."""


class ConversionError(PipelineError):
    """Raised when a body is not well-formed in its declared representation."""

    def __init__(self, message: str, *, source: str | None = None, target: str | None = None) -> None:
        super().__init__(
            message,
            status=422,
            extra={key: value for key, value in {"source": source, "target": target}.items() if value},
        )
        self.source = source
        self.target = target


class PredicateError(PipelineError):
    """Raised for malformed structural queries or queries over unparsed bodies."""

    def __init__(self, message: str, *, expression: str | None = None, detail: str | None = None) -> None:
        super().__init__(
            message,
            status=400,
            detail=detail,
            extra={"expression": expression} if expression else None,
        )
        self.expression = expression


class InvokeError(PipelineError):
    """Raised when a repository call fails and the endpoint throws on failure."""

    def __init__(
        self,
        message: str,
        *,
        method: str,
        url: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(
            message,
            status=status_code or 502,
            detail=response_body or None,
            instance=url,
            extra={"method": method},
        )
        self.method = method
        self.url = url
        self.status_code = status_code
        self.response_body = response_body


class UnsatisfiedExpectationError(PipelineError, AssertionError):
    """Raised by ``assert_satisfied`` when expectations do not hold in time."""

    def __init__(self, endpoint: str, failures: Sequence[str], *, timeout: float) -> None:
        summary = "; ".join(failures)
        super().__init__(
            f"{endpoint} unsatisfied after {timeout:g}s: {summary}",
            status=417,
            detail=summary,
            instance=endpoint,
            extra={"failures": list(failures)},
        )
        self.endpoint = endpoint
        self.failures = list(failures)
        self.timeout = timeout


class PipelineConfigError(PipelineError):
    """Raised when pipelines or endpoint URIs are declared incorrectly."""

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message, status=400, detail=detail)


class UnknownPipelineError(PipelineError, KeyError):
    """Raised when a submission names a pipeline that was never registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown pipeline '{name}'", status=404, instance=name)
        self.name = name

    def __str__(self) -> str:
        return self.problem.title


class UnknownEndpointError(PipelineError, KeyError):
    """Raised when an endpoint URI cannot be resolved."""

    def __init__(self, uri: str) -> None:
        super().__init__(f"Unknown endpoint '{uri}'", status=404, instance=uri)
        self.uri = uri

    def __str__(self) -> str:
        return self.problem.title
