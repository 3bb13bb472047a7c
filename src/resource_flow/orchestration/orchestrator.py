"""High level orchestration: named pipelines, submission and lifecycle."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from types import TracebackType
from typing import Any

import structlog

from resource_flow.endpoints.capture import CaptureEndpoint
from resource_flow.endpoints.registry import EndpointRegistry
from resource_flow.models.message import Message
from resource_flow.observability.metrics import record_submission
from resource_flow.utils.errors import PipelineConfigError, PipelineError, UnknownPipelineError
from resource_flow.utils.logging import bind_correlation_id, reset_correlation_id

from .pipeline import Pipeline, PipelineConfig, PipelineExecutor
from .stages import StageRegistry

logger = structlog.get_logger(__name__)


class PipelineOrchestrator:
    """Arena of pipelines indexed by name, sharing one endpoint registry.

    Everything a submission needs is passed in at construction, so a test
    builds an orchestrator, submits, verifies and closes it without any
    process-wide state leaking into the next run.
    """

    def __init__(
        self,
        endpoints: EndpointRegistry,
        *,
        executor: PipelineExecutor | None = None,
        pipelines: Iterable[Pipeline] = (),
    ) -> None:
        self.endpoints = endpoints
        self.executor = executor or PipelineExecutor(endpoints)
        if self.executor.resolver is None:
            self.executor.resolver = self.pipeline
        elif self.executor.resolver != self.pipeline:
            raise PipelineConfigError(
                "Executor already resolves forwards against another set of pipelines"
            )
        self._pipelines: dict[str, Pipeline] = {}
        self._lock = threading.Lock()
        for pipeline in pipelines:
            self.register(pipeline)

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        endpoints: EndpointRegistry,
        registry: StageRegistry | None = None,
    ) -> PipelineOrchestrator:
        return cls(endpoints, pipelines=config.build(registry))

    def register(self, pipeline: Pipeline) -> Pipeline:
        with self._lock:
            if pipeline.name in self._pipelines:
                raise PipelineConfigError(f"Pipeline '{pipeline.name}' is already registered")
            self._pipelines[pipeline.name] = pipeline
        logger.debug("pipeline.registered", pipeline=pipeline.name, stages=len(pipeline))
        return pipeline

    def pipeline(self, name: str) -> Pipeline:
        with self._lock:
            try:
                return self._pipelines[name]
            except KeyError:
                raise UnknownPipelineError(name) from None

    def pipelines(self) -> list[str]:
        with self._lock:
            return sorted(self._pipelines)

    def submit(
        self,
        pipeline_name: str,
        body: Any = None,
        headers: Mapping[str, Any] | None = None,
    ) -> Message:
        """Run a new message through ``pipeline_name`` and block until done.

        Args:
            pipeline_name: Name of a registered pipeline.
            body: Entry message body; ``str`` bodies are held as text.
            headers: Entry message headers, copied into the message.

        Returns:
            The final message of the main propagation.

        Raises:
            UnknownPipelineError: If no pipeline is registered under the name.
            PipelineError: Any conversion, predicate or invoke failure raised
                by a stage.
        """
        pipeline = self.pipeline(pipeline_name)
        message = Message(body=body, headers=dict(headers or {}))
        token = bind_correlation_id(message.correlation_id)
        try:
            result = self.executor.run(pipeline, message)
        except PipelineError as exc:
            record_submission(pipeline.name, "failed")
            logger.warning(
                "pipeline.submission.failed",
                pipeline=pipeline.name,
                error=exc.problem.title,
                status=exc.problem.status,
            )
            raise
        finally:
            reset_correlation_id(token)
        record_submission(pipeline.name, "success")
        return result

    def capture(self, name: str) -> CaptureEndpoint:
        return self.endpoints.capture(name)

    def reset(self) -> None:
        """Forget captured messages and expectations on every capture endpoint."""
        self.endpoints.reset_captures()

    def close(self) -> None:
        self.endpoints.close()

    def __enter__(self) -> PipelineOrchestrator:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


__all__ = ["PipelineOrchestrator"]
