"""Pipeline values, the sequential executor and declarative YAML configuration."""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from time import perf_counter
from typing import Any

import structlog
import yaml
from opentelemetry import trace
from pydantic import BaseModel, Field, ValidationError, model_validator

from resource_flow.documents.conversion import convert_body
from resource_flow.endpoints.registry import EndpointRegistry
from resource_flow.models.message import BodyRepresentation, Message
from resource_flow.observability.metrics import observe_stage, record_dropped, record_split
from resource_flow.utils.errors import PipelineConfigError, PipelineError
from resource_flow.utils.logging import bind_correlation_id, get_correlation_id, reset_correlation_id

from .stages import (
    STAGE_TYPES,
    ConvertBody,
    Deliver,
    Filter,
    Forward,
    Invoke,
    RemoveHeader,
    SetHeader,
    Split,
    Stage,
    StageRegistry,
    default_registry,
    stage_label,
)

logger = structlog.get_logger(__name__)
_TRACER = trace.get_tracer(__name__)

DEFAULT_MAX_FORWARD_DEPTH = 16


@dataclass(frozen=True, slots=True)
class Pipeline:
    """Named, ordered and immutable sequence of stages."""

    name: str
    stages: tuple[Stage, ...] = ()

    def __post_init__(self) -> None:
        stages = tuple(self.stages)
        for stage in stages:
            if not isinstance(stage, STAGE_TYPES):
                raise PipelineConfigError(
                    f"Pipeline '{self.name}' received a non-stage value",
                    detail=repr(stage),
                )
        object.__setattr__(self, "stages", stages)

    def __len__(self) -> int:
        return len(self.stages)


# ==============================================================================
# EXECUTION
# ==============================================================================


class PipelineExecutor:
    """Threads a message through pipeline stages strictly in order.

    A filter that does not match halts the propagation silently. A split ends
    the propagation of its input and runs every matched fragment, in document
    order, through the stages that follow it. Conversion, predicate and invoke
    failures abort immediately and reach the caller unchanged; nothing is
    retried at this level.
    """

    def __init__(
        self,
        endpoints: EndpointRegistry,
        *,
        resolver: Callable[[str], Pipeline] | None = None,
        max_forward_depth: int = DEFAULT_MAX_FORWARD_DEPTH,
    ) -> None:
        self.endpoints = endpoints
        self.resolver = resolver
        self.max_forward_depth = max_forward_depth
        self._handlers: dict[type, Callable[[Pipeline, Any, Message, int], Message]] = {
            Invoke: self._invoke,
            SetHeader: self._set_header,
            RemoveHeader: self._remove_header,
            ConvertBody: self._convert_body,
            Deliver: self._deliver,
            Forward: self._forward,
        }

    def run(self, pipeline: Pipeline, message: Message) -> Message:
        """Run ``message`` through ``pipeline`` and return the resulting message.

        The result is the last message of the main propagation: the message as
        it reached a halting filter, or the input of a split stage.
        """
        return self._run(pipeline, message, depth=0)

    def _run(self, pipeline: Pipeline, message: Message, *, depth: int) -> Message:
        token = None
        if get_correlation_id() != message.correlation_id:
            token = bind_correlation_id(message.correlation_id)
        started = perf_counter()
        logger.info(
            "pipeline.start",
            pipeline=pipeline.name,
            message_id=message.message_id,
            stages=len(pipeline),
            depth=depth,
        )
        try:
            with _TRACER.start_as_current_span(f"pipeline.{pipeline.name}") as span:
                span.set_attribute("pipeline.name", pipeline.name)
                span.set_attribute("correlation_id", message.correlation_id)
                result = self._run_from(pipeline, message, 0, depth)
                duration = perf_counter() - started
                span.set_attribute("pipeline.duration_ms", round(duration * 1000, 3))
            logger.info(
                "pipeline.complete",
                pipeline=pipeline.name,
                message_id=message.message_id,
                duration_ms=round(duration * 1000, 3),
            )
            return result
        finally:
            if token is not None:
                reset_correlation_id(token)

    def _run_from(self, pipeline: Pipeline, message: Message, start: int, depth: int) -> Message:
        current = message
        for index in range(start, len(pipeline.stages)):
            stage = pipeline.stages[index]
            if isinstance(stage, Filter):
                with self._observe(pipeline, stage, current):
                    matched = stage.query.matches(current)
                if not matched:
                    record_dropped(pipeline.name)
                    logger.info(
                        "pipeline.message.dropped",
                        pipeline=pipeline.name,
                        stage=stage_label(stage),
                        message_id=current.message_id,
                    )
                    return current
                continue
            if isinstance(stage, Split):
                with self._observe(pipeline, stage, current):
                    fragments = stage.query.select(current)
                record_split(pipeline.name, len(fragments))
                logger.info(
                    "pipeline.message.split",
                    pipeline=pipeline.name,
                    stage=stage_label(stage),
                    message_id=current.message_id,
                    fragments=len(fragments),
                )
                for fragment in fragments:
                    child = current.derive(body=fragment, representation=BodyRepresentation.TEXT)
                    self._run_from(pipeline, child, index + 1, depth)
                return current
            with self._observe(pipeline, stage, current):
                current = self._handlers[type(stage)](pipeline, stage, current, depth)
        return current

    @contextmanager
    def _observe(self, pipeline: Pipeline, stage: Stage, message: Message) -> Iterator[None]:
        label = stage_label(stage)
        started = perf_counter()
        status = "success"
        logger.debug(
            "pipeline.stage.start",
            pipeline=pipeline.name,
            stage=label,
            kind=stage.kind,
            message_id=message.message_id,
        )
        with _TRACER.start_as_current_span(f"pipeline.{pipeline.name}.{stage.kind}") as span:
            span.set_attribute("pipeline.name", pipeline.name)
            span.set_attribute("pipeline.stage", label)
            try:
                yield
            except PipelineError as exc:
                status = "error"
                logger.warning(
                    "pipeline.stage.failure",
                    pipeline=pipeline.name,
                    stage=label,
                    kind=stage.kind,
                    message_id=message.message_id,
                    error=exc.problem.title,
                    status=exc.problem.status,
                )
                raise
            finally:
                duration = perf_counter() - started
                observe_stage(pipeline.name, stage.kind, duration)
                span.set_attribute("stage.duration_ms", round(duration * 1000, 3))
                span.set_attribute("stage.status", status)
        logger.debug(
            "pipeline.stage.success",
            pipeline=pipeline.name,
            stage=label,
            kind=stage.kind,
            duration_ms=round(duration * 1000, 3),
        )

    # ------------------------------------------------------------------
    # Stage handlers
    # ------------------------------------------------------------------

    def _invoke(self, pipeline: Pipeline, stage: Invoke, message: Message, depth: int) -> Message:
        endpoint = self.endpoints.repository(stage.endpoint)
        return endpoint.invoke(message, method=stage.method, throw_on_failure=stage.throw_on_failure)

    def _set_header(self, pipeline: Pipeline, stage: SetHeader, message: Message, depth: int) -> Message:
        return message.set_header(stage.key, copy.deepcopy(stage.value))

    def _remove_header(self, pipeline: Pipeline, stage: RemoveHeader, message: Message, depth: int) -> Message:
        message.remove_header(stage.key)
        return message

    def _convert_body(self, pipeline: Pipeline, stage: ConvertBody, message: Message, depth: int) -> Message:
        return convert_body(message, stage.target, source_format=stage.source_format)

    def _deliver(self, pipeline: Pipeline, stage: Deliver, message: Message, depth: int) -> Message:
        self.endpoints.capture_for(stage.endpoint).deliver(message)
        return message

    def _forward(self, pipeline: Pipeline, stage: Forward, message: Message, depth: int) -> Message:
        if self.resolver is None:
            raise PipelineConfigError(
                f"Pipeline '{pipeline.name}' forwards to '{stage.pipeline}' but no pipelines are registered"
            )
        if depth >= self.max_forward_depth:
            raise PipelineError(
                f"Forwarding from '{pipeline.name}' to '{stage.pipeline}' exceeded depth {self.max_forward_depth}",
                status=508,
            )
        return self._run(self.resolver(stage.pipeline), message, depth=depth + 1)


# ==============================================================================
# DECLARATIVE CONFIGURATION
# ==============================================================================


class StageConfig(BaseModel):
    """Declarative representation of a pipeline stage loaded from YAML."""

    kind: str
    name: str | None = None
    options: dict[str, Any] = Field(default_factory=dict)


class PipelineDefinition(BaseModel):
    """List of stages composing a named pipeline."""

    name: str
    stages: list[StageConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_unique_stage_names(self) -> PipelineDefinition:
        names = [stage.name for stage in self.stages if stage.name]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate stage names in pipeline '{self.name}'")
        return self


class PipelineConfig(BaseModel):
    """Configuration describing pipelines and the namespaces their queries use."""

    version: str = "1"
    namespaces: dict[str, str] = Field(default_factory=dict)
    pipelines: list[PipelineDefinition] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_unique_pipeline_names(self) -> PipelineConfig:
        names = [pipeline.name for pipeline in self.pipelines]
        if len(names) != len(set(names)):
            raise ValueError("Duplicate pipeline names in configuration")
        return self

    @classmethod
    def from_yaml(cls, path: str | Path | None = None, *, text: str | None = None) -> PipelineConfig:
        if path is None and text is None:
            raise PipelineConfigError("Either path or text must be provided")
        try:
            if text is not None:
                raw = yaml.safe_load(text) or {}
            else:
                raw = yaml.safe_load(Path(path).expanduser().read_text()) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise PipelineConfigError("Unable to read pipeline configuration", detail=str(exc)) from exc
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            raise PipelineConfigError("Invalid pipeline configuration", detail=str(exc)) from exc

    def build(self, registry: StageRegistry | None = None) -> list[Pipeline]:
        """Materialise every pipeline definition into executable stages."""

        registry = registry or default_registry()
        options: Mapping[str, object] = {"namespaces": dict(self.namespaces)}
        return [
            Pipeline(
                definition.name,
                tuple(registry.build(stage, options) for stage in definition.stages),
            )
            for definition in self.pipelines
        ]


__all__ = [
    "DEFAULT_MAX_FORWARD_DEPTH",
    "Pipeline",
    "PipelineConfig",
    "PipelineDefinition",
    "PipelineExecutor",
    "StageConfig",
]
