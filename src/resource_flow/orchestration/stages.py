"""Stage variants and the registry mapping declarative stages to them.

Stages are plain immutable values tagged by ``kind``; the executor decides
what each kind does, so adding a stage never requires subclassing.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, Protocol

from resource_flow.documents.xpath import Namespaces, XPathQuery
from resource_flow.endpoints.repository import parse_flag
from resource_flow.models.message import BodyRepresentation
from resource_flow.utils.errors import PipelineConfigError

if TYPE_CHECKING:
    from .pipeline import StageConfig


@dataclass(frozen=True, slots=True)
class Invoke:
    """Call a repository endpoint; the response replaces the message."""

    kind: ClassVar[str] = "invoke"

    endpoint: str
    method: str | None = None
    throw_on_failure: bool | None = None
    name: str | None = None


@dataclass(frozen=True, slots=True)
class SetHeader:
    kind: ClassVar[str] = "set_header"

    key: str
    value: Any
    name: str | None = None


@dataclass(frozen=True, slots=True)
class RemoveHeader:
    kind: ClassVar[str] = "remove_header"

    key: str
    name: str | None = None


@dataclass(frozen=True, slots=True)
class ConvertBody:
    """Convert the body to ``target``; ``source_format`` overrides CONTENT_TYPE."""

    kind: ClassVar[str] = "convert_body"

    target: BodyRepresentation
    source_format: str | None = None
    name: str | None = None


@dataclass(frozen=True, slots=True)
class Filter:
    """Drop messages whose body does not match ``query``."""

    kind: ClassVar[str] = "filter"

    query: XPathQuery
    name: str | None = None


@dataclass(frozen=True, slots=True)
class Split:
    """Fan out one message per node matched by ``query``."""

    kind: ClassVar[str] = "split"

    query: XPathQuery
    name: str | None = None


@dataclass(frozen=True, slots=True)
class Deliver:
    """Hand a copy of the message to a capture endpoint and continue."""

    kind: ClassVar[str] = "deliver"

    endpoint: str
    name: str | None = None


@dataclass(frozen=True, slots=True)
class Forward:
    """Run another named pipeline and continue with its resulting message."""

    kind: ClassVar[str] = "forward"

    pipeline: str
    name: str | None = None


Stage = Invoke | SetHeader | RemoveHeader | ConvertBody | Filter | Split | Deliver | Forward

STAGE_TYPES: tuple[type, ...] = (Invoke, SetHeader, RemoveHeader, ConvertBody, Filter, Split, Deliver, Forward)


def stage_label(stage: Stage) -> str:
    """Human readable identifier used in logs and spans."""
    if stage.name:
        return stage.name
    detail = {
        Invoke: lambda s: s.endpoint,
        SetHeader: lambda s: s.key,
        RemoveHeader: lambda s: s.key,
        ConvertBody: lambda s: s.target.value,
        Filter: lambda s: s.query.expression,
        Split: lambda s: s.query.expression,
        Deliver: lambda s: s.endpoint,
        Forward: lambda s: s.pipeline,
    }[type(stage)](stage)
    return f"{stage.kind}({detail})"


# ==============================================================================
# DECLARATIVE BUILDERS
# ==============================================================================


class StageBuilder(Protocol):
    """Callable that materialises a pipeline stage from configuration."""

    def __call__(self, stage: StageConfig, options: Mapping[str, object]) -> Stage: ...


def _require(stage: StageConfig, key: str) -> Any:
    try:
        return stage.options[key]
    except KeyError as exc:
        raise PipelineConfigError(
            f"Stage '{stage.name or stage.kind}' is missing option '{key}'"
        ) from exc


def _query(stage: StageConfig, options: Mapping[str, object]) -> XPathQuery:
    namespaces = Namespaces.rdf(options.get("namespaces") or {})  # type: ignore[arg-type]
    for prefix, uri in (stage.options.get("namespaces") or {}).items():
        namespaces.add(prefix, uri)
    return XPathQuery(str(_require(stage, "xpath")), namespaces)


def _build_invoke(stage: StageConfig, options: Mapping[str, object]) -> Stage:
    throw = stage.options.get("throw_on_failure")
    if throw is not None:
        try:
            throw = parse_flag(throw)
        except ValueError as exc:
            raise PipelineConfigError(
                f"Stage '{stage.name or stage.kind}' has an invalid throw_on_failure flag",
                detail=repr(throw),
            ) from exc
    return Invoke(
        endpoint=str(_require(stage, "endpoint")),
        method=stage.options.get("method"),
        throw_on_failure=throw,
        name=stage.name,
    )


def _build_set_header(stage: StageConfig, options: Mapping[str, object]) -> Stage:
    return SetHeader(key=str(_require(stage, "key")), value=_require(stage, "value"), name=stage.name)


def _build_remove_header(stage: StageConfig, options: Mapping[str, object]) -> Stage:
    return RemoveHeader(key=str(_require(stage, "key")), name=stage.name)


def _build_convert_body(stage: StageConfig, options: Mapping[str, object]) -> Stage:
    target = _require(stage, "target")
    try:
        representation = BodyRepresentation(target)
    except ValueError as exc:
        raise PipelineConfigError(f"Unknown body representation '{target}'") from exc
    return ConvertBody(
        target=representation,
        source_format=stage.options.get("source_format"),
        name=stage.name,
    )


def _build_filter(stage: StageConfig, options: Mapping[str, object]) -> Stage:
    return Filter(query=_query(stage, options), name=stage.name)


def _build_split(stage: StageConfig, options: Mapping[str, object]) -> Stage:
    return Split(query=_query(stage, options), name=stage.name)


def _build_deliver(stage: StageConfig, options: Mapping[str, object]) -> Stage:
    return Deliver(endpoint=str(_require(stage, "endpoint")), name=stage.name)


def _build_forward(stage: StageConfig, options: Mapping[str, object]) -> Stage:
    return Forward(pipeline=str(_require(stage, "pipeline")), name=stage.name)


@dataclass(slots=True)
class StageRegistry:
    """Registry mapping stage kinds to builder callables."""

    _builders: dict[str, StageBuilder] = field(default_factory=dict)

    def register(self, kind: str, builder: StageBuilder) -> None:
        """Register a builder for the supplied stage kind."""

        self._builders[kind] = builder

    def unregister(self, kind: str) -> None:
        """Remove a previously registered builder if present."""

        self._builders.pop(kind, None)

    def kinds(self) -> list[str]:
        return sorted(self._builders)

    def build(self, stage: StageConfig, options: Mapping[str, object]) -> Stage:
        """Materialise a stage instance for the provided declarative config."""

        try:
            builder = self._builders[stage.kind]
        except KeyError as exc:
            raise PipelineConfigError(f"Unsupported stage kind '{stage.kind}'") from exc
        return builder(stage, options)

    def clone(self) -> StageRegistry:
        """Return a shallow copy of the registry."""

        return StageRegistry(dict(self._builders))


def default_registry() -> StageRegistry:
    registry = StageRegistry()
    registry.register(Invoke.kind, _build_invoke)
    registry.register(SetHeader.kind, _build_set_header)
    registry.register(RemoveHeader.kind, _build_remove_header)
    registry.register(ConvertBody.kind, _build_convert_body)
    registry.register(Filter.kind, _build_filter)
    registry.register(Split.kind, _build_split)
    registry.register(Deliver.kind, _build_deliver)
    registry.register(Forward.kind, _build_forward)
    return registry


__all__ = [
    "STAGE_TYPES",
    "ConvertBody",
    "Deliver",
    "Filter",
    "Forward",
    "Invoke",
    "RemoveHeader",
    "SetHeader",
    "Split",
    "Stage",
    "StageBuilder",
    "StageRegistry",
    "default_registry",
    "stage_label",
]
