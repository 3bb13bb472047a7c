"""Content-based HTTP resource pipelines.

Key Responsibilities:
    - Export the message model, stage variants and orchestration entry points
    - Serve as the root package for all resource_flow modules

Collaborators:
    - Upstream: Applications and tests building pipelines
    - Downstream: ``resource_flow`` submodules

Example:
    >>> from resource_flow import Pipeline, SetHeader
    >>> Pipeline("noop", (SetHeader("HTTP_METHOD", "GET"),)).name
    'noop'
"""

from .documents import Namespaces, XPathQuery
from .endpoints import CaptureEndpoint, EndpointRegistry, RepositoryEndpoint
from .models import BodyRepresentation, Message, headers
from .orchestration import (
    ConvertBody,
    Deliver,
    Filter,
    Forward,
    Invoke,
    Pipeline,
    PipelineConfig,
    PipelineExecutor,
    PipelineOrchestrator,
    RemoveHeader,
    SetHeader,
    Split,
)

__all__ = [
    "BodyRepresentation",
    "CaptureEndpoint",
    "ConvertBody",
    "Deliver",
    "EndpointRegistry",
    "Filter",
    "Forward",
    "Invoke",
    "Message",
    "Namespaces",
    "Pipeline",
    "PipelineConfig",
    "PipelineExecutor",
    "PipelineOrchestrator",
    "RemoveHeader",
    "RepositoryEndpoint",
    "SetHeader",
    "Split",
    "XPathQuery",
    "headers",
]
