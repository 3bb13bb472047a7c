"""Pipeline stages, execution and orchestration."""

from .orchestrator import PipelineOrchestrator
from .pipeline import Pipeline, PipelineConfig, PipelineDefinition, PipelineExecutor, StageConfig
from .stages import (
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
)

__all__ = [
    "ConvertBody",
    "Deliver",
    "Filter",
    "Forward",
    "Invoke",
    "Pipeline",
    "PipelineConfig",
    "PipelineDefinition",
    "PipelineExecutor",
    "PipelineOrchestrator",
    "RemoveHeader",
    "SetHeader",
    "Split",
    "Stage",
    "StageConfig",
    "StageRegistry",
    "default_registry",
]
