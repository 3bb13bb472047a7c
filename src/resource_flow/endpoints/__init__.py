"""Endpoints messages are sent to: repository calls and capture sinks."""

from .capture import CaptureEndpoint, Expectation
from .registry import Endpoint, EndpointRegistry, parse_endpoint_uri
from .repository import RepositoryEndpoint

__all__ = [
    "CaptureEndpoint",
    "Endpoint",
    "EndpointRegistry",
    "Expectation",
    "RepositoryEndpoint",
    "parse_endpoint_uri",
]
