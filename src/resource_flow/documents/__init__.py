"""Structured document handling: conversions and XPath queries."""

from .conversion import body_bytes, body_text, convert_body, graphs_isomorphic
from .xpath import Namespaces, XPathQuery

__all__ = [
    "Namespaces",
    "XPathQuery",
    "body_bytes",
    "body_text",
    "convert_body",
    "graphs_isomorphic",
]
