"""XPath predicates and extractors over parsed XML bodies."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any

from lxml import etree
from rdflib.namespace import RDF

from resource_flow.models.message import BodyRepresentation, Message
from resource_flow.utils.errors import PredicateError


class Namespaces(Mapping[str, str]):
    """Prefix to namespace URI bindings used when compiling queries."""

    def __init__(self, bindings: Mapping[str, str] | None = None, **prefixes: str) -> None:
        self._bindings: dict[str, str] = {}
        for prefix, uri in {**dict(bindings or {}), **prefixes}.items():
            self.add(prefix, uri)

    @classmethod
    def rdf(cls, bindings: Mapping[str, str] | None = None, **prefixes: str) -> Namespaces:
        """Bindings preloaded with the RDF syntax namespace as ``rdf``."""
        return cls({"rdf": str(RDF), **dict(bindings or {})}, **prefixes)

    def add(self, prefix: str, uri: str) -> Namespaces:
        if not prefix or not uri:
            raise PredicateError(f"Invalid namespace binding {prefix!r} -> {uri!r}")
        self._bindings[prefix] = str(uri)
        return self

    def __getitem__(self, prefix: str) -> str:
        return self._bindings[prefix]

    def __iter__(self) -> Iterator[str]:
        return iter(self._bindings)

    def __len__(self) -> int:
        return len(self._bindings)

    def __repr__(self) -> str:
        return f"Namespaces({self._bindings!r})"


class XPathQuery:
    """Compiled XPath 1.0 expression bound to a set of namespaces.

    Queries are compiled eagerly so malformed expressions surface when a
    pipeline is built rather than when the first message arrives.
    """

    __slots__ = ("expression", "namespaces", "_compiled")

    def __init__(self, expression: str, namespaces: Mapping[str, str] | None = None) -> None:
        self.expression = expression
        self.namespaces = dict(namespaces or {})
        try:
            self._compiled = etree.XPath(expression, namespaces=self.namespaces)
            # unbound prefixes only surface on evaluation
            self._compiled(etree.Element("probe"))
        except etree.XPathError as exc:
            raise PredicateError(
                f"Malformed XPath expression: {exc}", expression=expression
            ) from exc

    def __repr__(self) -> str:
        return f"XPathQuery({self.expression!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, XPathQuery):
            return NotImplemented
        return self.expression == other.expression and self.namespaces == other.namespaces

    def __hash__(self) -> int:
        return hash((self.expression, tuple(sorted(self.namespaces.items()))))

    def evaluate(self, message: Message) -> Any:
        if message.representation is not BodyRepresentation.XML or message.body is None:
            raise PredicateError(
                "XPath evaluated before the body was converted to xml",
                expression=self.expression,
                detail=f"body representation is '{message.representation.value}'",
            )
        try:
            return self._compiled(message.body)
        except etree.XPathError as exc:
            raise PredicateError(
                f"XPath evaluation failed: {exc}", expression=self.expression
            ) from exc

    def matches(self, message: Message) -> bool:
        """Apply XPath boolean conversion to the query result."""
        result = self.evaluate(message)
        if isinstance(result, list):
            return bool(result)
        if isinstance(result, float):
            return result != 0 and result == result
        return bool(result)

    def select(self, message: Message) -> list[str]:
        """Return matched nodes as strings, in document order."""
        result = self.evaluate(message)
        if not isinstance(result, list):
            if result is False or result == "":
                return []
            return [_scalar_text(result)]
        return [_node_text(node) for node in result]


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _node_text(node: Any) -> str:
    if isinstance(node, etree._Element):
        return etree.tostring(node, encoding="unicode", with_tail=False)
    # text nodes and attribute values arrive as lxml "smart strings"
    return str(node)


__all__ = ["Namespaces", "XPathQuery"]
