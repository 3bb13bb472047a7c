"""Explicit body conversions between raw and structured representations.

Key Responsibilities:
    - Parse raw bodies into XML trees (``lxml``) or RDF graphs (``rdflib``)
    - Serialize structured bodies back to text or bytes for delivery or for
      repository requests
    - Compare RDF graphs structurally

Collaborators:
    - Upstream: ``ConvertBody`` stages, ``RepositoryEndpoint`` request
      encoding and capture endpoint body comparison
    - Downstream: ``lxml.etree`` and ``rdflib``

Side Effects:
    - None; every conversion returns a new message

Thread Safety:
    - Thread-safe; parsers are created per call
"""

from __future__ import annotations

from typing import Any

from lxml import etree
from rdflib import Graph
from rdflib.compare import isomorphic

from resource_flow.models import headers as h
from resource_flow.models.message import BodyRepresentation, Message
from resource_flow.utils.errors import ConversionError

# Media type -> rdflib parser/serializer name.
RDF_FORMATS: dict[str, str] = {
    "text/turtle": "turtle",
    "application/x-turtle": "turtle",
    "text/n3": "n3",
    "application/rdf+xml": "xml",
    "application/n-triples": "nt",
    "application/n-quads": "nquads",
    "application/ld+json": "json-ld",
    "application/trig": "trig",
}

DEFAULT_RDF_MEDIA_TYPE = "application/rdf+xml"


def _xml_parser() -> etree.XMLParser:
    return etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=False)


def rdf_format(source_format: str | None, content_type: str | None = None) -> str | None:
    """Resolve an rdflib format name from an explicit format or a content type."""
    for candidate in (source_format, h.media_type(content_type)):
        if not candidate:
            continue
        lowered = candidate.lower()
        if lowered in RDF_FORMATS:
            return RDF_FORMATS[lowered]
        if lowered in RDF_FORMATS.values():
            return lowered
    return None


def _raw_bytes(message: Message, target: str) -> bytes:
    body = message.body
    if body is None:
        raise ConversionError(
            "Cannot convert an empty body", source=message.representation.value, target=target
        )
    if isinstance(body, (bytes, bytearray)):
        data = bytes(body)
    elif isinstance(body, str):
        data = body.encode("utf-8")
    else:
        raise ConversionError(
            f"Unsupported body type {type(body).__name__}",
            source=message.representation.value,
            target=target,
        )
    if not data.strip():
        raise ConversionError(
            "Cannot convert an empty body", source=message.representation.value, target=target
        )
    return data


def _parse_xml(message: Message) -> etree._ElementTree:
    data = _raw_bytes(message, BodyRepresentation.XML.value)
    try:
        root = etree.fromstring(data, _xml_parser())
    except etree.XMLSyntaxError as exc:
        raise ConversionError(
            f"Body is not well-formed XML: {exc}",
            source=message.representation.value,
            target=BodyRepresentation.XML.value,
        ) from exc
    return root.getroottree()


def _parse_rdf(message: Message, source_format: str | None, base: str | None) -> Graph:
    fmt = rdf_format(source_format, message.content_type)
    if fmt is None:
        raise ConversionError(
            f"No RDF syntax known for '{source_format or message.content_type}'",
            source=source_format or message.content_type,
            target=BodyRepresentation.RDF.value,
        )
    if message.representation is BodyRepresentation.XML:
        data = etree.tostring(message.body, xml_declaration=True, encoding="UTF-8")
    else:
        data = _raw_bytes(message, BodyRepresentation.RDF.value)
    graph = Graph()
    try:
        graph.parse(data=data, format=fmt, publicID=base)
    except Exception as exc:  # rdflib raises parser-specific exception types
        raise ConversionError(
            f"Body is not well-formed {fmt}: {exc}",
            source=fmt,
            target=BodyRepresentation.RDF.value,
        ) from exc
    return graph


def _serialize(message: Message) -> bytes | None:
    body = message.body
    representation = message.representation
    if body is None:
        return None
    if representation is BodyRepresentation.XML:
        return etree.tostring(body, xml_declaration=True, encoding="UTF-8")
    if representation is BodyRepresentation.RDF:
        fmt = rdf_format(None, message.content_type) or RDF_FORMATS[DEFAULT_RDF_MEDIA_TYPE]
        return body.serialize(format=fmt, encoding="utf-8")
    if isinstance(body, (bytes, bytearray)):
        return bytes(body)
    return str(body).encode(h.charset(message.content_type))


def body_bytes(message: Message) -> bytes | None:
    """Serialize any body into the bytes sent over the wire."""
    return _serialize(message)


def body_text(message: Message) -> Any:
    """Return a comparable textual form of the body; ``None`` stays ``None``."""
    if message.representation is BodyRepresentation.RDF:
        return message.body
    if message.representation is BodyRepresentation.XML and message.body is not None:
        return etree.tostring(message.body, encoding="unicode")
    return message.text()


def convert_body(
    message: Message,
    target: BodyRepresentation | str,
    *,
    source_format: str | None = None,
    base: str | None = None,
) -> Message:
    """Convert a message body to ``target`` and return a derived message.

    Args:
        message: Message whose body should be converted.
        target: Representation to convert to.
        source_format: Optional explicit source syntax (media type or rdflib
            format name) used when parsing RDF; defaults to ``CONTENT_TYPE``.
        base: Optional base IRI for resolving relative RDF references.

    Returns:
        A derived message holding the converted body.

    Raises:
        ConversionError: If the body is empty or not well-formed in its
            declared source representation.
    """
    target = BodyRepresentation(target)
    if target is message.representation:
        return message
    if target is BodyRepresentation.XML:
        return message.derive(body=_parse_xml(message), representation=target)
    if target is BodyRepresentation.RDF:
        return message.derive(body=_parse_rdf(message, source_format, base), representation=target)
    data = _serialize(message)
    if target is BodyRepresentation.BYTES:
        return message.derive(body=data, representation=target)
    try:
        text = None if data is None else data.decode(_charset_for(message))
    except (LookupError, UnicodeDecodeError) as exc:
        raise ConversionError(
            f"Body is not valid text: {exc}",
            source=message.representation.value,
            target=target.value,
        ) from exc
    return message.derive(body=text, representation=target)


def _charset_for(message: Message) -> str:
    if message.representation in (BodyRepresentation.XML, BodyRepresentation.RDF):
        return "utf-8"
    return h.charset(message.content_type)


def graphs_isomorphic(left: Graph, right: Graph) -> bool:
    """Return ``True`` when both graphs hold the same triples up to blank nodes."""
    return isomorphic(left, right)


__all__ = [
    "DEFAULT_RDF_MEDIA_TYPE",
    "RDF_FORMATS",
    "body_bytes",
    "body_text",
    "convert_body",
    "graphs_isomorphic",
    "rdf_format",
]
