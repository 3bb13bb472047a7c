import pytest
from lxml import etree
from rdflib import Graph, Literal, URIRef

from resource_flow.documents import body_bytes, body_text, convert_body, graphs_isomorphic
from resource_flow.models import BodyRepresentation, Message
from resource_flow.models import headers as h
from resource_flow.testing import DC, turtle_fixture
from resource_flow.utils.errors import ConversionError

RESOURCE = "http://localhost:8080/rest/doc"


def test_bytes_to_text_uses_content_type_charset():
    message = Message(body="naïve".encode("latin-1"), headers={h.CONTENT_TYPE: "text/plain; charset=latin-1"})
    converted = convert_body(message, BodyRepresentation.TEXT)
    assert converted.body == "naïve"
    assert converted.representation is BodyRepresentation.TEXT


def test_invalid_text_raises_conversion_error():
    message = Message(body=b"\xff\xfe\xfa", headers={h.CONTENT_TYPE: "text/plain; charset=utf-8"})
    with pytest.raises(ConversionError):
        convert_body(message, "text")


def test_bytes_to_xml_parses_document():
    converted = convert_body(Message(body=b"<root><item>1</item></root>"), BodyRepresentation.XML)
    assert converted.representation is BodyRepresentation.XML
    assert converted.body.getroot().tag == "root"


@pytest.mark.parametrize("body", [None, b"", b"   ", b"<root><unclosed></root>"])
def test_malformed_xml_raises_conversion_error(body):
    with pytest.raises(ConversionError):
        convert_body(Message(body=body), BodyRepresentation.XML)


def test_xml_parser_does_not_expand_external_entities(tmp_path):
    secret = tmp_path / "secret.txt"
    secret.write_text("classified")
    document = (
        f'<?xml version="1.0"?><!DOCTYPE r [<!ENTITY x SYSTEM "file://{secret}">]><r>&x;</r>'
    ).encode()
    converted = convert_body(Message(body=document), BodyRepresentation.XML)
    assert "classified" not in body_text(converted)


def test_turtle_to_rdf_uses_content_type_and_base():
    message = Message(body=turtle_fixture("a title"), headers={h.CONTENT_TYPE: "text/turtle"})
    converted = convert_body(message, BodyRepresentation.RDF, base=RESOURCE)
    assert (URIRef(RESOURCE), DC.title, Literal("a title")) in converted.body


def test_explicit_source_format_overrides_content_type():
    message = Message(body=turtle_fixture(), headers={h.CONTENT_TYPE: "application/octet-stream"})
    converted = convert_body(message, "rdf", source_format="text/turtle", base=RESOURCE)
    assert len(converted.body) == 1


def test_unknown_rdf_syntax_raises_conversion_error():
    message = Message(body=turtle_fixture(), headers={h.CONTENT_TYPE: "application/octet-stream"})
    with pytest.raises(ConversionError):
        convert_body(message, BodyRepresentation.RDF)


def test_malformed_turtle_raises_conversion_error():
    message = Message(body="<> dc:title", headers={h.CONTENT_TYPE: "text/turtle"})
    with pytest.raises(ConversionError):
        convert_body(message, BodyRepresentation.RDF)


def test_rdf_serializes_back_in_declared_syntax():
    graph = Graph()
    graph.add((URIRef(RESOURCE), DC.title, Literal("title")))
    message = Message(body=graph, representation=BodyRepresentation.RDF, headers={h.CONTENT_TYPE: "text/turtle"})

    text = convert_body(message, BodyRepresentation.TEXT).body
    reparsed = Graph().parse(data=text, format="turtle")
    assert graphs_isomorphic(graph, reparsed)

    payload = body_bytes(message.derive(headers={}))
    assert payload.lstrip().startswith(b"<?xml")


def test_xml_to_bytes_round_trip():
    xml = convert_body(Message(body="<a><b>text</b></a>"), BodyRepresentation.XML)
    raw = convert_body(xml, BodyRepresentation.BYTES).body
    assert etree.fromstring(raw).findtext("b") == "text"


def test_same_representation_is_a_no_op():
    message = Message(body="text")
    assert convert_body(message, BodyRepresentation.TEXT) is message
