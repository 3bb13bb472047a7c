import pytest

from resource_flow.documents import Namespaces, XPathQuery, convert_body
from resource_flow.models import BodyRepresentation, Message
from resource_flow.utils.errors import PredicateError

DC = "http://purl.org/dc/elements/1.1/"
REPOSITORY = "http://fedora.info/definitions/v4/repository#"

RDF_XML = f"""<?xml version="1.0" encoding="utf-8"?>
<rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#" xmlns:dc="{DC}">
  <rdf:Description rdf:about="http://localhost:8080/rest/doc">
    <rdf:type rdf:resource="{REPOSITORY}Container"/>
    <dc:title>first</dc:title>
    <dc:title>second</dc:title>
  </rdf:Description>
</rdf:RDF>
"""


@pytest.fixture
def document() -> Message:
    return convert_body(Message(body=RDF_XML.encode()), BodyRepresentation.XML)


@pytest.fixture
def namespaces() -> Namespaces:
    return Namespaces.rdf().add("dc", DC)


def test_rdf_namespaces_are_preloaded():
    namespaces = Namespaces.rdf(dc=DC)
    assert namespaces["rdf"] == "http://www.w3.org/1999/02/22-rdf-syntax-ns#"
    assert set(namespaces) == {"rdf", "dc"}


def test_matches_on_node_sets(document, namespaces):
    container = XPathQuery(
        f"/rdf:RDF/rdf:Description/rdf:type[@rdf:resource='{REPOSITORY}Container']", namespaces
    )
    binary = XPathQuery(f"/rdf:RDF/rdf:Description/rdf:type[@rdf:resource='{REPOSITORY}Binary']", namespaces)
    assert container.matches(document) is True
    assert binary.matches(document) is False


@pytest.mark.parametrize(
    ("expression", "expected"),
    [
        ("true()", True),
        ("false()", False),
        ("count(//dc:title)", True),
        ("count(//dc:missing)", False),
        ("string(//dc:missing)", False),
        ("string(//dc:title)", True),
    ],
)
def test_matches_follows_xpath_boolean_conversion(document, namespaces, expression, expected):
    assert XPathQuery(expression, namespaces).matches(document) is expected


def test_select_returns_text_nodes_in_document_order(document, namespaces):
    titles = XPathQuery("/rdf:RDF/rdf:Description/dc:title/text()", namespaces).select(document)
    assert titles == ["first", "second"]
    assert all(type(title) is str for title in titles)


def test_select_serializes_elements_and_attributes(document, namespaces):
    elements = XPathQuery("//dc:title", namespaces).select(document)
    assert len(elements) == 2
    assert elements[0].endswith(">first</dc:title>")
    assert XPathQuery("//rdf:type/@rdf:resource", namespaces).select(document) == [f"{REPOSITORY}Container"]


def test_select_with_no_matches_is_empty(document, namespaces):
    assert XPathQuery("//dc:creator/text()", namespaces).select(document) == []


def test_malformed_expression_fails_at_construction():
    with pytest.raises(PredicateError):
        XPathQuery("/rdf:RDF[", Namespaces.rdf())


def test_unknown_prefix_fails_at_construction():
    with pytest.raises(PredicateError):
        XPathQuery("//dc:title", Namespaces.rdf())


def test_query_over_unparsed_body_raises(namespaces):
    query = XPathQuery("//dc:title", namespaces)
    with pytest.raises(PredicateError):
        query.matches(Message(body=RDF_XML))
