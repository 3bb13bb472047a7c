"""End-to-end container lifecycle against the in-memory repository."""

import pytest
from rdflib import Graph, URIRef
from rdflib.namespace import RDF

from resource_flow.documents import Namespaces, XPathQuery, graphs_isomorphic
from resource_flow.models import BodyRepresentation
from resource_flow.models import headers as h
from resource_flow.orchestration import ConvertBody, Deliver, Filter, Invoke, Pipeline, SetHeader, Split
from resource_flow.testing import DC, SERVER_MANAGED_TYPES, turtle_fixture

REPOSITORY = "http://fedora.info/definitions/v4/repository#"
PATCH_DOCUMENT = (
    "PREFIX dc: <http://purl.org/dc/elements/1.1/>\n\n"
    'INSERT { <> dc:title "some other title" } WHERE {}'
)


@pytest.fixture
def pipelines(orchestrator):
    namespaces = Namespaces.rdf().add("dc", str(DC))
    orchestrator.register(Pipeline("create", (Invoke("fcrepo"), Deliver("capture:created"))))
    orchestrator.register(
        Pipeline(
            "patch",
            (SetHeader(h.HTTP_METHOD, "PATCH"), Invoke("fcrepo"), Deliver("capture:operation")),
        )
    )
    orchestrator.register(
        Pipeline(
            "title",
            (
                Invoke("fcrepo"),
                ConvertBody(BodyRepresentation.XML),
                Filter(
                    XPathQuery(
                        f"/rdf:RDF/rdf:Description/rdf:type[@rdf:resource='{REPOSITORY}Container']",
                        namespaces,
                    )
                ),
                Deliver("capture:filter"),
                Split(XPathQuery("/rdf:RDF/rdf:Description/dc:title/text()", namespaces)),
                Deliver("capture:title"),
            ),
        )
    )
    orchestrator.register(
        Pipeline(
            "delete",
            (
                SetHeader(h.HTTP_METHOD, "DELETE"),
                Invoke("fcrepo"),
                Deliver("capture:operation"),
                SetHeader(h.HTTP_METHOD, "GET"),
                Invoke("fcrepo?throwExceptionOnFailure=false"),
                Deliver("capture:verifyGone"),
            ),
        )
    )
    return orchestrator


def _create(orchestrator, repository) -> str:
    response = orchestrator.submit(
        "create",
        turtle_fixture(),
        {h.HTTP_METHOD: "POST", h.CONTENT_TYPE: "text/turtle"},
    )
    return repository.identifier(response.text())


def test_create_delivers_created_response(pipelines, repository):
    created = pipelines.capture("created").expect_count(1).expect_header(h.HTTP_RESPONSE_CODE, 201)
    _create(pipelines, repository)
    created.assert_satisfied()


def test_title_is_extracted_from_container(pipelines, repository):
    title = (
        pipelines.capture("title")
        .expect_count(1)
        .expect_bodies(["some title &amp; other"])
        .expect_header(h.CONTENT_TYPE, "application/rdf+xml")
        .expect_header(h.HTTP_RESPONSE_CODE, 200)
    )
    identifier = _create(pipelines, repository)
    pipelines.submit("title", None, {h.RESOURCE_IDENTIFIER: identifier})
    title.assert_satisfied()


def test_container_lifecycle(pipelines, repository):
    created = pipelines.capture("created").expect_count(1).expect_header(h.HTTP_RESPONSE_CODE, 201)
    operation = (
        pipelines.capture("operation")
        .expect_count(2)
        .expect_bodies([None, None])
        .expect_header(h.HTTP_RESPONSE_CODE, 204)
    )
    title = (
        pipelines.capture("title")
        .expect_count(3)
        .expect_bodies_in_any_order(["some title &amp; other", "some title &amp; other", "some other title"])
        .expect_header(h.CONTENT_TYPE, "application/rdf+xml")
        .expect_header(h.HTTP_RESPONSE_CODE, 200)
    )
    filtered = (
        pipelines.capture("filter")
        .expect_count(2)
        .expect_header(h.CONTENT_TYPE, "application/rdf+xml")
        .expect_header(h.HTTP_RESPONSE_CODE, 200)
    )
    gone = pipelines.capture("verifyGone").expect_count(1).expect_header(h.HTTP_RESPONSE_CODE, 410)

    identifier = _create(pipelines, repository)
    headers = {h.RESOURCE_IDENTIFIER: identifier}
    pipelines.submit("title", None, headers)
    pipelines.submit("patch", PATCH_DOCUMENT, headers)
    pipelines.submit("title", None, headers)
    pipelines.submit("delete", None, headers)

    for capture in (created, filtered, title, gone, operation):
        capture.assert_satisfied()
    assert all("application/rdf+xml" in m.content_type for m in gone.messages())
    assert repository.is_tombstone(f"{repository.base_url}{identifier}")


def test_non_container_is_filtered_out(pipelines, repository):
    identifier = _create(pipelines, repository)
    uri = f"{repository.base_url}{identifier}"
    pipelines.submit(
        "patch",
        f"DELETE DATA {{ <{uri}> <{RDF.type}> <{REPOSITORY}Container> }}",
        {h.RESOURCE_IDENTIFIER: identifier},
    )

    result = pipelines.submit("title", None, {h.RESOURCE_IDENTIFIER: identifier})

    assert pipelines.capture("filter").count() == 0
    assert pipelines.capture("title").count() == 0
    assert result.representation is BodyRepresentation.XML


def test_post_then_get_round_trips_the_graph(pipelines, repository):
    identifier = _create(pipelines, repository)
    uri = URIRef(f"{repository.base_url}{identifier}")
    pipelines.register(Pipeline("fetch", (Invoke("fcrepo?accept=text/turtle"), ConvertBody(BodyRepresentation.RDF))))

    fetched = pipelines.submit("fetch", None, {h.RESOURCE_IDENTIFIER: identifier}).body
    for rdf_type in SERVER_MANAGED_TYPES:
        fetched.remove((uri, RDF.type, rdf_type))

    expected = Graph().parse(data=turtle_fixture(), format="turtle", publicID=str(uri))
    assert graphs_isomorphic(fetched, expected)
