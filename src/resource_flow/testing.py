"""In-memory linked-data repository served through ``httpx.MockTransport``.

Key Responsibilities:
    - Emulate the subset of LDP/Fedora behaviour pipelines rely on: create,
      replace, SPARQL-update patching, deletion with tombstones and content
      negotiated retrieval
    - Hand out ``HttpClient`` instances wired to the fake so tests exercise
      the production request path end to end

Collaborators:
    - Upstream: tests and examples building an ``EndpointRegistry``
    - Downstream: ``rdflib`` for parsing, SPARQL update and serialization

Thread Safety:
    - Thread-safe; the resource table is guarded by a lock
"""

from __future__ import annotations

import threading
from uuid import uuid4

import httpx
import structlog
from rdflib import Graph, Namespace, URIRef
from rdflib.namespace import RDF
from rdflib.plugins.sparql import prepareUpdate

from resource_flow.documents.conversion import rdf_format
from resource_flow.models import headers as h
from resource_flow.utils.http_client import HttpClient, RetryConfig

logger = structlog.get_logger(__name__)

FEDORA = Namespace("http://fedora.info/definitions/v4/repository#")
LDP = Namespace("http://www.w3.org/ns/ldp#")
DC = Namespace("http://purl.org/dc/elements/1.1/")

DEFAULT_BASE_URL = "http://localhost:8080/rest"
SPARQL_UPDATE = "application/sparql-update"

# Serializations offered by GET, in server preference order.
NEGOTIABLE_TYPES: tuple[str, ...] = (
    "application/rdf+xml",
    "text/turtle",
    "application/n-triples",
    "application/ld+json",
)

SERVER_MANAGED_TYPES: tuple[URIRef, ...] = (FEDORA.Container, LDP.RDFSource)


def turtle_fixture(title: str = "some title &amp; other") -> str:
    """Return a Turtle document describing ``<>`` with a single ``dc:title``."""
    escaped = title.replace("\\", "\\\\").replace('"', '\\"')
    return (
        "@prefix dc: <http://purl.org/dc/elements/1.1/> .\n"
        "\n"
        f'<> dc:title "{escaped}" .\n'
    )


def negotiate(accept: str | None) -> str | None:
    """Pick the first offered media type acceptable to ``accept``.

    ``None`` means no offered type is acceptable.
    """
    if not accept:
        return NEGOTIABLE_TYPES[0]
    ranked: list[tuple[float, int, str]] = []
    for position, part in enumerate(accept.split(",")):
        media, *params = (piece.strip() for piece in part.split(";"))
        quality = 1.0
        for param in params:
            key, _, value = param.partition("=")
            if key.strip() == "q":
                try:
                    quality = float(value)
                except ValueError:
                    quality = 0.0
        if quality > 0:
            ranked.append((-quality, position, media.lower()))
    for _, _, media in sorted(ranked):
        if media in ("*/*", "application/*"):
            return NEGOTIABLE_TYPES[0]
        if media == "text/*":
            return "text/turtle"
        if media in NEGOTIABLE_TYPES:
            return media
    return None


class InMemoryRepository:
    """Fake resource repository keyed by absolute resource URI."""

    def __init__(self, base_url: str = DEFAULT_BASE_URL) -> None:
        self.base_url = base_url.rstrip("/")
        self._resources: dict[str, Graph] = {}
        self._tombstones: set[str] = set()
        self._lock = threading.Lock()
        self.requests: list[httpx.Request] = []

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def client(self, retry: RetryConfig | None = None) -> HttpClient:
        return HttpClient(retry=retry, transport=self.transport)

    # ------------------------------------------------------------------
    # Inspection helpers
    # ------------------------------------------------------------------

    def graph(self, uri: str) -> Graph:
        """Return a copy of the stored graph for ``uri``."""
        with self._lock:
            stored = self._resources[uri.rstrip("/")]
            copied = Graph()
            for triple in stored:
                copied.add(triple)
            return copied

    def exists(self, uri: str) -> bool:
        with self._lock:
            return uri.rstrip("/") in self._resources

    def is_tombstone(self, uri: str) -> bool:
        with self._lock:
            return uri.rstrip("/") in self._tombstones

    def identifier(self, uri: str) -> str:
        """Strip the base URL from ``uri``, leaving the resource path."""
        return uri[len(self.base_url) :] if uri.startswith(self.base_url) else uri

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        uri = str(request.url).split("?", 1)[0].rstrip("/")
        handler = {
            "GET": self._get,
            "HEAD": self._get,
            "POST": self._post,
            "PUT": self._put,
            "PATCH": self._patch,
            "DELETE": self._delete,
        }.get(request.method)
        if handler is None:
            return httpx.Response(405, headers={"Allow": "GET, HEAD, POST, PUT, PATCH, DELETE"})
        response = handler(request, uri)
        logger.debug("repository.fake.handled", method=request.method, url=uri, status=response.status_code)
        return response

    def _parse(self, request: httpx.Request, uri: str) -> Graph | httpx.Response:
        graph = Graph()
        content = request.content
        if not content.strip():
            return graph
        fmt = rdf_format(None, request.headers.get("Content-Type"))
        if fmt is None:
            return httpx.Response(415, text=f"Unsupported media type {request.headers.get('Content-Type')}")
        try:
            graph.parse(data=content, format=fmt, publicID=uri)
        except Exception as exc:  # rdflib raises parser-specific exception types
            return httpx.Response(400, text=f"Malformed {fmt} body: {exc}")
        return graph

    def _store(self, uri: str, graph: Graph) -> None:
        subject = URIRef(uri)
        for rdf_type in SERVER_MANAGED_TYPES:
            graph.add((subject, RDF.type, rdf_type))
        self._resources[uri] = graph
        self._tombstones.discard(uri)

    def _post(self, request: httpx.Request, uri: str) -> httpx.Response:
        slug = request.headers.get("Slug")
        created = f"{uri}/{slug.strip('/') if slug else uuid4()}"
        parsed = self._parse(request, created)
        if isinstance(parsed, httpx.Response):
            return parsed
        with self._lock:
            if created in self._resources or created in self._tombstones:
                return httpx.Response(409, text=f"{created} already exists")
            self._store(created, parsed)
        return httpx.Response(
            201,
            text=created,
            headers={"Location": created, "Content-Type": "text/plain"},
        )

    def _put(self, request: httpx.Request, uri: str) -> httpx.Response:
        parsed = self._parse(request, uri)
        if isinstance(parsed, httpx.Response):
            return parsed
        with self._lock:
            if uri in self._tombstones:
                return self._gone(request)
            replaced = uri in self._resources
            self._store(uri, parsed)
        if replaced:
            return httpx.Response(204)
        return httpx.Response(201, text=uri, headers={"Location": uri, "Content-Type": "text/plain"})

    def _patch(self, request: httpx.Request, uri: str) -> httpx.Response:
        if h.media_type(request.headers.get("Content-Type")) != SPARQL_UPDATE:
            return httpx.Response(415, text=f"PATCH requires {SPARQL_UPDATE}")
        with self._lock:
            if uri in self._tombstones:
                return self._gone(request)
            graph = self._resources.get(uri)
            if graph is None:
                return httpx.Response(404)
            try:
                prepared = prepareUpdate(request.content.decode("utf-8"), base=uri)
                graph.update(prepared)
            except Exception as exc:  # pyparsing and rdflib raise unrelated types
                return httpx.Response(400, text=f"Malformed SPARQL update: {exc}")
        return httpx.Response(204)

    def _delete(self, request: httpx.Request, uri: str) -> httpx.Response:
        with self._lock:
            if uri in self._tombstones:
                return self._gone(request)
            if self._resources.pop(uri, None) is None:
                return httpx.Response(404)
            self._tombstones.add(uri)
        return httpx.Response(204)

    def _get(self, request: httpx.Request, uri: str) -> httpx.Response:
        media = negotiate(request.headers.get("Accept"))
        with self._lock:
            if uri in self._tombstones:
                return self._gone(request)
            graph = self._resources.get(uri)
            if graph is None:
                return httpx.Response(404)
            if media is None:
                return httpx.Response(406, text=f"Acceptable types: {', '.join(NEGOTIABLE_TYPES)}")
            body = graph.serialize(format=rdf_format(media), encoding="utf-8")
        if request.method == "HEAD":
            body = b""
        return httpx.Response(200, content=body, headers={"Content-Type": media})

    def _gone(self, request: httpx.Request) -> httpx.Response:
        media = negotiate(request.headers.get("Accept")) or NEGOTIABLE_TYPES[0]
        return httpx.Response(410, headers={"Content-Type": media})


__all__ = [
    "DC",
    "DEFAULT_BASE_URL",
    "FEDORA",
    "InMemoryRepository",
    "LDP",
    "NEGOTIABLE_TYPES",
    "SERVER_MANAGED_TYPES",
    "negotiate",
    "turtle_fixture",
]
