"""Active endpoint performing HTTP requests against the resource repository.

Key Responsibilities:
    - Translate message headers into an HTTP request (method, target URI,
      content type, accept) and the message body into the request payload
    - Translate the response back into a derived message carrying the
      response body, content type, status code and location
    - Raise ``InvokeError`` for failed calls unless configured to pass error
      responses through for downstream inspection

Collaborators:
    - Upstream: ``Invoke`` stages via ``PipelineExecutor``
    - Downstream: ``HttpClient`` (``httpx`` + ``tenacity``)

Thread Safety:
    - Thread-safe; endpoints are immutable and the shared client pools
      connections
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass

import httpx
import structlog

from resource_flow.documents.conversion import body_bytes
from resource_flow.models import headers as h
from resource_flow.models.message import BodyRepresentation, Message
from resource_flow.observability.metrics import record_repository_request
from resource_flow.utils.errors import InvokeError
from resource_flow.utils.http_client import HttpClient

logger = structlog.get_logger(__name__)

SPARQL_UPDATE = "application/sparql-update"
DEFAULT_ACCEPT = "application/rdf+xml"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def parse_flag(value: str | int | bool) -> bool:
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Not a boolean flag: {value!r}")


@dataclass(frozen=True, slots=True)
class RepositoryEndpoint:
    """Repository endpoint addressed by a base URI."""

    base_url: str
    client: HttpClient = dataclasses.field(repr=False, compare=False)
    throw_on_failure: bool = True
    accept: str | None = None
    default_accept: str = DEFAULT_ACCEPT

    @property
    def uri(self) -> str:
        return self.base_url

    def with_options(self, **options: object) -> RepositoryEndpoint:
        """Return a copy with endpoint options such as ``throw_on_failure``."""
        if "throw_on_failure" in options:
            options["throw_on_failure"] = parse_flag(options["throw_on_failure"])  # type: ignore[arg-type]
        return dataclasses.replace(self, **options)  # type: ignore[arg-type]

    def resolve_url(self, message: Message) -> str:
        base = str(message.get_header(h.BASE_URL) or self.base_url).rstrip("/")
        identifier = message.get_header(h.RESOURCE_IDENTIFIER)
        if not identifier:
            return base
        identifier = str(identifier)
        if identifier.startswith(("http://", "https://")):
            return identifier
        return f"{base}/{identifier.lstrip('/')}"

    def _request_headers(self, method: str, message: Message, payload: bytes | None) -> dict[str, str]:
        request_headers: dict[str, str] = {}
        content_type = message.content_type
        if payload is not None:
            if content_type is None and method == "PATCH":
                content_type = SPARQL_UPDATE
            if content_type:
                request_headers["Content-Type"] = str(content_type)
        accept = message.get_header(h.ACCEPT) or self.accept
        if accept is None and method in ("GET", "HEAD"):
            accept = self.default_accept
        if accept:
            request_headers["Accept"] = str(accept)
        return request_headers

    def invoke(self, message: Message, *, method: str | None = None, throw_on_failure: bool | None = None) -> Message:
        """Perform the request described by ``message`` and return the response.

        Args:
            message: Message whose headers and body describe the request.
            method: Optional method override; otherwise the ``HTTP_METHOD``
                header, defaulting to ``GET``.
            throw_on_failure: Optional per-call override of the endpoint flag.

        Returns:
            A derived message carrying the response.

        Raises:
            InvokeError: On transport failure, or on a status >= 400 when
                throwing on failure.
        """
        verb = str(method or message.get_header(h.HTTP_METHOD) or "GET").upper()
        url = self.resolve_url(message)
        payload = body_bytes(message) if verb not in ("GET", "HEAD", "DELETE") else None
        throw = self.throw_on_failure if throw_on_failure is None else throw_on_failure
        logger.debug("repository.request", method=verb, url=url, has_body=payload is not None)
        try:
            response = self.client.request(
                verb,
                url,
                content=payload,
                headers=self._request_headers(verb, message, payload),
            )
        except httpx.TransportError as exc:
            record_repository_request(verb, None)
            logger.warning("repository.transport_error", method=verb, url=url, error=str(exc))
            raise InvokeError(
                f"{verb} {url} failed: {exc}", method=verb, url=url
            ) from exc
        record_repository_request(verb, response.status_code)
        logger.info("repository.response", method=verb, url=url, status=response.status_code)
        if response.status_code >= 400 and throw:
            raise InvokeError(
                f"{verb} {url} returned HTTP {response.status_code}",
                method=verb,
                url=url,
                status_code=response.status_code,
                response_body=response.text,
            )
        return self._to_message(message, response)

    def _to_message(self, request: Message, response: httpx.Response) -> Message:
        result = request.derive(
            body=response.content or None,
            representation=BodyRepresentation.BYTES,
        )
        for stale in (h.CONTENT_TYPE, h.HTTP_LOCATION):
            result.remove_header(stale)
        content_type = response.headers.get("Content-Type")
        if content_type:
            result.set_header(h.CONTENT_TYPE, content_type)
        result.set_header(h.HTTP_RESPONSE_CODE, response.status_code)
        location = response.headers.get("Location")
        if location:
            result.set_header(h.HTTP_LOCATION, location)
        return result


__all__ = ["DEFAULT_ACCEPT", "RepositoryEndpoint", "SPARQL_UPDATE", "parse_flag"]
