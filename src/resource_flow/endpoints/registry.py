"""Resolution of endpoint URIs to endpoint instances."""

from __future__ import annotations

import threading
from urllib.parse import parse_qsl

import httpx
import structlog

from resource_flow.config.settings import ExpectationSettings, RepositorySettings, get_settings
from resource_flow.utils.errors import PipelineConfigError, UnknownEndpointError
from resource_flow.utils.http_client import BackoffStrategy, HttpClient, RetryConfig

from .capture import CAPTURE_SCHEME, CaptureEndpoint
from .repository import RepositoryEndpoint

logger = structlog.get_logger(__name__)

Endpoint = RepositoryEndpoint | CaptureEndpoint

_OPTION_ALIASES = {
    "throw_on_failure": "throw_on_failure",
    "throwOnFailure": "throw_on_failure",
    "throwExceptionOnFailure": "throw_on_failure",
    "accept": "accept",
    "default_accept": "default_accept",
}


def parse_endpoint_uri(uri: str) -> tuple[str, dict[str, str]]:
    """Split ``target?key=value`` into the target and normalised options."""
    target, _, query = uri.partition("?")
    options: dict[str, str] = {}
    for key, value in parse_qsl(query, keep_blank_values=True):
        try:
            options[_OPTION_ALIASES[key]] = value
        except KeyError as exc:
            raise PipelineConfigError(
                f"Unknown endpoint option '{key}'", detail=f"in endpoint URI '{uri}'"
            ) from exc
    return target.strip(), options


def client_from_settings(
    settings: RepositorySettings, *, transport: httpx.BaseTransport | None = None
) -> HttpClient:
    return HttpClient(
        retry=RetryConfig(
            attempts=settings.retry_attempts,
            backoff_strategy=BackoffStrategy.EXPONENTIAL,
            backoff_initial=settings.retry_backoff_seconds,
            status_forcelist=tuple(settings.retry_status_forcelist),
            timeout=settings.timeout_seconds,
        ),
        transport=transport,
    )


class EndpointRegistry:
    """Named and URI-addressed endpoints shared by the pipelines of one run.

    Capture endpoints are created on first reference and then reused, so a
    test can fetch ``registry.capture("title")`` before any pipeline runs and
    declare expectations on the same instance the pipelines deliver to.
    """

    def __init__(
        self,
        client: HttpClient | None = None,
        *,
        repository: RepositorySettings | None = None,
        expectations: ExpectationSettings | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._repository_settings = repository or settings.repository
        self._expectation_settings = expectations or settings.expectations
        self._owns_client = client is None
        self._client = client or client_from_settings(self._repository_settings, transport=transport)
        self._named: dict[str, Endpoint] = {}
        self._captures: dict[str, CaptureEndpoint] = {}
        self._resolved: dict[str, RepositoryEndpoint] = {}
        self._lock = threading.Lock()

    @property
    def client(self) -> HttpClient:
        return self._client

    def register(self, name: str, endpoint: Endpoint) -> Endpoint:
        with self._lock:
            if name in self._named:
                raise PipelineConfigError(f"Endpoint '{name}' is already registered")
            self._named[name] = endpoint
            self._resolved.clear()
        return endpoint

    def register_repository(
        self,
        name: str,
        base_url: str | None = None,
        **options: object,
    ) -> RepositoryEndpoint:
        endpoint = RepositoryEndpoint(
            base_url=base_url or self._repository_settings.base_url,
            client=self._client,
            default_accept=self._repository_settings.default_accept,
        )
        if options:
            endpoint = self._configure(endpoint, options, name)
        self.register(name, endpoint)
        return endpoint

    def capture(self, name: str) -> CaptureEndpoint:
        with self._lock:
            endpoint = self._captures.get(name)
            if endpoint is None:
                endpoint = CaptureEndpoint(
                    name,
                    timeout=self._expectation_settings.timeout_seconds,
                    poll_interval=self._expectation_settings.poll_interval_seconds,
                )
                self._captures[name] = endpoint
            return endpoint

    def captures(self) -> dict[str, CaptureEndpoint]:
        with self._lock:
            return dict(self._captures)

    def reset_captures(self) -> None:
        for endpoint in self.captures().values():
            endpoint.reset()

    def resolve(self, uri: str) -> Endpoint:
        """Resolve ``capture:<name>``, a registered name or an HTTP(S) URI."""
        target, options = parse_endpoint_uri(uri)
        if target.startswith(f"{CAPTURE_SCHEME}:"):
            if options:
                raise PipelineConfigError(f"Capture endpoint '{uri}' accepts no options")
            name = target[len(CAPTURE_SCHEME) + 1 :]
            if not name:
                raise PipelineConfigError(f"Capture endpoint '{uri}' has no name")
            return self.capture(name)
        with self._lock:
            cached = self._resolved.get(uri)
            named = self._named.get(target)
        if cached is not None:
            return cached
        if named is not None:
            if not options:
                return named
            if not isinstance(named, RepositoryEndpoint):
                raise PipelineConfigError(f"Endpoint '{target}' accepts no options")
            endpoint = self._configure(named, options, uri)
        elif target.startswith(("http://", "https://")):
            endpoint = RepositoryEndpoint(
                base_url=target,
                client=self._client,
                default_accept=self._repository_settings.default_accept,
            )
            endpoint = self._configure(endpoint, options, uri) if options else endpoint
        else:
            raise UnknownEndpointError(uri)
        with self._lock:
            self._resolved[uri] = endpoint
        logger.debug("endpoint.resolved", uri=uri, base_url=endpoint.base_url)
        return endpoint

    def repository(self, uri: str) -> RepositoryEndpoint:
        endpoint = self.resolve(uri)
        if not isinstance(endpoint, RepositoryEndpoint):
            raise PipelineConfigError(f"Endpoint '{uri}' cannot be invoked")
        return endpoint

    def capture_for(self, uri: str) -> CaptureEndpoint:
        endpoint = self.resolve(uri)
        if not isinstance(endpoint, CaptureEndpoint):
            raise PipelineConfigError(f"Endpoint '{uri}' is not a capture endpoint")
        return endpoint

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    @staticmethod
    def _configure(endpoint: RepositoryEndpoint, options: dict, uri: str) -> RepositoryEndpoint:
        try:
            return endpoint.with_options(**options)
        except (TypeError, ValueError) as exc:
            raise PipelineConfigError(f"Invalid options for endpoint '{uri}'", detail=str(exc)) from exc


__all__ = ["Endpoint", "EndpointRegistry", "client_from_settings", "parse_endpoint_uri"]
