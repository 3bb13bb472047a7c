"""Conventional message header keys."""

from __future__ import annotations

HTTP_METHOD = "HTTP_METHOD"
CONTENT_TYPE = "CONTENT_TYPE"
ACCEPT = "ACCEPT"
# Set only by repository invocations.
HTTP_RESPONSE_CODE = "HTTP_RESPONSE_CODE"
HTTP_LOCATION = "HTTP_LOCATION"
# Path appended to the endpoint base URI to address an existing resource.
RESOURCE_IDENTIFIER = "RESOURCE_IDENTIFIER"
BASE_URL = "BASE_URL"


def media_type(content_type: str | None) -> str | None:
    """Return the lower-cased media type without parameters."""
    if not content_type:
        return None
    return content_type.split(";", 1)[0].strip().lower() or None


def charset(content_type: str | None, default: str = "utf-8") -> str:
    """Return the ``charset`` parameter of a content type, if declared."""
    if content_type:
        for parameter in content_type.split(";")[1:]:
            name, _, value = parameter.partition("=")
            if name.strip().lower() == "charset" and value.strip():
                return value.strip().strip('"')
    return default


__all__ = [
    "ACCEPT",
    "BASE_URL",
    "CONTENT_TYPE",
    "HTTP_LOCATION",
    "HTTP_METHOD",
    "HTTP_RESPONSE_CODE",
    "RESOURCE_IDENTIFIER",
    "charset",
    "media_type",
]
