"""Message flowing through pipeline stages."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import uuid4

from . import headers as h


class BodyRepresentation(str, Enum):
    """Representations a message body can be held in."""

    BYTES = "bytes"
    TEXT = "text"
    XML = "xml"
    RDF = "rdf"


_UNSET: Any = object()


@dataclass(slots=True)
class Message:
    """Body plus headers, exclusively owned by one pipeline execution.

    ``derive`` is the only way stages produce new messages: the derived
    message receives a deep copy of the headers so no two in-flight messages
    ever share a mutable header mapping.
    """

    body: Any = None
    headers: dict[str, Any] = field(default_factory=dict)
    representation: BodyRepresentation = BodyRepresentation.BYTES
    message_id: str = field(default_factory=lambda: uuid4().hex)
    correlation_id: str = field(default_factory=lambda: uuid4().hex)

    def __post_init__(self) -> None:
        if isinstance(self.body, str) and self.representation is BodyRepresentation.BYTES:
            self.representation = BodyRepresentation.TEXT

    def get_header(self, key: str, default: Any = None) -> Any:
        return self.headers.get(key, default)

    def set_header(self, key: str, value: Any) -> Message:
        self.headers[key] = value
        return self

    def remove_header(self, key: str) -> Any:
        return self.headers.pop(key, None)

    @property
    def content_type(self) -> str | None:
        return self.headers.get(h.CONTENT_TYPE)

    def derive(
        self,
        *,
        body: Any = _UNSET,
        representation: BodyRepresentation | None = None,
        headers: dict[str, Any] | None = None,
    ) -> Message:
        """Return an independently-owned copy, optionally replacing the body."""
        new_body = self.body if body is _UNSET else body
        if representation is None:
            if body is _UNSET:
                representation = self.representation
            elif isinstance(new_body, str):
                representation = BodyRepresentation.TEXT
            else:
                representation = BodyRepresentation.BYTES
        return Message(
            body=new_body,
            headers=copy.deepcopy(self.headers if headers is None else headers),
            representation=representation,
            correlation_id=self.correlation_id,
        )

    def text(self) -> str | None:
        """Return raw or textual bodies as a string; ``None`` stays ``None``."""
        if self.body is None:
            return None
        if isinstance(self.body, (bytes, bytearray)):
            return bytes(self.body).decode(h.charset(self.content_type), errors="replace")
        return str(self.body)


__all__ = ["BodyRepresentation", "Message"]
