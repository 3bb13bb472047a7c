"""Message data model."""

from . import headers
from .message import BodyRepresentation, Message

__all__ = ["BodyRepresentation", "Message", "headers"]
