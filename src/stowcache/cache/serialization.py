"""
Stowcache — Payload Serializers

Backends store opaque byte payloads. A serializer is the only place where a
Python value turns into those bytes and back.
"""

from __future__ import annotations

import json
import logging
import pickle
from typing import Any, Protocol, runtime_checkable

from ..errors import SerializationError

logger = logging.getLogger(__name__)


@runtime_checkable
class Serializer(Protocol):
    """Converts cache values to payload bytes and back."""

    name: str

    def dumps(self, value: Any) -> bytes: ...

    def loads(self, payload: bytes) -> Any: ...


class JsonSerializer:
    """
    Compact UTF-8 JSON payloads.

    Readable by any client of the storage medium. Tuples come back as lists
    and only JSON-compatible values are accepted.
    """

    name = "json"

    def dumps(self, value: Any) -> bytes:
        try:
            return json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise SerializationError(
                f"Value of type {type(value).__name__} is not JSON serializable: {e}",
                details={"serializer": self.name, "value_type": type(value).__name__},
            ) from e

    def loads(self, payload: bytes) -> Any:
        try:
            return json.loads(payload.decode("utf-8"))
        except (ValueError, UnicodeDecodeError) as e:
            raise SerializationError(
                f"Payload is not valid JSON: {e}",
                details={"serializer": self.name, "payload_size": len(payload)},
            ) from e


class PickleSerializer:
    """
    Pickle payloads; round-trips arbitrary picklable Python values exactly.

    Only use with storage that no untrusted party can write to.
    """

    name = "pickle"

    def __init__(self, protocol: int = pickle.HIGHEST_PROTOCOL):
        self.protocol = protocol

    def dumps(self, value: Any) -> bytes:
        try:
            return pickle.dumps(value, protocol=self.protocol)
        except (pickle.PicklingError, TypeError, AttributeError) as e:
            raise SerializationError(
                f"Value of type {type(value).__name__} cannot be pickled: {e}",
                details={"serializer": self.name, "value_type": type(value).__name__},
            ) from e

    def loads(self, payload: bytes) -> Any:
        try:
            return pickle.loads(payload)
        except Exception as e:
            # Unpickling can fail with almost any exception type
            raise SerializationError(
                f"Payload cannot be unpickled: {e}",
                details={"serializer": self.name, "payload_size": len(payload)},
            ) from e


def default_serializer() -> Serializer:
    """Serializer used by backends that are not given one explicitly."""
    return JsonSerializer()
