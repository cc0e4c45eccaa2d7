"""Message types exchanged between burst workers and their wire format."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")

# sender_id, chunk_id, num_chunks, counter (u32 each), collective (u8), padding
_HEADER = struct.Struct("<IIIIB7x")
HEADER_SIZE = _HEADER.size


class MiddlewareError(Exception):
    """Raised when a middleware operation cannot be completed."""


class CollectiveType(enum.IntEnum):
    """The kind of operation a message belongs to."""

    Direct = 0
    Broadcast = 1
    Scatter = 2
    Gather = 3
    AllToAll = 4

    def __str__(self) -> str:
        return self.name

    @classmethod
    def parse(cls, text: str) -> "CollectiveType":
        """Parse a collective name, ignoring case."""
        try:
            return _BY_NAME[text.lower()]
        except KeyError:
            raise MiddlewareError(f"Invalid collective type: {text!r}") from None


_BY_NAME = {member.name.lower(): member for member in CollectiveType}


@dataclass(frozen=True)
class MessageMetadata:
    """Routing information carried by every message."""

    sender_id: int
    chunk_id: int
    num_chunks: int
    counter: int
    collective: CollectiveType


@dataclass
class LocalMessage(Generic[T]):
    """A message whose payload is an application value."""

    metadata: MessageMetadata
    data: T

    def to_remote(self, encode: Callable[[T], bytes] = bytes) -> "RemoteMessage":
        """Encode the payload into bytes for transmission."""
        return RemoteMessage(self.metadata, bytes(encode(self.data)))

    def __repr__(self) -> str:
        return f"LocalMessage(metadata={self.metadata!r})"


@dataclass
class RemoteMessage:
    """A message whose payload is raw bytes."""

    metadata: MessageMetadata
    data: bytes

    def to_local(self, decode: Callable[[bytes], Any] = bytes) -> LocalMessage:
        """Decode the payload into an application value."""
        return LocalMessage(self.metadata, decode(self.data))

    def header(self) -> bytes:
        """Return the fixed-size encoded header."""
        m = self.metadata
        return _HEADER.pack(
            m.sender_id, m.chunk_id, m.num_chunks, m.counter, int(m.collective)
        )

    def serialize(self) -> bytes:
        """Encode the message as header followed by payload."""
        return self.header() + bytes(self.data)

    @classmethod
    def deserialize(cls, raw: bytes) -> "RemoteMessage":
        """Decode a message produced by :meth:`serialize`."""
        raw = bytes(raw)
        if len(raw) < HEADER_SIZE:
            raise MiddlewareError(
                f"Message too short: {len(raw)} bytes, header needs {HEADER_SIZE}"
            )
        return cls.from_parts(raw[:HEADER_SIZE], raw[HEADER_SIZE:])

    @classmethod
    def from_parts(cls, header: bytes, data: bytes) -> "RemoteMessage":
        """Build a message from a separately received header and payload."""
        if len(header) != HEADER_SIZE:
            raise MiddlewareError(
                f"Invalid header size: {len(header)} bytes, expected {HEADER_SIZE}"
            )
        sender_id, chunk_id, num_chunks, counter, collective = _HEADER.unpack(header)
        try:
            kind = CollectiveType(collective)
        except ValueError:
            raise MiddlewareError(f"Invalid collective type: {collective}") from None
        metadata = MessageMetadata(sender_id, chunk_id, num_chunks, counter, kind)
        return cls(metadata, bytes(data))

    def __repr__(self) -> str:
        return f"RemoteMessage(metadata={self.metadata!r}, data={len(self.data)})"