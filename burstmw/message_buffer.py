"""Buffers for messages that arrived before they were asked for."""

from __future__ import annotations

from typing import Generic, TypeVar

from .chunk_store import ChunkedMessageBody
from .types import CollectiveType, LocalMessage, MessageMetadata, RemoteMessage

T = TypeVar("T")

MessageKey = tuple[int, CollectiveType, int]  # (sender_id, collective, counter)


def _key(metadata: MessageMetadata) -> MessageKey:
    return (metadata.sender_id, metadata.collective, metadata.counter)


class RemoteMessageBuffer:
    """Holds remote message chunks until their messages are complete."""

    def __init__(self, chunk_size: int) -> None:
        self.chunk_size = chunk_size
        self._buffer: dict[MessageKey, ChunkedMessageBody] = {}

    def insert(self, msg: RemoteMessage) -> None:
        """Store a message or one chunk of it."""
        key = _key(msg.metadata)
        body = self._buffer.get(key)
        if body is None:
            body = ChunkedMessageBody(msg.metadata.num_chunks, self.chunk_size)
            self._buffer[key] = body
        body.insert(msg.metadata.chunk_id, msg.data)

    def get(
        self, sender_id: int, collective: CollectiveType, counter: int
    ) -> RemoteMessage | None:
        """Remove and return the complete message, or None if not complete."""
        key = (sender_id, collective, counter)
        body = self._buffer.get(key)
        if body is None or not body.is_complete():
            return None
        del self._buffer[key]
        metadata = MessageMetadata(
            sender_id=sender_id,
            chunk_id=0,
            num_chunks=1,
            counter=counter,
            collective=collective,
        )
        return RemoteMessage(metadata, body.complete_body())

    def num_chunks_stored(
        self, sender_id: int, collective: CollectiveType, counter: int
    ) -> int | None:
        """Number of chunks held for a message, or None if none are held."""
        body = self._buffer.get((sender_id, collective, counter))
        return None if body is None else body.num_chunks_stored


class LocalMessageBuffer(Generic[T]):
    """Holds local messages that arrived out of order."""

    def __init__(self) -> None:
        self._buffer: dict[MessageKey, LocalMessage[T]] = {}

    def insert(self, msg: LocalMessage[T]) -> None:
        """Store a message, replacing any with the same key."""
        self._buffer[_key(msg.metadata)] = msg

    def get(
        self, sender_id: int, collective: CollectiveType, counter: int
    ) -> LocalMessage[T] | None:
        """Remove and return the stored message, if any."""
        return self._buffer.pop((sender_id, collective, counter), None)