"""Splitting large messages into chunks and reassembling them."""

from __future__ import annotations

from dataclasses import replace

from .types import MiddlewareError, RemoteMessage


class ChunkedMessageBody:
    """Collects the chunks of one message until all have arrived."""

    def __init__(self, num_chunks: int, chunk_size: int) -> None:
        self.num_chunks = num_chunks
        self.chunk_size = chunk_size
        self._chunks: list[bytes | None] = [None] * num_chunks
        self._bytes_written = 0
        self._num_chunks_stored = 0

    @property
    def num_chunks_stored(self) -> int:
        """Number of chunks inserted so far."""
        return self._num_chunks_stored

    def insert(self, chunk_id: int, chunk: bytes) -> None:
        """Store the chunk at position ``chunk_id``."""
        if not 0 <= chunk_id < self.num_chunks:
            raise MiddlewareError(
                f"Chunk id {chunk_id} out of range for {self.num_chunks} chunks"
            )
        chunk = bytes(chunk)
        self._bytes_written += len(chunk)
        self._chunks[chunk_id] = chunk
        self._num_chunks_stored += 1

    def is_complete(self) -> bool:
        """Whether every chunk has been stored."""
        return self._num_chunks_stored == self.num_chunks

    def complete_body(self) -> bytes:
        """Return the reassembled payload."""
        if not self.is_complete():
            raise MiddlewareError("Message is not complete")
        # Short chunks occupy a full slot, zero-padded, as in a fixed layout.
        body = b"".join(
            (chunk or b"").ljust(self.chunk_size, b"\x00") for chunk in self._chunks
        )
        return body[: self._bytes_written]


def chunk_message(msg: RemoteMessage, max_chunk_size: int) -> list[RemoteMessage]:
    """Split a message into chunks of at most ``max_chunk_size`` bytes."""
    if max_chunk_size <= 0:
        raise ValueError("max_chunk_size must be positive")
    data = bytes(msg.data)
    pieces = [
        data[start : start + max_chunk_size]
        for start in range(0, len(data), max_chunk_size)
    ]
    return [
        RemoteMessage(
            replace(msg.metadata, chunk_id=index, num_chunks=len(pieces)), piece
        )
        for index, piece in enumerate(pieces)
    ]