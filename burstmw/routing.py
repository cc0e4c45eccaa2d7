"""Routing of messages between workers of a burst, within a group or across groups."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Generic, Iterable, Optional, TypeVar

from .chunk_store import chunk_message
from .message_buffer import LocalMessageBuffer, MessageKey, RemoteMessageBuffer
from .proxies import (
    BurstOptions,
    LocalSendReceiveProxy,
    RemoteBroadcastProxy,
    RemoteSendReceiveProxy,
)
from .types import (
    CollectiveType,
    LocalMessage,
    MessageMetadata,
    MiddlewareError,
    RemoteMessage,
)

log = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def _tagged(tag: int, awaitable: Awaitable[R]) -> tuple[int, R]:
    return tag, await awaitable


async def _drain(
    initial: Iterable[Awaitable[R]],
    handle: Callable[[R], Optional[Awaitable[R]]],
) -> None:
    """Run awaitables concurrently, feeding each result to ``handle``.

    ``handle`` may return a further awaitable, which is scheduled as well.
    Returns once nothing is left pending; remaining tasks are cancelled on error.
    """
    pending = {asyncio.ensure_future(aw) for aw in initial}
    try:
        while pending:
            done, pending = await asyncio.wait(
                pending, return_when=asyncio.FIRST_COMPLETED
            )
            for task in done:
                follow_up = handle(task.result())
                if follow_up is not None:
                    pending.add(asyncio.ensure_future(follow_up))
    finally:
        for task in pending:
            task.cancel()


def _matches(
    metadata: MessageMetadata, sender: int, collective: CollectiveType, counter: int
) -> bool:
    return (
        metadata.sender_id == sender
        and metadata.collective == collective
        and metadata.counter == counter
    )


class MessageRouter(Generic[T]):
    """Sends and receives messages for one worker, buffering out-of-order arrivals.

    Workers in ``group`` are reached through the local proxy with application
    values; all others through the remote proxy with encoded bytes, split into
    chunks when the burst options enable it.
    """

    def __init__(
        self,
        options: BurstOptions,
        worker_id: int,
        group: Iterable[int],
        local_send_receive: LocalSendReceiveProxy,
        remote_send_receive: RemoteSendReceiveProxy,
        remote_broadcast: RemoteBroadcastProxy,
        encode: Callable[[Any], bytes] = bytes,
        decode: Callable[[bytes], Any] = bytes,
    ) -> None:
        self.options = options
        self.worker_id = worker_id
        self.group = frozenset(group)
        self.local_send_receive = local_send_receive
        self.remote_send_receive = remote_send_receive
        self.remote_broadcast = remote_broadcast
        self.encode = encode
        self.decode = decode
        self.remote_buffer = RemoteMessageBuffer(options.message_chunk_size)
        self.local_buffer: LocalMessageBuffer[T] = LocalMessageBuffer()

    @property
    def enable_message_chunking(self) -> bool:
        return self.options.enable_message_chunking

    @property
    def message_chunk_size(self) -> int:
        return self.options.message_chunk_size

    def is_local(self, worker_id: int) -> bool:
        """Whether ``worker_id`` belongs to this worker's group."""
        return worker_id in self.group

    def _check_worker(self, worker_id: int) -> None:
        if not 0 <= worker_id < self.options.burst_size:
            raise MiddlewareError(f"worker with id {worker_id} does not exist")

    def _decode(self, msg: RemoteMessage) -> LocalMessage[T]:
        return msg.to_local(self.decode)

    def remote_chunks(self, msg: LocalMessage[T]) -> list[RemoteMessage]:
        """Encode a message for remote delivery, chunked if enabled."""
        remote = msg.to_remote(self.encode)
        if self.enable_message_chunking:
            chunks = chunk_message(remote, self.message_chunk_size)
            log.debug("Chunked message in %d parts", len(chunks))
            return chunks
        return [remote]

    async def send_message(self, to: int, msg: LocalMessage[T]) -> None:
        """Send one message to worker ``to``."""
        self._check_worker(to)
        if self.is_local(to):
            log.debug(
                "[Worker %d] Sending message to local worker %d", self.worker_id, to
            )
            await self.local_send_receive.local_send(to, msg)
            return
        await asyncio.gather(
            *(
                self.remote_send_receive.remote_send(to, chunk)
                for chunk in self.remote_chunks(msg)
            )
        )

    async def send_messages(self, msgs: Iterable[tuple[int, LocalMessage[T]]]) -> None:
        """Send several ``(destination, message)`` pairs concurrently."""
        local_sends = []
        remote_sends = []
        for to, msg in msgs:
            if self.is_local(to):
                local_sends.append(self.local_send_receive.local_send(to, msg))
            else:
                remote_sends.extend(
                    self.remote_send_receive.remote_send(to, chunk)
                    for chunk in self.remote_chunks(msg)
                )
        await asyncio.gather(*local_sends, *remote_sends)

    async def get_message(
        self, sender: int, collective: CollectiveType, counter: int
    ) -> LocalMessage[T]:
        """Wait for the message from ``sender`` with this collective and counter."""
        self._check_worker(sender)
        log.debug(
            "[Worker %d] get_message: from => %d collective => %s counter => %d",
            self.worker_id,
            sender,
            collective,
            counter,
        )
        if self.is_local(sender):
            while True:
                buffered = self.local_buffer.get(sender, collective, counter)
                if buffered is not None:
                    return buffered
                msg = await self.local_send_receive.local_recv(sender)
                log.debug("[Worker %d] received message %r", self.worker_id, msg)
                if _matches(msg.metadata, sender, collective, counter):
                    return msg
                self.local_buffer.insert(msg)

        while True:
            complete = self.remote_buffer.get(sender, collective, counter)
            if complete is not None:
                return self._decode(complete)
            msg = await self.remote_send_receive.remote_recv(sender)
            log.debug("[Worker %d] received message %r", self.worker_id, msg)
            if _matches(msg.metadata, sender, collective, counter):
                if msg.metadata.num_chunks == 1:
                    return self._decode(msg)
                complete = await self._assemble(
                    msg,
                    (sender, collective, counter),
                    lambda: self.remote_send_receive.remote_recv(sender),
                    lambda m: not _matches(m.metadata, sender, collective, counter),
                )
                return self._decode(complete)
            self.remote_buffer.insert(msg)

    async def _assemble(
        self,
        first: RemoteMessage,
        key: MessageKey,
        receive: Callable[[], Awaitable[RemoteMessage]],
        unrelated: Callable[[RemoteMessage], bool],
    ) -> RemoteMessage:
        """Collect the remaining chunks of the message ``first`` belongs to."""
        num_chunks = first.metadata.num_chunks
        if not self.enable_message_chunking or num_chunks < 2:
            raise MiddlewareError(
                "Received a chunked message but message chunking is disabled"
            )
        self.remote_buffer.insert(first)
        stored = self.remote_buffer.num_chunks_stored(*key)
        if stored is None:
            raise MiddlewareError("Inserted first chunk into buffer but now it's gone")
        missing = num_chunks - stored

        if missing > 0:
            log.debug(
                "[Worker %d] Waiting for %d missing chunks for message %r",
                self.worker_id,
                missing,
                key,
            )

            def handle(msg: RemoteMessage) -> Optional[Awaitable[RemoteMessage]]:
                follow_up = receive() if unrelated(msg) else None
                self.remote_buffer.insert(msg)
                return follow_up

            await _drain([receive() for _ in range(missing)], handle)

        complete = self.remote_buffer.get(*key)
        if complete is None:
            if missing > 0:
                raise MiddlewareError("Waited for all chunks but some are missing")
            raise MiddlewareError(
                "There are no missing chunks but the message is not complete"
            )
        return complete

    async def get_messages(
        self, collective: CollectiveType, counter: int, sender_ids: Iterable[int]
    ) -> list[LocalMessage[T]]:
        """Wait for one message from each sender, in no particular order."""
        senders = set(sender_ids)
        messages: list[LocalMessage[T]] = []
        found: set[int] = set()

        for sender in senders:
            if self.is_local(sender):
                msg = self.local_buffer.get(sender, collective, counter)
            else:
                remote = self.remote_buffer.get(sender, collective, counter)
                msg = None if remote is None else self._decode(remote)
            if msg is not None:
                messages.append(msg)
                found.add(sender)

        missing = senders - found
        local_missing = sorted(s for s in missing if self.is_local(s))
        remote_missing = sorted(s for s in missing if not self.is_local(s))

        def receive_local(source: int) -> Awaitable[tuple[int, LocalMessage[T]]]:
            return _tagged(source, self.local_send_receive.local_recv(source))

        def handle_local(result: tuple[int, LocalMessage[T]]):
            source, msg = result
            md = msg.metadata
            if md.counter == counter and md.collective == collective:
                messages.append(msg)
                return None
            self.local_buffer.insert(msg)
            return receive_local(source)

        await _drain([receive_local(s) for s in local_missing], handle_local)

        def receive_remote(source: int) -> Awaitable[tuple[int, RemoteMessage]]:
            return _tagged(source, self.remote_send_receive.remote_recv(source))

        def handle_remote(result: tuple[int, RemoteMessage]):
            source, msg = result
            md = msg.metadata
            if md.num_chunks == 1 and md.counter == counter and md.collective == collective:
                messages.append(self._decode(msg))
                return None
            self.remote_buffer.insert(msg)
            complete = self.remote_buffer.get(md.sender_id, collective, counter)
            if complete is not None:
                messages.append(self._decode(complete))
                return None
            return receive_remote(source)

        await _drain([receive_remote(s) for s in remote_missing], handle_remote)
        return messages

    async def get_broadcast_message(self, root: int, counter: int) -> LocalMessage[T]:
        """Wait for the broadcast with ``counter`` sent by ``root`` from another group."""
        collective = CollectiveType.Broadcast
        complete = self.remote_buffer.get(root, collective, counter)
        if complete is not None:
            return self._decode(complete)

        while True:
            msg = await self.remote_broadcast.remote_broadcast_recv()
            log.debug(
                "[Worker %d] received broadcast message %r", self.worker_id, msg
            )
            if msg.metadata.counter != counter:
                self.remote_buffer.insert(msg)
                continue
            if msg.metadata.num_chunks == 1:
                return self._decode(msg)
            complete = await self._assemble(
                msg,
                (root, collective, counter),
                self.remote_broadcast.remote_broadcast_recv,
                lambda m: m.metadata.counter != counter,
            )
            return self._decode(complete)