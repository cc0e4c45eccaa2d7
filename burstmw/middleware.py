"""Collective communication for the workers of a burst."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Generic, Hashable, Iterable, Optional, TypeVar

from .proxies import (
    BurstInfo,
    BurstOptions,
    LocalBroadcastProxy,
    LocalProxyFactory,
    LocalSendReceiveProxy,
    RemoteBroadcastProxy,
    RemoteProxyFactory,
    RemoteSendReceiveProxy,
)
from .routing import MessageRouter
from .types import CollectiveType, LocalMessage, MessageMetadata, MiddlewareError

log = logging.getLogger(__name__)

T = TypeVar("T")

_COLLECTIVES = (
    CollectiveType.Broadcast,
    CollectiveType.Gather,
    CollectiveType.Scatter,
    CollectiveType.AllToAll,
)


def _current(counters: dict, key: Hashable) -> int:
    try:
        return counters[key]
    except KeyError:
        raise MiddlewareError(f"Counter not found for key {key!r}") from None


def _advance(counters: dict, key: Hashable) -> None:
    counters[key] = _current(counters, key) + 1


def _is_power_of_two(n: int) -> bool:
    return n > 0 and n & (n - 1) == 0


class BurstMiddleware(Generic[T]):
    """Point-to-point and collective operations for one worker of a burst.

    Workers of the same group talk through the local proxies; workers of other
    groups through the remote proxies, with payloads converted to bytes by
    ``encode`` and back by ``decode``.
    """

    def __init__(
        self,
        options: BurstOptions,
        local_send_receive: LocalSendReceiveProxy,
        remote_send_receive: RemoteSendReceiveProxy,
        local_broadcast: LocalBroadcastProxy,
        remote_broadcast: RemoteBroadcastProxy,
        worker_id: int,
        group: Iterable[int],
        encode: Callable[[Any], bytes] = bytes,
        decode: Callable[[bytes], Any] = bytes,
    ) -> None:
        self.options = options
        self.worker_id = worker_id
        self.group = frozenset(group)
        if not self.group:
            raise MiddlewareError("A worker group must not be empty")
        # The worker with the lowest id in the group is the group leader.
        self.group_worker_leader = min(self.group)
        self._local_broadcast = local_broadcast
        self._remote_broadcast = remote_broadcast
        self._router: MessageRouter[T] = MessageRouter(
            options,
            worker_id,
            self.group,
            local_send_receive,
            remote_send_receive,
            remote_broadcast,
            encode=encode,
            decode=decode,
        )
        self._collective_counters = {c: 0 for c in _COLLECTIVES}
        self._send_counters = {i: 0 for i in range(options.burst_size)}
        self._receive_counters = dict(self._send_counters)

    @classmethod
    async def create_proxies(
        cls,
        options: BurstOptions,
        local_factory: LocalProxyFactory,
        remote_factory: RemoteProxyFactory,
        local_options: Any,
        remote_options: Any,
    ) -> dict[int, "BurstMiddleware"]:
        """Create a middleware for every worker of the options' current group."""
        log.debug("Creating proxies %r", options)
        try:
            current_group = set(options.group_ranges[options.group_id])
        except KeyError:
            raise MiddlewareError(
                f"Group {options.group_id!r} not found in group ranges"
            ) from None

        local_proxies = await local_factory.create_local_proxies(options, local_options)
        remote_proxies = await remote_factory.create_remote_proxies(
            options, remote_options
        )

        middlewares = {}
        for worker_id in current_group:
            try:
                local_direct, local_bcast = local_proxies.pop(worker_id)
                remote_direct, remote_bcast = remote_proxies.pop(worker_id)
            except KeyError:
                raise MiddlewareError(
                    f"No proxies were created for worker {worker_id}"
                ) from None
            middlewares[worker_id] = cls(
                options,
                local_direct,
                remote_direct,
                local_bcast,
                remote_bcast,
                worker_id,
                current_group,
            )
        return middlewares

    def _message(self, collective: CollectiveType, counter: int, data: T,
                 sender_id: Optional[int] = None) -> LocalMessage[T]:
        metadata = MessageMetadata(
            sender_id=self.worker_id if sender_id is None else sender_id,
            chunk_id=0,
            num_chunks=1,
            counter=counter,
            collective=collective,
        )
        return LocalMessage(metadata, data)

    async def send(self, dest: int, data: T) -> None:
        """Send ``data`` to worker ``dest``."""
        counter = _current(self._send_counters, dest)
        await self._router.send_message(
            dest, self._message(CollectiveType.Direct, counter, data)
        )
        _advance(self._send_counters, dest)

    async def recv(self, source: int) -> LocalMessage[T]:
        """Receive the next direct message from worker ``source``."""
        counter = _current(self._receive_counters, source)
        msg = await self._router.get_message(source, CollectiveType.Direct, counter)
        _advance(self._receive_counters, source)
        return msg

    async def broadcast(self, data: Optional[T], root: int) -> LocalMessage[T]:
        """Distribute ``data`` from ``root`` to every worker of the burst."""
        counter = _current(self._collective_counters, CollectiveType.Broadcast)

        if self.worker_id == root:
            if data is None:
                raise MiddlewareError("Root worker must send data")
            msg = self._message(CollectiveType.Broadcast, counter, data)
            remote_sends = [
                self._remote_broadcast.remote_broadcast_send(chunk)
                for chunk in self._router.remote_chunks(msg)
            ]
            await asyncio.gather(
                *remote_sends, self._local_broadcast.local_broadcast_send(msg)
            )
        elif root not in self.group and self.worker_id == self.group_worker_leader:
            # Only the group leader receives from the remote channel and relays
            # the message to the rest of its group.
            msg = await self._router.get_broadcast_message(root, counter)
            await self._local_broadcast.local_broadcast_send(msg)

        received = await self._local_broadcast.local_broadcast_recv()
        _advance(self._collective_counters, CollectiveType.Broadcast)
        return received

    async def gather(self, data: T, root: int) -> Optional[list[LocalMessage[T]]]:
        """Collect one value from every worker at ``root``, ordered by sender."""
        counter = _current(self._collective_counters, CollectiveType.Gather)
        msg = self._message(CollectiveType.Gather, counter, data)
        result = None

        if self.worker_id == root:
            senders = set(range(self.options.burst_size)) - {self.worker_id}
            received = await self._router.get_messages(
                CollectiveType.Gather, counter, senders
            )
            result = sorted([msg, *received], key=lambda m: m.metadata.sender_id)
        else:
            await self._router.send_message(root, msg)

        _advance(self._collective_counters, CollectiveType.Gather)
        return result

    async def scatter(self, data: Optional[list[T]], root: int) -> LocalMessage[T]:
        """Send the i-th item of ``data`` from ``root`` to worker i."""
        counter = _current(self._collective_counters, CollectiveType.Scatter)

        if self.worker_id == root:
            if data is None:
                raise MiddlewareError("Root worker must send data")
            items = list(data)
            if len(items) != self.options.burst_size:
                raise MiddlewareError("Data size must be equal to burst size")
            result = self._message(
                CollectiveType.Scatter, counter, items[root], sender_id=root
            )
            await self._router.send_messages(
                (to, self._message(CollectiveType.Scatter, counter, item, sender_id=root))
                for to, item in enumerate(items)
                if to != root
            )
        else:
            result = await self._router.get_message(
                root, CollectiveType.Scatter, counter
            )

        _advance(self._collective_counters, CollectiveType.Scatter)
        return result

    async def all_to_all(self, data: list[T]) -> list[LocalMessage[T]]:
        """Send the i-th item of ``data`` to worker i and receive one from each."""
        counter = _current(self._collective_counters, CollectiveType.AllToAll)
        items = list(data)
        if len(items) != self.options.burst_size:
            raise MiddlewareError("Data size must be equal to burst size")

        await self._router.send_messages(
            (to, self._message(CollectiveType.AllToAll, counter, item))
            for to, item in enumerate(items)
        )
        received = await self._router.get_messages(
            CollectiveType.AllToAll, counter, range(self.options.burst_size)
        )
        received.sort(key=lambda m: m.metadata.sender_id)

        _advance(self._collective_counters, CollectiveType.AllToAll)
        return received

    async def reduce(self, data: T, op: Callable[[T, T], T]) -> Optional[T]:
        """Combine every worker's value with ``op`` along a binary tree.

        Worker 0 returns the result; every other worker returns None.
        """
        if not _is_power_of_two(self.options.burst_size):
            raise MiddlewareError("Burst size must be a power of two")
        if not _is_power_of_two(len(self.group)):
            raise MiddlewareError("Group size must be a power of two")

        levels = self.options.burst_size.bit_length() - 1
        for level in range(levels):
            log.debug("[Worker %d] Reduce level %d", self.worker_id, level)
            offset = 1 << level
            if self.worker_id % (offset << 1) == 0:
                partner = self.worker_id + offset
                log.debug(
                    "[Worker %d] Reduce ==> Get message from partner %d",
                    self.worker_id,
                    partner,
                )
                msg = await self._router.get_message(partner, CollectiveType.Direct, 0)
                data = op(data, msg.data)
            else:
                partner = self.worker_id - offset
                log.debug(
                    "[Worker %d] Reduce ==> Send message to partner %d",
                    self.worker_id,
                    partner,
                )
                await self._router.send_message(
                    partner, self._message(CollectiveType.Direct, 0, data)
                )
                return None
        return data

    def info(self) -> BurstInfo:
        """Describe this worker and its burst."""
        return BurstInfo(
            burst_id=self.options.burst_id,
            burst_size=self.options.burst_size,
            group_ranges={k: set(v) for k, v in self.options.group_ranges.items()},
            worker_id=self.worker_id,
            group_id=self.options.group_id,
        )