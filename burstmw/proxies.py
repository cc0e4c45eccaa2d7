"""Transport interfaces used by the middleware, and burst configuration."""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from .types import LocalMessage, RemoteMessage

T = TypeVar("T")

MB = 1024 * 1024
DEFAULT_MESSAGE_CHUNK_SIZE = 1 * MB


class RemoteSendReceiveProxy(ABC):
    """Point-to-point transport to workers outside the local group."""

    @abstractmethod
    async def remote_send(self, dest: int, msg: RemoteMessage) -> None:
        """Deliver ``msg`` to worker ``dest``."""

    @abstractmethod
    async def remote_recv(self, source: int) -> RemoteMessage:
        """Wait for the next message sent by worker ``source``."""


class LocalSendReceiveProxy(ABC, Generic[T]):
    """Point-to-point transport between workers of the same group."""

    @abstractmethod
    async def local_send(self, dest: int, msg: LocalMessage[T]) -> None:
        """Deliver ``msg`` to worker ``dest``."""

    @abstractmethod
    async def local_recv(self, source: int) -> LocalMessage[T]:
        """Wait for the next message sent by worker ``source``."""


class RemoteBroadcastProxy(ABC):
    """Broadcast transport reaching every group."""

    @abstractmethod
    async def remote_broadcast_send(self, msg: RemoteMessage) -> None:
        """Publish ``msg`` to all groups."""

    @abstractmethod
    async def remote_broadcast_recv(self) -> RemoteMessage:
        """Wait for the next broadcast message from another group."""


class LocalBroadcastProxy(ABC, Generic[T]):
    """Broadcast transport within the local group."""

    @abstractmethod
    async def local_broadcast_send(self, msg: LocalMessage[T]) -> None:
        """Publish ``msg`` to every worker of the group."""

    @abstractmethod
    async def local_broadcast_recv(self) -> LocalMessage[T]:
        """Wait for the next broadcast message in the group."""


class RemoteProxyFactory(ABC):
    """Creates the remote proxies for every worker of the current group."""

    @abstractmethod
    async def create_remote_proxies(
        self, burst_options: "BurstOptions", options: Any
    ) -> dict[int, tuple[RemoteSendReceiveProxy, RemoteBroadcastProxy]]:
        """Return a mapping of worker id to its remote proxies."""


class LocalProxyFactory(ABC):
    """Creates the local proxies for every worker of the current group."""

    @abstractmethod
    async def create_local_proxies(
        self, burst_options: "BurstOptions", options: Any
    ) -> dict[int, tuple[LocalSendReceiveProxy, LocalBroadcastProxy]]:
        """Return a mapping of worker id to its local proxies."""


@dataclass
class BurstOptions:
    """Configuration shared by all workers of a burst."""

    burst_size: int
    group_ranges: dict[str, set[int]]
    group_id: str
    burst_id: str = "default"
    enable_message_chunking: bool = False
    message_chunk_size: int = DEFAULT_MESSAGE_CHUNK_SIZE

    def build(self) -> "BurstOptions":
        """Return an independent copy of these options."""
        return copy.deepcopy(self)


@dataclass
class BurstInfo:
    """What a single worker knows about itself and its burst."""

    burst_id: str
    burst_size: int
    group_ranges: dict[str, set[int]] = field(default_factory=dict)
    worker_id: int = 0
    group_id: str = ""