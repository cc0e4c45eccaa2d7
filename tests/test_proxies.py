import asyncio

import pytest

from burstmw.proxies import (
    DEFAULT_MESSAGE_CHUNK_SIZE,
    BurstInfo,
    BurstOptions,
    LocalBroadcastProxy,
    LocalProxyFactory,
    LocalSendReceiveProxy,
    RemoteBroadcastProxy,
    RemoteProxyFactory,
    RemoteSendReceiveProxy,
)
from burstmw.types import CollectiveType, LocalMessage, MessageMetadata, RemoteMessage


def _meta(sender=0, counter=0):
    return MessageMetadata(sender, 0, 1, counter, CollectiveType.Direct)


class QueueRemote(RemoteSendReceiveProxy):
    def __init__(self):
        self.queues = {}

    def _q(self, key):
        return self.queues.setdefault(key, asyncio.Queue())

    async def remote_send(self, dest, msg):
        await self._q((msg.metadata.sender_id, dest)).put(msg)

    async def remote_recv(self, source):
        return await self._q((source, 0)).get()


class QueueLocal(LocalSendReceiveProxy):
    def __init__(self):
        self.queue = asyncio.Queue()

    async def local_send(self, dest, msg):
        await self.queue.put(msg)

    async def local_recv(self, source):
        return await self.queue.get()


class QueueRemoteBroadcast(RemoteBroadcastProxy):
    def __init__(self):
        self.queue = asyncio.Queue()

    async def remote_broadcast_send(self, msg):
        await self.queue.put(msg)

    async def remote_broadcast_recv(self):
        return await self.queue.get()


class QueueLocalBroadcast(LocalBroadcastProxy):
    def __init__(self):
        self.queue = asyncio.Queue()

    async def local_broadcast_send(self, msg):
        await self.queue.put(msg)

    async def local_broadcast_recv(self):
        return await self.queue.get()


class RemoteFactory(RemoteProxyFactory):
    async def create_remote_proxies(self, burst_options, options):
        group = burst_options.group_ranges[burst_options.group_id]
        return {i: (QueueRemote(), QueueRemoteBroadcast()) for i in group}


class LocalFactory(LocalProxyFactory):
    async def create_local_proxies(self, burst_options, options):
        group = burst_options.group_ranges[burst_options.group_id]
        return {i: (QueueLocal(), QueueLocalBroadcast()) for i in group}


@pytest.mark.parametrize(
    "cls",
    [
        RemoteSendReceiveProxy,
        LocalSendReceiveProxy,
        RemoteBroadcastProxy,
        LocalBroadcastProxy,
        RemoteProxyFactory,
        LocalProxyFactory,
    ],
)
def test_interfaces_are_abstract(cls):
    with pytest.raises(TypeError):
        cls()


def test_partial_implementation_is_rejected():
    class HalfRemote(RemoteSendReceiveProxy):
        async def remote_send(self, dest, msg):
            pass

    with pytest.raises(TypeError, match="remote_recv"):
        HalfRemote()
    with pytest.raises(TypeError, match="remote_send"):
        RemoteSendReceiveProxy()


@pytest.mark.asyncio
async def test_remote_round_trip():
    proxy = QueueRemote()
    msg = RemoteMessage(_meta(sender=3), b"payload")
    await proxy.remote_send(0, msg)
    got = await proxy.remote_recv(3)
    assert got == msg


@pytest.mark.asyncio
async def test_local_round_trip_keeps_order():
    proxy = QueueLocal()
    first = LocalMessage(_meta(counter=0), "a")
    second = LocalMessage(_meta(counter=1), "b")
    await proxy.local_send(1, first)
    await proxy.local_send(1, second)
    assert [await proxy.local_recv(0), await proxy.local_recv(0)] == [first, second]


@pytest.mark.asyncio
async def test_broadcast_round_trips():
    remote = QueueRemoteBroadcast()
    local = QueueLocalBroadcast()
    rmsg = RemoteMessage(_meta(), b"x")
    lmsg = LocalMessage(_meta(), 42)
    await remote.remote_broadcast_send(rmsg)
    await local.local_broadcast_send(lmsg)
    assert await remote.remote_broadcast_recv() == rmsg
    assert (await local.local_broadcast_recv()).data == 42


@pytest.mark.asyncio
async def test_factories_cover_current_group():
    options = BurstOptions(4, {"g0": {0, 1}, "g1": {2, 3}}, "g1")
    remote = await RemoteFactory().create_remote_proxies(options, None)
    local = await LocalFactory().create_local_proxies(options, None)
    assert set(remote) == {2, 3}
    assert set(local) == set(remote)
    assert all(isinstance(p[0], RemoteSendReceiveProxy) for p in remote.values())
    assert all(isinstance(p[1], LocalBroadcastProxy) for p in local.values())


def test_burst_options_defaults():
    options = BurstOptions(2, {"g": {0, 1}}, "g")
    assert options.burst_id == "default"
    assert options.enable_message_chunking is False
    assert options.message_chunk_size == 1024 * 1024
    assert options.message_chunk_size == DEFAULT_MESSAGE_CHUNK_SIZE


def test_build_returns_independent_copy():
    options = BurstOptions(2, {"g": {0, 1}}, "g", burst_id="run")
    built = options.build()
    assert built == options
    assert built is not options
    built.group_ranges["g"].add(5)
    built.message_chunk_size = 10
    assert options.group_ranges == {"g": {0, 1}}
    assert options.message_chunk_size == DEFAULT_MESSAGE_CHUNK_SIZE


def test_options_fields_are_assignable():
    options = BurstOptions(2, {"g": {0, 1}}, "g")
    options.enable_message_chunking = True
    options.message_chunk_size = 16
    built = options.build()
    assert built.enable_message_chunking is True
    assert built.message_chunk_size == 16


def test_burst_info_holds_values():
    info = BurstInfo("run", 4, {"g": {0, 1, 2, 3}}, 2, "g")
    assert info.worker_id == 2
    assert info.group_ranges["g"] == {0, 1, 2, 3}
    assert info == BurstInfo("run", 4, {"g": {0, 1, 2, 3}}, 2, "g")