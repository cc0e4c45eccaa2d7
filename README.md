# burstmw

`burstmw` is an asyncio communication middleware for a *burst*: a fixed set of
workers, numbered `0 .. burst_size - 1`, split into groups. Workers in the same
group talk through local proxies and exchange application values as they are.
Workers in other groups are reached through remote proxies and exchange bytes.
On top of these proxies the middleware offers direct messages and the
collectives broadcast, gather, scatter, all-to-all and reduce.

## Installing

```
pip install .
```

To run the test suite:

```
pip install .[test]
pytest
```

## Modules

- `burstmw.types`: `MiddlewareError`, `CollectiveType`, `MessageMetadata`,
  `LocalMessage`, `RemoteMessage`, and the wire format.
- `burstmw.chunk_store`: `chunk_message()` and `ChunkedMessageBody`.
- `burstmw.message_buffer`: `RemoteMessageBuffer` and `LocalMessageBuffer`.
- `burstmw.proxies`: the transport interfaces, their factories, `BurstOptions`
  and `BurstInfo`.
- `burstmw.routing`: `MessageRouter`, which sends and receives messages for one
  worker.
- `burstmw.middleware`: `BurstMiddleware`, the public API.

## Concepts

- `BurstOptions(burst_size, group_ranges, group_id, burst_id="default",
  enable_message_chunking=False, message_chunk_size=1 MiB)` describes the
  burst. `group_ranges` maps a group id to the set of worker ids in it;
  `group_id` names the group this process hosts. `build()` returns an
  independent deep copy.
- `CollectiveType` is an `IntEnum` that tags every message: `Direct` (0),
  `Broadcast` (1), `Scatter` (2), `Gather` (3), `AllToAll` (4).
  `CollectiveType.parse("alltoall")` reads a name case-insensitively and raises
  `MiddlewareError` for an unknown one.
- `MessageMetadata` holds `sender_id`, `chunk_id`, `num_chunks`, `counter` and
  `collective`.
- `LocalMessage` carries a payload of any type; `RemoteMessage` carries `bytes`.
  Convert with `LocalMessage.to_remote(encode)` and
  `RemoteMessage.to_local(decode)` (both default to `bytes`).
- `RemoteMessage.serialize()` gives a 24-byte little-endian header (four
  unsigned 32-bit fields, one byte for the collective, seven padding bytes)
  followed by the payload. `RemoteMessage.deserialize(raw)` reads it back, and
  `RemoteMessage.from_parts(header, data)` builds a message from a header and
  payload received separately. Malformed input raises `MiddlewareError`.
- With chunking enabled, messages to other groups are split by
  `chunk_message()` into pieces of at most `message_chunk_size` bytes and
  reassembled on arrival. Messages within a group are never chunked.
- Messages that arrive before they are asked for are kept in a buffer keyed by
  sender, collective and counter, so operations may interleave.

## Transports

The package defines the interfaces a transport implements, all in
`burstmw.proxies`:

- `LocalSendReceiveProxy`: `local_send(dest, msg)`, `local_recv(source)`
- `RemoteSendReceiveProxy`: `remote_send(dest, msg)`, `remote_recv(source)`
- `LocalBroadcastProxy`: `local_broadcast_send(msg)`, `local_broadcast_recv()`
- `RemoteBroadcastProxy`: `remote_broadcast_send(msg)`, `remote_broadcast_recv()`
- `LocalProxyFactory.create_local_proxies(burst_options, options)` and
  `RemoteProxyFactory.create_remote_proxies(burst_options, options)`, each
  returning a dict from worker id to a `(direct, broadcast)` proxy pair for
  every worker of the current group.

All of these methods are coroutines.

## Using the middleware

`BurstMiddleware.create_proxies` calls both factories and returns a dict from
worker id to a `BurstMiddleware` for every worker of `options.group_id`. It
raises `MiddlewareError` if the group is not in `group_ranges` or a factory
left out a worker.

```python
import asyncio

from burstmw.middleware import BurstMiddleware
from burstmw.proxies import BurstOptions


async def run(worker: BurstMiddleware) -> None:
    await worker.send(1, b"hello")                        # on worker 0
    msg = await worker.recv(0)                            # on worker 1

    result = await worker.broadcast(b"payload", root=0)   # every worker gets it
    gathered = await worker.gather(b"part", root=0)       # list on the root, None elsewhere
    mine = await worker.scatter([b"a", b"b", b"c", b"d"], root=0)
    received = await worker.all_to_all([b"w", b"x", b"y", b"z"])
    total = await worker.reduce(b"x", lambda a, b: a + b) # value on worker 0, None elsewhere
    print(worker.info())


async def main() -> None:
    options = BurstOptions(
        burst_size=4,
        group_ranges={"g0": {0, 1}, "g1": {2, 3}},
        group_id="g0",
    ).build()
    # local_factory and remote_factory are your transport's factories.
    workers = await BurstMiddleware.create_proxies(
        options, local_factory, remote_factory, local_options, remote_options
    )
    await asyncio.gather(*(run(worker) for worker in workers.values()))
```

Every worker of the burst must take part in each collective. Notes on the
operations:

- `send` and `recv` keep a separate counter per peer, so direct messages
  between two workers are delivered in order.
- `broadcast` needs `data` on the root (otherwise `MiddlewareError`). Within a
  group other than the root's, only the group leader (lowest worker id) reads
  the remote broadcast and relays it to its group.
- `gather` and `all_to_all` return messages sorted by sender id.
- `scatter` and `all_to_all` need exactly `burst_size` items and raise
  `MiddlewareError` otherwise.
- `reduce` combines values pairwise along a binary tree using direct messages;
  it needs a burst size and a group size that are powers of two.
- Sending to or receiving from a worker id outside `0 .. burst_size - 1`
  raises `MiddlewareError`.
- `info()` returns a `BurstInfo` with the burst id and size, group ranges,
  group id and this worker's id.

Middlewares made by `create_proxies` send remote payloads as `bytes`. To carry
other payload types across groups, construct `BurstMiddleware` directly and
pass `encode` and `decode` functions.

## What it does not do

The package provides no transports: there is no in-process channel, message
broker, key-value store or object store behind the proxy interfaces, and no
command-line program. Before workers can talk, you implement the proxy
interfaces and factories for the transport you use.