import pytest

from burstmw.types import (
    CollectiveType,
    LocalMessage,
    MessageMetadata,
    MiddlewareError,
    RemoteMessage,
)


def _meta(collective=CollectiveType.Gather):
    return MessageMetadata(
        sender_id=1, chunk_id=2, num_chunks=3, counter=4, collective=collective
    )


@pytest.mark.parametrize(
    "text, expected",
    [
        ("direct", CollectiveType.Direct),
        ("BROADCAST", CollectiveType.Broadcast),
        ("Scatter", CollectiveType.Scatter),
        ("gather", CollectiveType.Gather),
        ("AllToAll", CollectiveType.AllToAll),
    ],
)
def test_parse_names(text, expected):
    assert CollectiveType.parse(text) is expected


def test_parse_invalid():
    with pytest.raises(MiddlewareError):
        CollectiveType.parse("reduce")


def test_from_int_and_str():
    assert CollectiveType(4) is CollectiveType.AllToAll
    assert CollectiveType(0) is CollectiveType.Direct
    assert str(CollectiveType.AllToAll) == "AllToAll"


def test_local_remote_round_trip():
    local = LocalMessage(_meta(), "hello")
    remote = local.to_remote(str.encode)
    assert remote.data == b"hello"
    assert remote.metadata == local.metadata
    back = remote.to_local(bytes.decode)
    assert back.data == "hello"
    assert back.metadata == local.metadata


def test_serialize_header_layout():
    msg = RemoteMessage(_meta(), b"xyz")
    raw = msg.serialize()
    assert raw[:24] == (
        b"\x01\x00\x00\x00\x02\x00\x00\x00\x03\x00\x00\x00\x04\x00\x00\x00\x03"
        + b"\x00" * 7
    )
    assert raw.endswith(b"xyz")


@pytest.mark.parametrize("collective", list(CollectiveType))
def test_serialize_round_trip(collective):
    msg = RemoteMessage(_meta(collective), b"\x00\x01payload")
    parsed = RemoteMessage.deserialize(msg.serialize())
    assert parsed == msg


def test_from_parts_round_trip():
    msg = RemoteMessage(_meta(CollectiveType.Scatter), b"body")
    parsed = RemoteMessage.from_parts(msg.header(), b"body")
    assert parsed == msg


def test_deserialize_too_short():
    with pytest.raises(MiddlewareError):
        RemoteMessage.deserialize(b"\x00" * 10)


def test_from_parts_invalid_collective():
    header = bytearray(RemoteMessage(_meta(), b"").header())
    header[16] = 9
    with pytest.raises(MiddlewareError):
        RemoteMessage.from_parts(bytes(header), b"")


def test_remote_repr_shows_length():
    msg = RemoteMessage(_meta(), b"abcdef")
    assert "data=6" in repr(msg)