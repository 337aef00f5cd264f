import asyncio
import socket
import struct

import pytest

from spinne.mesh import Spinne, connect, encode_frame, read_frame


def free_address():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return ("127.0.0.1", sock.getsockname()[1])


def stream_of(data, eof=True):
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    if eof:
        reader.feed_eof()
    return reader


def test_frame_has_little_endian_length_prefix():
    frame = encode_frame({"value": 3})
    (length,) = struct.unpack("<I", frame[:4])
    assert length == len(frame) - 4
    assert frame[4:] == b'{"value":3}'


@pytest.mark.asyncio
@pytest.mark.parametrize("message", [None, 0, "text", [1, 2, 3], {"a": {"b": [True, 1.5]}}])
async def test_frame_round_trip(message):
    reader = stream_of(encode_frame(message))
    assert await read_frame(reader) == message
    with pytest.raises(EOFError):
        await read_frame(reader)


@pytest.mark.asyncio
async def test_several_frames_in_order():
    reader = stream_of(encode_frame("one") + encode_frame("two"))
    assert [await read_frame(reader), await read_frame(reader)] == ["one", "two"]


@pytest.mark.asyncio
async def test_truncated_frame_is_end_of_stream():
    with pytest.raises(EOFError):
        await read_frame(stream_of(encode_frame("truncated")[:-2]))


@pytest.mark.asyncio
async def test_garbled_frame_is_rejected():
    with pytest.raises(ValueError):
        await read_frame(stream_of(struct.pack("<I", 3) + b"{{{"))


def test_ids():
    node = Spinne(2, [1, 2, 3], {}, {})
    assert node.id == 2
    assert node.node_ids == [1, 2, 3]
    assert node.peer_ids == [1, 3]


@pytest.mark.asyncio
async def test_start_twice_fails():
    node = Spinne(1, [1], {}, {})
    node.start()
    try:
        with pytest.raises(RuntimeError):
            node.start()
    finally:
        await node.shutdown()


@pytest.mark.asyncio
async def test_shutdown_before_start_fails():
    with pytest.raises(RuntimeError):
        await Spinne(1, [1], {}, {}).shutdown()


@pytest.mark.asyncio
async def test_connected_pair_exchanges_messages():
    first, second = free_address(), free_address()
    addresses = {1: first, 2: second}
    (r1, w1), (r2, w2) = await asyncio.wait_for(
        asyncio.gather(connect(1, first, addresses), connect(2, second, addresses)), 30
    )
    assert set(r1) == {2} and set(w1) == {2}
    assert set(r2) == {1} and set(w2) == {1}

    node1 = Spinne(1, addresses, r1, w1)
    node2 = Spinne(2, addresses, r2, w2)
    out1, in1 = node1.start()
    out2, in2 = node2.start()
    try:
        await out1.put((2, {"x": [1, 2]}))
        assert await asyncio.wait_for(in2.get(), 5) == (1, {"x": [1, 2]})
        await out2.put((1, "reply"))
        assert await asyncio.wait_for(in1.get(), 5) == (2, "reply")
    finally:
        await node1.shutdown()
        await node2.shutdown()


@pytest.mark.asyncio
async def test_init_builds_full_mesh():
    addresses = {1: free_address(), 2: free_address(), 3: free_address()}
    nodes = await asyncio.wait_for(
        asyncio.gather(*(Spinne.init(address, addresses) for address in addresses.values())),
        60,
    )
    assert [node.id for node in nodes] == [1, 2, 3]
    assert sorted(nodes[0].node_ids) == [1, 2, 3]
    assert sorted(nodes[2].peer_ids) == [1, 2]

    queues = [node.start() for node in nodes]
    try:
        await queues[0][0].put((3, "hello"))
        await queues[2][0].put((2, "hi"))
        assert await asyncio.wait_for(queues[2][1].get(), 10) == (1, "hello")
        assert await asyncio.wait_for(queues[1][1].get(), 10) == (3, "hi")
    finally:
        for node in nodes:
            await node.shutdown()