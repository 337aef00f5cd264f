"""Establishing the TCP links between the nodes of a mesh."""

from __future__ import annotations

import asyncio
import socket
from collections.abc import Iterable

CONNECTION_RETRIES = 10
CONNECTION_PAUSE = 1.0
ID_SIZE = 8

Address = tuple[str, int]
Readers = dict[int, asyncio.StreamReader]
Writers = dict[int, asyncio.StreamWriter]


class ConnectionFailed(ConnectionError):
    """Raised when a node cannot be reached within the allowed retries."""


def encode_id(node_id: int) -> bytes:
    """Encode a node identifier as eight big-endian bytes."""
    if not 0 <= node_id < 1 << (8 * ID_SIZE):
        raise ValueError(f"node id {node_id} does not fit in {ID_SIZE} bytes")
    return node_id.to_bytes(ID_SIZE, "big")


def decode_id(data: bytes) -> int:
    """Decode eight big-endian bytes into a node identifier."""
    if len(data) != ID_SIZE:
        raise ValueError(f"a node id takes {ID_SIZE} bytes, got {len(data)}")
    return int.from_bytes(data, "big")


def _listening_socket(address: Address) -> socket.socket:
    host, port = address
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    server = socket.create_server((host, port), family=family)
    server.setblocking(False)
    return server


async def _close(writer: asyncio.StreamWriter) -> None:
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass


async def _accept(
    server: socket.socket,
) -> tuple[int, asyncio.StreamReader, asyncio.StreamWriter]:
    """Accept one connection and read the identifier its peer announces."""
    loop = asyncio.get_running_loop()
    client, _ = await loop.sock_accept(server)
    reader, writer = await asyncio.open_connection(sock=client)
    try:
        node_id = decode_id(await reader.readexactly(ID_SIZE))
    except BaseException:
        writer.close()
        raise
    return node_id, reader, writer


async def accept_connections(
    listen_address: Address, expected_ids: Iterable[int]
) -> tuple[Readers, Writers]:
    """Accept connections until every expected node has announced itself."""
    pending = set(expected_ids)
    readers: Readers = {}
    writers: Writers = {}
    try:
        with _listening_socket(listen_address) as server:
            while pending:
                node_id, reader, writer = await _accept(server)
                readers[node_id] = reader
                writers[node_id] = writer
                pending.discard(node_id)
    except BaseException:
        for writer in writers.values():
            writer.close()
        raise
    return readers, writers


async def connect_to(
    own_id: int,
    address: Address,
    retries: int = CONNECTION_RETRIES,
    pause: float = CONNECTION_PAUSE,
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Connect to a node, announce our identifier and return the streams."""
    announcement = encode_id(own_id)
    host, port = address
    for _ in range(retries):
        try:
            reader, writer = await asyncio.open_connection(host, port)
        except OSError:
            await asyncio.sleep(pause)
            continue
        writer.write(announcement)
        await writer.drain()
        return reader, writer
    raise ConnectionFailed(f"Failed to connect to {host}:{port}")