"""Telling every node which identifier it carries."""

from __future__ import annotations

import asyncio

from .connection import (
    CONNECTION_PAUSE,
    CONNECTION_RETRIES,
    Address,
    _accept,
    _close,
    _listening_socket,
    encode_id,
)


async def listen_for_registration(
    listen_address: Address, expected_connections: int
) -> int:
    """Accept the given number of announcements and return the last identifier."""
    node_id = None
    with _listening_socket(listen_address) as server:
        for _ in range(expected_connections):
            node_id, _reader, writer = await _accept(server)
            await _close(writer)
    if node_id is None:
        raise RuntimeError("Failed to get an ID")
    return node_id


async def send_registration(
    node_id: int,
    address: Address,
    retries: int = CONNECTION_RETRIES,
    pause: float = CONNECTION_PAUSE,
) -> int:
    """Announce an identifier to the node at an address, once per attempt.

    Returns how many attempts reached the node.
    """
    announcement = encode_id(node_id)
    host, port = address
    delivered = 0
    for _ in range(retries):
        try:
            _reader, writer = await asyncio.open_connection(host, port)
        except OSError:
            await asyncio.sleep(pause)
            continue
        try:
            writer.write(announcement)
            await writer.drain()
        finally:
            await _close(writer)
        delivered += 1
    return delivered