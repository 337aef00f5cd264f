"""A fully connected mesh of nodes exchanging framed JSON messages."""

from __future__ import annotations

import asyncio
import json
import struct
from collections.abc import Iterable, Mapping
from typing import Any

from .connection import Address, Readers, Writers, accept_connections, connect_to
from .registration import listen_for_registration, send_registration

QUEUE_SIZE = 1_000
_LENGTH = struct.Struct("<I")

Envelope = tuple[int, Any]


def encode_frame(message: Any) -> bytes:
    """Serialize a message as JSON behind a little-endian 4-byte length."""
    payload = json.dumps(message, separators=(",", ":")).encode("utf-8")
    if len(payload) > 0xFFFFFFFF:
        raise ValueError("message too large for one frame")
    return _LENGTH.pack(len(payload)) + payload


async def read_frame(reader: asyncio.StreamReader) -> Any:
    """Read one framed message; raise EOFError when the stream has ended."""
    try:
        (length,) = _LENGTH.unpack(await reader.readexactly(_LENGTH.size))
        payload = await reader.readexactly(length)
    except (asyncio.IncompleteReadError, ConnectionResetError) as exc:
        raise EOFError("connection closed") from exc
    return json.loads(payload)


async def register(listen_address: Address, addresses: Mapping[int, Address]) -> int:
    """Announce every node its identifier and learn our own."""
    listener = asyncio.create_task(
        listen_for_registration(listen_address, len(addresses))
    )
    await asyncio.gather(
        *(send_registration(node_id, address) for node_id, address in addresses.items()),
        return_exceptions=True,
    )
    return await listener


async def connect(
    own_id: int, listen_address: Address, addresses: Mapping[int, Address]
) -> tuple[Readers, Writers]:
    """Connect to higher nodes and accept connections from lower ones."""
    higher = {node_id: address for node_id, address in addresses.items() if node_id > own_id}
    expected = [node_id for node_id in addresses if node_id != own_id and node_id not in higher]
    listener = asyncio.create_task(accept_connections(listen_address, expected))

    dialled_readers: Readers = {}
    dialled_writers: Writers = {}
    try:
        for node_id, address in higher.items():
            reader, writer = await connect_to(own_id, address)
            dialled_readers[node_id] = reader
            dialled_writers[node_id] = writer
        readers, writers = await listener
    except BaseException:
        listener.cancel()
        for writer in dialled_writers.values():
            writer.close()
        raise

    readers.update(dialled_readers)
    writers.update(dialled_writers)
    return readers, writers


async def _receive(node_id: int, reader: asyncio.StreamReader, inbox: asyncio.Queue) -> None:
    while True:
        try:
            message = await read_frame(reader)
        except EOFError:
            return
        await inbox.put((node_id, message))


async def _send(writers: Writers, outbox: asyncio.Queue) -> None:
    try:
        while True:
            node_id, message = await outbox.get()
            writer = writers.get(node_id)
            if writer is None:
                raise KeyError(f"No such node: {node_id}")
            try:
                writer.write(encode_frame(message))
                await writer.drain()
            except (BrokenPipeError, ConnectionResetError):
                continue
    finally:
        for writer in writers.values():
            writer.close()


class Spinne:
    """One node of the mesh together with its links to the other nodes."""

    def __init__(
        self,
        node_id: int,
        node_ids: Iterable[int],
        readers: Readers,
        writers: Writers,
    ) -> None:
        self._id = node_id
        self._node_ids = list(node_ids)
        self._readers: Readers | None = dict(readers)
        self._writers: Writers | None = dict(writers)
        self._sender_task: asyncio.Task | None = None
        self._listener_tasks: list[asyncio.Task] | None = None

    @classmethod
    async def init(
        cls, listen_address: Address, addresses: Mapping[int, Address]
    ) -> Spinne:
        """Register with all nodes and open a link to every one of them."""
        addresses = dict(addresses)
        node_id = await register(listen_address, addresses)
        readers, writers = await connect(node_id, listen_address, addresses)
        return cls(node_id, addresses, readers, writers)

    @property
    def id(self) -> int:
        return self._id

    @property
    def peer_ids(self) -> list[int]:
        return [node_id for node_id in self._node_ids if node_id != self._id]

    @property
    def node_ids(self) -> list[int]:
        return list(self._node_ids)

    def start(self) -> tuple[asyncio.Queue, asyncio.Queue]:
        """Start exchanging messages.

        Returns an outbox taking (node id, message) pairs to send and an inbox
        yielding (sender id, message) pairs received.
        """
        if self._readers is None or self._writers is None:
            raise RuntimeError("Node has already been started")
        readers, writers = self._readers, self._writers
        self._readers = self._writers = None

        inbox: asyncio.Queue = asyncio.Queue(QUEUE_SIZE)
        outbox: asyncio.Queue = asyncio.Queue(QUEUE_SIZE)
        self._listener_tasks = [
            asyncio.create_task(_receive(node_id, reader, inbox))
            for node_id, reader in readers.items()
        ]
        self._sender_task = asyncio.create_task(_send(writers, outbox))
        return outbox, inbox

    async def shutdown(self) -> None:
        """Stop exchanging messages and close the links."""
        if self._sender_task is None or self._listener_tasks is None:
            raise RuntimeError("Called shutdown on a node that was not started")
        tasks = [self._sender_task, *self._listener_tasks]
        self._sender_task = None
        self._listener_tasks = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)