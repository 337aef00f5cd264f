# spinne

`spinne` joins a fixed group of nodes into a fully connected TCP mesh and
lets every node send messages to every other node by its numeric ID.

Each node is given the same map of node IDs to `(host, port)` addresses. On
start-up the nodes first tell each other who is who (registration), then open
exactly one TCP connection per pair of nodes: a node dials every peer with a
higher ID and accepts connections from every peer with a lower ID. Once the
mesh is up, messages travel as length-prefixed JSON frames over those
connections.

## Installation

```
pip install .
```

For running the test suite:

```
pip install ".[test]"
pytest
```

## Usage

Every node runs the same code with the shared address map and its own listen
address:

```python
import asyncio

from spinne.mesh import Spinne

ADDRESSES = {
    1: ("127.0.0.1", 7001),
    2: ("127.0.0.1", 7002),
    3: ("127.0.0.1", 7003),
}


async def run(listen_address):
    node = await Spinne.init(listen_address, ADDRESSES)
    print("I am node", node.id, "peers:", node.peer_ids)

    outbox, inbox = node.start()
    for peer in node.peer_ids:
        await outbox.put((peer, {"greeting": f"hello from {node.id}"}))

    for _ in node.peer_ids:
        sender, message = await inbox.get()
        print(sender, "says", message)

    await node.shutdown()
```

- `Spinne.init(listen_address, addresses)` (a coroutine class method)
  registers with the other nodes, builds the mesh and returns a ready node.
- `id`, `node_ids` and `peer_ids` are properties: this node's ID, all IDs in
  the mesh, and every ID except this node's own.
- `start()` launches the background reader and writer tasks and returns two
  `asyncio.Queue` objects, each holding at most 1000 items: the outbox, on
  which you put `(peer_id, message)` pairs to send, and the inbox, from which
  you get `(sender_id, message)` pairs. Messages must be JSON-serialisable.
  Calling `start()` a second time raises `RuntimeError`.
- `shutdown()` cancels the background tasks and closes the connections. It
  raises `RuntimeError` if the node was never started.

When a peer closes its connection, the reader for that peer simply stops. A
write to a peer whose connection is broken is dropped and the writer moves on
to the next message. Putting a message for an unknown ID on the outbox stops
the writer task with `KeyError`.

Connecting to a peer is retried 10 times with a one-second pause in between;
if a peer never comes up, `spinne.connection.ConnectionFailed` (a subclass of
`ConnectionError`) is raised.

## Lower-level pieces

- `spinne.registration`
  - `listen_for_registration(listen_address, expected_connections)` accepts
    that many ID announcements and returns the last ID received.
  - `send_registration(node_id, address, retries=10, pause=1.0)` connects to
    an address once per attempt, announces the ID on every successful
    connection, and returns how many attempts got through.
- `spinne.connection`
  - `accept_connections(listen_address, expected_ids)` accepts connections
    until each expected ID has announced itself and returns dicts of readers
    and writers keyed by ID.
  - `connect_to(own_id, address, retries=10, pause=1.0)` dials a node,
    announces `own_id` and returns the reader and writer.
  - `encode_id` / `decode_id` convert IDs to and from the 8-byte big-endian
    form used in the handshake; out-of-range IDs or wrong-sized input raise
    `ValueError`.
- `spinne.mesh`
  - `register(listen_address, addresses)` and `connect(own_id,
    listen_address, addresses)`, the two steps `Spinne.init` runs.
  - `encode_frame(message)` and `read_frame(reader)`: each frame is a 4-byte
    little-endian length followed by the compact JSON encoding of the
    message. `read_frame` raises `EOFError` when the stream ends.

## What it does not do

`spinne` is a library only: it has no command-line program and no
configuration file. Node membership is fixed by the address map given at
start-up; nodes cannot join or leave afterwards, and lost connections are not
re-established.