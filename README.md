# swarmtrack

Building blocks for a BitTorrent client: announce clients for HTTP(S) and
UDP trackers, and the piece pickers that decide which block to request from
which peer. The package has no dependencies outside the standard library.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Modules

- `swarmtrack.tracker` – announce requests (`Announce`, `Event`,
  `new_announce`, `GetPeers`), parsed tracker answers (`TrackerResponse`,
  with `empty()` and `from_dict()` for a decoded bencoded dictionary) and
  the replies handed back to a torrent (`TrackerReply`, whose `result` is
  either a `TrackerResponse` or a `TrackerError`, and `PeersReply`).
  `new_announce` returns `None` when the torrent has no tracker url, asks
  for 50 peers while the torrent is incomplete and none once it is complete.
- `swarmtrack.http_tracker` – `HttpTrackerHandler` drives non-blocking HTTP
  announces through DNS resolution, writing the request, reading the
  response, at most one redirect, and a 5 second idle timeout (`tick()`).
  Connections are keyed by their socket's file descriptor.
  `build_announce_request` and `resolve_redirect` can be used on their own.
- `swarmtrack.udp_tracker` – `UdpTrackerHandler` speaks the UDP tracker
  protocol over one non-blocking datagram socket you supply: connect,
  announce and error packets, retransmission every 5 seconds and a 15 second
  timeout. `encode_connect_request` and `encode_announce_request` build the
  16 and 98 byte packets.
- `swarmtrack.http_request` – `RequestBuilder`, a small HTTP/1.1 request
  encoder, and `encode_param`, which percent-encodes every byte except ASCII
  letters, digits and `-`.
- `swarmtrack.http_io` – incremental `Reader` (returns the body, a
  `Redirect`, or `None` while more data is needed) and `Writer` for a
  non-blocking connection.
- `swarmtrack.sstream` – `SStream`, a non-blocking TCP socket that is plain
  or carries a TLS session (client side via `new_v4`/`new_v6` with a host
  name, server side via `from_ssl`).
- `swarmtrack.picker` – `Picker` and `Block`: the block-level picker that
  splits pieces into 16 KiB blocks, tracks outstanding requests, re-requests
  stalled blocks from other peers and applies piece priorities
  (`piece_priorities` derives them from file priorities). Piece choice is
  delegated to `swarmtrack.rarest.RarestPicker` or
  `swarmtrack.sequential.SequentialPicker`; `change_picker()` switches.
- `swarmtrack.util` – hashing and id helpers (`sha1_hash`, `hash_to_id`,
  `id_to_hash`, `peer_rpc_id`, `file_rpc_id`, `trk_rpc_id`), compact IPv4
  address packing (`addr_to_bytes`, `bytes_to_addr`), non-blocking I/O
  helpers (`aread`, `awrite`, returning an `IOResult`), and file helpers
  (`is_sparse`, `fallocate`).
- `swarmtrack.errors` – the `TrackerError` hierarchy: `InvalidRequest`,
  `InvalidResponse`, `TrackerFailure`, `TrackerEOF`, `TrackerIOError`,
  `TrackerTimeout`, `DNSTimeout`, `DNSInvalid`.

## Objects you provide

The tracker handlers take a resolver: any object with
`new_query(conn_id, host)` that returns an IP address string when the answer
is already known, or `None` when it will be delivered later. Deliver later
answers with `handler.dns_resolved(conn_id, ip_or_error)`, passing a
`DNSTimeout` or `DNSInvalid` on failure.

The pickers take peers: objects with `id` and `rank` (integers), `pieces`
(a container of the piece indices the peer holds) and `piece_cache` (a
mutable list the rarest-first picker uses between calls).

## Example

```python
from swarmtrack.http_request import RequestBuilder

raw = (
    RequestBuilder("GET", "/announce", None)
    .query("info_hash", bytes(20))
    .query("compact", b"1")
    .header("Host", "tracker.example.com")
    .encode()
)
```

```python
from swarmtrack.util import hash_to_id, id_to_hash

ident = hash_to_id(bytes([8] * 20))
assert id_to_hash(ident) == bytes([8] * 20)
```

## What it does not do

- There is no event loop: nothing polls the sockets. Your code calls
  `readable`, `writable`, `dns_resolved` and `tick` on the handlers when
  their sockets are ready or a timer fires.
- There is no DNS resolver; one must be supplied as described above.
- There is no DHT and no peer exchange; `GetPeers` and `PeersReply` are only
  data types.
- There is no bencode library; HTTP tracker bodies are decoded internally
  for `TrackerResponse.from_dict` only.
- There is no command-line program, no peer wire protocol and no storage of
  downloaded data.