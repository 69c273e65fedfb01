"""Announcing to UDP trackers over one shared non-blocking datagram socket."""

from __future__ import annotations

import enum
import itertools
import logging
import random
import struct
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union
from urllib.parse import urlsplit

from .errors import (
    InvalidRequest,
    InvalidResponse,
    TrackerError,
    TrackerFailure,
    TrackerIOError,
    TrackerTimeout,
)
from .tracker import Announce, TrackerReply, TrackerResponse
from .util import bytes_to_addr

log = logging.getLogger(__name__)

TIMEOUT_SECS = 15.0
RETRANS_SECS = 5.0
MAGIC_NUM = 0x41727101980
RECV_SIZE = 350
ANNOUNCE_KEY = 0xFFFF00BA

ACTION_CONNECT = 0
ACTION_ANNOUNCE = 1
ACTION_ERROR = 3

_CONNECT = struct.Struct(">QII")
_ANNOUNCE = struct.Struct(">QII20s20sQQQIIIiH")

Address = Tuple[str, int]


def encode_connect_request(transaction_id: int) -> bytes:
    """Encode the 16-byte request that opens a UDP tracker connection."""
    return _CONNECT.pack(MAGIC_NUM, ACTION_CONNECT, transaction_id)


def encode_announce_request(connection_id: int, transaction_id: int,
                            announce: Announce, peer_id: bytes) -> bytes:
    """Encode the 98-byte announce request of the UDP tracker protocol."""
    event = 0 if announce.event is None else announce.event.udp_code
    num_want = -1 if announce.num_want is None else announce.num_want
    return _ANNOUNCE.pack(
        connection_id,
        ACTION_ANNOUNCE,
        transaction_id,
        bytes(announce.info_hash),
        bytes(peer_id),
        announce.downloaded,
        announce.left,
        announce.uploaded,
        event,
        0,
        ANNOUNCE_KEY,
        num_want,
        announce.port,
    )


def _new_transaction() -> int:
    return random.getrandbits(32)


class _Stage(enum.Enum):
    RESOLVING = "resolving"
    CONNECTING = "connecting"
    ANNOUNCING = "announcing"


@dataclass
class _Connection:
    announce: Announce
    port: int
    last_updated: float
    last_retrans: float
    stage: _Stage = _Stage.RESOLVING
    addr: Optional[Address] = None
    data: bytes = b""

    def reply(self, result: Union[TrackerResponse, TrackerError]) -> TrackerReply:
        return TrackerReply(tid=self.announce.torrent_id, url=self.announce.url, result=result)


class UdpTrackerHandler:
    """Tracks in-flight UDP announces and the transactions that belong to them."""

    def __init__(self, sock, resolver, peer_id: bytes):
        self._sock = sock
        self._resolver = resolver
        self._peer_id = bytes(peer_id)
        self._connections: Dict[int, _Connection] = {}
        self._transactions: Dict[int, int] = {}
        self._ids = itertools.count()

    def fileno(self) -> int:
        return self._sock.fileno()

    def complete(self) -> bool:
        return not self._connections

    def active_requests(self) -> int:
        return len(self._connections)

    def contains(self, conn_id: int) -> bool:
        return conn_id in self._connections

    def new_announce(self, announce: Announce) -> int:
        """Start an announce and return the id of its connection."""
        log.debug("Received a new announce req for %s", announce.url)
        parts = urlsplit(announce.url)
        host = parts.hostname
        if not host:
            raise InvalidRequest("Tracker announce url has no host!")
        try:
            port = parts.port
        except ValueError as exc:
            raise InvalidRequest("Tracker announce url has no port!") from exc
        if port is None:
            raise InvalidRequest("Tracker announce url has no port!")

        conn_id = next(self._ids)
        now = time.monotonic()
        self._connections[conn_id] = _Connection(
            announce=announce, port=port, last_updated=now, last_retrans=now)

        log.debug("Dispatching DNS req for %s, host: %s", conn_id, host)
        try:
            ip = self._resolver.new_query(conn_id, host)
        except OSError as exc:
            raise TrackerIOError() from exc
        if ip is not None:
            log.debug("Using cached DNS response")
            if self.dns_resolved(conn_id, ip) is not None:
                raise TrackerError("Failed to establish connection to tracker!")
        return conn_id

    def dns_resolved(self, conn_id: int,
                     result: Union[str, TrackerError]) -> Optional[TrackerReply]:
        """Feed a resolved address, or a DNS error, to a pending connection."""
        log.debug("Received a DNS resp for %s", conn_id)
        conn = self._connections.get(conn_id)
        if conn is None or conn.stage is not _Stage.RESOLVING:
            return None
        conn.last_updated = time.monotonic()
        if isinstance(result, TrackerError):
            del self._connections[conn_id]
            return conn.reply(result)
        tid = _new_transaction()
        conn.addr = (result, conn.port)
        conn.data = encode_connect_request(tid)
        conn.stage = _Stage.CONNECTING
        self._transactions[tid] = conn_id
        return self._send(conn_id)

    def readable(self) -> List[TrackerReply]:
        """Process every datagram waiting on the socket."""
        replies = []
        while True:
            try:
                datagram, _ = self._sock.recvfrom(RECV_SIZE)
            except OSError:
                break
            reply = self._dispatch(bytes(datagram))
            if reply is not None:
                replies.append(reply)
        return replies

    def _dispatch(self, datagram: bytes) -> Optional[TrackerReply]:
        size = len(datagram)
        action = int.from_bytes(datagram[:4], "big") if size >= 4 else None
        if action == ACTION_CONNECT and size == 16:
            return self._process_connect(datagram)
        if action == ACTION_ANNOUNCE and size >= 20:
            return self._process_announce(datagram)
        if action == ACTION_ERROR and size >= 8:
            return self._process_error(datagram)
        log.debug("Received invalid response from tracker!")
        return None

    def _process_connect(self, datagram: bytes) -> Optional[TrackerReply]:
        transaction_id, connection_id = struct.unpack_from(">IQ", datagram, 4)
        conn_id = self._transactions.pop(transaction_id, None)
        if conn_id is None:
            return None
        conn = self._connections.get(conn_id)
        if conn is None or conn.stage is not _Stage.CONNECTING:
            return None
        tid = _new_transaction()
        self._transactions[tid] = conn_id
        conn.data = encode_announce_request(connection_id, tid, conn.announce, self._peer_id)
        conn.stage = _Stage.ANNOUNCING
        conn.last_updated = time.monotonic()
        return self._send(conn_id)

    def _take(self, datagram: bytes) -> Optional[_Connection]:
        (transaction_id,) = struct.unpack_from(">I", datagram, 4)
        conn_id = self._transactions.pop(transaction_id, None)
        if conn_id is None:
            return None
        return self._connections.pop(conn_id, None)

    def _process_announce(self, datagram: bytes) -> Optional[TrackerReply]:
        conn = self._take(datagram)
        if conn is None:
            return None
        resp = TrackerResponse.empty()
        resp.interval, resp.leechers, resp.seeders = struct.unpack_from(">III", datagram, 8)
        compact = datagram[20:]
        whole = len(compact) - len(compact) % 6
        resp.peers = [bytes_to_addr(compact[i:i + 6]) for i in range(0, whole, 6)]
        return conn.reply(resp)

    def _process_error(self, datagram: bytes) -> Optional[TrackerReply]:
        conn = self._take(datagram)
        if conn is None:
            return None
        try:
            message = datagram[8:].decode("utf-8")
        except UnicodeDecodeError:
            return conn.reply(InvalidResponse("Tracker error response was invalid UTF8"))
        return conn.reply(TrackerFailure(message))

    def tick(self) -> List[TrackerReply]:
        """Expire idle announces and retransmit those waiting on the tracker."""
        now = time.monotonic()
        replies = []
        retrans = []
        for conn_id, conn in list(self._connections.items()):
            if now - conn.last_updated > TIMEOUT_SECS:
                log.debug("Announce %s timed out", conn_id)
                del self._connections[conn_id]
                replies.append(conn.reply(TrackerTimeout()))
            elif now - conn.last_retrans > RETRANS_SECS:
                log.debug("Retransmitting req %s", conn_id)
                retrans.append(conn_id)
        self._transactions = {tid: cid for tid, cid in self._transactions.items()
                              if cid in self._connections}
        for conn_id in retrans:
            reply = self._send(conn_id)
            if reply is not None:
                replies.append(reply)
        return replies

    def _send(self, conn_id: int) -> Optional[TrackerReply]:
        conn = self._connections[conn_id]
        if conn.stage is _Stage.RESOLVING:
            return None
        conn.last_retrans = time.monotonic()
        try:
            self._sock.sendto(conn.data, conn.addr)
        except OSError as exc:
            del self._connections[conn_id]
            error = TrackerIOError()
            error.__cause__ = exc
            return conn.reply(error)
        return None