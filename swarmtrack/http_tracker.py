"""Announcing to HTTP(S) trackers over non-blocking connections."""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import urljoin, urlsplit

from .errors import (
    InvalidRequest,
    InvalidResponse,
    TrackerError,
    TrackerIOError,
    TrackerTimeout,
)
from .http_io import Reader, Redirect, Writer
from .http_request import RequestBuilder
from .sstream import SStream
from .tracker import Announce, TrackerReply, TrackerResponse

log = logging.getLogger(__name__)

TIMEOUT_SECS = 5.0
USER_AGENT = "swarmtrack/0.1.0"


def _url_parts(url: str):
    parts = urlsplit(url)
    path = parts.path or "/"
    query = parts.query or None
    return parts, path, query


def _default_port(scheme: str) -> int:
    return 443 if scheme == "https" else 80


def build_announce_request(announce: Announce, peer_id: bytes, host: str) -> bytes:
    """Encode the HTTP GET request announcing a torrent to a tracker."""
    _, path, query = _url_parts(announce.url)
    num_want = None if announce.num_want is None else str(announce.num_want)
    event = None if announce.event is None else announce.event.value
    return (
        RequestBuilder("GET", path, query)
        .query("info_hash", announce.info_hash)
        .query("peer_id", peer_id)
        .query("uploaded", str(announce.uploaded))
        .query("downloaded", str(announce.downloaded))
        .query("left", str(announce.left))
        .query("compact", b"1")
        .query("port", str(announce.port))
        .query_opt("numwant", num_want)
        .query_opt("event", event)
        .header("User-agent", USER_AGENT)
        .header("Connection", "close")
        .header("Host", host)
        .encode()
    )


def resolve_redirect(location: str, original_url: str) -> str:
    """Turn a redirect location into an absolute url."""
    try:
        parts = urlsplit(location)
    except ValueError as exc:
        raise InvalidResponse("Malformed redirect!") from exc
    if parts.scheme:
        return location
    try:
        return urljoin(original_url, location)
    except ValueError as exc:
        raise InvalidResponse("Invalid relative redirect URL") from exc


def _bdecode(data: bytes) -> Any:
    try:
        value, _ = _decode_at(bytes(data), 0)
    except (ValueError, IndexError, RecursionError) as exc:
        raise InvalidResponse("Invalid BEncoded response!") from exc
    return value


def _decode_at(data: bytes, pos: int) -> Tuple[Any, int]:
    lead = data[pos:pos + 1]
    if lead == b"i":
        end = data.index(b"e", pos)
        return int(data[pos + 1:end]), end + 1
    if lead == b"l":
        items = []
        pos += 1
        while data[pos:pos + 1] != b"e":
            item, pos = _decode_at(data, pos)
            items.append(item)
        return items, pos + 1
    if lead == b"d":
        result: Dict[bytes, Any] = {}
        pos += 1
        while data[pos:pos + 1] != b"e":
            key, pos = _decode_at(data, pos)
            if not isinstance(key, bytes):
                raise ValueError("dictionary key must be a string")
            result[key], pos = _decode_at(data, pos)
        return result, pos + 1
    if lead.isdigit():
        colon = data.index(b":", pos)
        length = int(data[pos:colon])
        start = colon + 1
        end = start + length
        if end > len(data):
            raise ValueError("truncated string")
        return data[start:end], end
    raise ValueError("unexpected bencode data")


class _Stage(enum.Enum):
    RESOLVING = "resolving"
    WRITING = "writing"
    READING = "reading"
    FAILED = "failed"


class _Event(enum.Enum):
    DNS_RESOLVED = "dns"
    READABLE = "readable"
    WRITABLE = "writable"


Outcome = Union[None, TrackerResponse, Redirect]


@dataclass
class _Connection:
    torrent: int
    url: str
    stream: SStream
    request: bytes
    port: int
    redirect: bool
    last_updated: float = 0.0
    stage: _Stage = _Stage.RESOLVING
    writer: Optional[Writer] = None
    reader: Optional[Reader] = None

    def touch(self) -> None:
        self.last_updated = time.monotonic()

    def handle(self, event: _Event, dns_result: Any = None) -> Outcome:
        """Advance the connection; a finished or failed one cannot advance again."""
        current, self.stage = self.stage, _Stage.FAILED
        if current is _Stage.RESOLVING:
            if event is not _Event.DNS_RESOLVED:
                self.stage = _Stage.RESOLVING
                return None
            if isinstance(dns_result, TrackerError):
                raise dns_result
            try:
                self.stream.connect((dns_result, self.port))
            except OSError as exc:
                raise TrackerIOError() from exc
            self.writer = Writer(self.request)
            current = _Stage.WRITING
        if current is _Stage.WRITING:
            if not self.writer.writable(self.stream):
                self.stage = _Stage.WRITING
                return None
            log.debug("Tracker write completed, beginning read")
            self.reader = Reader()
            current = _Stage.READING
        if current is _Stage.READING:
            outcome = self.reader.readable(self.stream)
            if outcome is None:
                self.stage = _Stage.READING
                return None
            if isinstance(outcome, Redirect):
                return outcome
            return TrackerResponse.from_dict(_bdecode(outcome))
        raise TrackerError("Unknown state transition encountered!")

    def failure(self, error: TrackerError) -> TrackerReply:
        return TrackerReply(tid=self.torrent, url=self.url, result=error)


class HttpTrackerHandler:
    """Tracks in-flight HTTP announces keyed by their socket's file descriptor."""

    def __init__(self, resolver, peer_id: bytes):
        self._resolver = resolver
        self._peer_id = bytes(peer_id)
        self._connections: Dict[int, _Connection] = {}

    def active_requests(self) -> int:
        return len(self._connections)

    def complete(self) -> bool:
        return not self._connections

    def contains(self, conn_id: int) -> bool:
        return conn_id in self._connections

    def _drop(self, conn_id: int) -> Optional[_Connection]:
        conn = self._connections.pop(conn_id, None)
        if conn is not None:
            conn.stream.close()
        return conn

    def _start(self, url: str, host: str, request: bytes, port: int, torrent: int,
               redirect: bool, scheme: str) -> int:
        try:
            stream = SStream.new_v4(host if scheme == "https" else None)
        except (OSError, ValueError) as exc:
            raise TrackerIOError() from exc
        conn_id = stream.fileno()
        conn = _Connection(torrent=torrent, url=url, stream=stream, request=request,
                           port=port, redirect=redirect)
        conn.touch()
        self._connections[conn_id] = conn

        log.debug("Dispatching DNS req, id %s", conn_id)
        try:
            ip = self._resolver.new_query(conn_id, host)
        except OSError as exc:
            raise TrackerIOError() from exc
        if ip is not None:
            log.debug("Using cached DNS response")
            if self.dns_resolved(conn_id, ip) is not None:
                raise TrackerError("Failed to establish connection to tracker!")
        return conn_id

    def new_announce(self, announce: Announce) -> int:
        """Start an announce and return the id of its connection."""
        log.debug("Received a new announce req for %s", announce.url)
        parts, _, _ = _url_parts(announce.url)
        host = parts.hostname
        if not host:
            raise InvalidRequest("Tracker announce url has no host!")
        request = build_announce_request(announce, self._peer_id, host)
        port = parts.port or _default_port(parts.scheme)
        return self._start(announce.url, host, request, port, announce.torrent_id,
                           False, parts.scheme)

    def dns_resolved(self, conn_id: int, result: Union[str, TrackerError]) -> Optional[TrackerReply]:
        """Feed a resolved address, or a DNS error, to a pending connection."""
        log.debug("Received a DNS resp for %s", conn_id)
        conn = self._connections.get(conn_id)
        if conn is None:
            return None
        conn.touch()
        try:
            conn.handle(_Event.DNS_RESOLVED, result)
        except TrackerError as exc:
            self._drop(conn_id)
            return conn.failure(exc)
        return None

    def writable(self, conn_id: int) -> Optional[TrackerReply]:
        conn = self._connections.get(conn_id)
        if conn is None:
            return None
        conn.touch()
        try:
            conn.handle(_Event.WRITABLE)
        except TrackerError as exc:
            self._drop(conn_id)
            return conn.failure(exc)
        return None

    def readable(self, conn_id: int) -> Optional[TrackerReply]:
        conn = self._connections.get(conn_id)
        if conn is None:
            return None
        conn.touch()
        try:
            outcome = conn.handle(_Event.READABLE)
        except TrackerError as exc:
            self._drop(conn_id)
            return conn.failure(exc)

        if isinstance(outcome, TrackerResponse):
            log.debug("Announce response received for %s successfully", conn_id)
            self._drop(conn_id)
            return TrackerReply(tid=conn.torrent, url=conn.url, result=outcome)
        if isinstance(outcome, Redirect):
            self._drop(conn_id)
            if conn.redirect:
                return conn.failure(InvalidResponse("Too many redirects"))
            try:
                self._try_redirect(outcome.location, conn.url, conn.torrent)
            except TrackerError as exc:
                return conn.failure(exc)
        return None

    def _try_redirect(self, location: str, original_url: str, torrent: int) -> None:
        url = resolve_redirect(location, original_url)
        try:
            parts, path, query = _url_parts(url)
            port = parts.port
        except ValueError as exc:
            raise InvalidResponse("Malformed redirect!") from exc
        host = parts.hostname
        if not host:
            log.error("Malformed redirect: %s", url)
            raise InvalidResponse("Malformed redirect!")
        request = (
            RequestBuilder("GET", path, query)
            .header("User-agent", USER_AGENT)
            .header("Connection", "close")
            .header("Host", host)
            .encode()
        )
        log.debug("Redirecting announce for %s to %s", torrent, url)
        self._start(original_url, host, request, port or _default_port(parts.scheme),
                    torrent, True, parts.scheme)

    def tick(self) -> List[TrackerReply]:
        """Expire connections that have been idle too long."""
        now = time.monotonic()
        expired = [cid for cid, conn in self._connections.items()
                   if now - conn.last_updated > TIMEOUT_SECS]
        replies = []
        for conn_id in expired:
            log.debug("Announce %s timed out", conn_id)
            conn = self._drop(conn_id)
            replies.append(conn.failure(TrackerTimeout()))
        return replies