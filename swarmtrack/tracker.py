"""Announce requests, tracker responses and the replies sent back to a torrent."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Tuple, Union

from .errors import InvalidResponse, TrackerError, TrackerFailure
from .util import bytes_to_addr

Address = Tuple[str, int]

DEFAULT_INTERVAL = 900
DEFAULT_NUM_WANT = 50


class Event(enum.Enum):
    """Announce event reported to the tracker."""

    STARTED = "started"
    STOPPED = "stopped"
    COMPLETED = "completed"

    @property
    def udp_code(self) -> int:
        """Numeric code of the event in the UDP tracker protocol."""
        return {Event.COMPLETED: 1, Event.STARTED: 2, Event.STOPPED: 3}[self]


@dataclass
class Announce:
    """A request to announce a torrent to one tracker."""

    torrent_id: int
    url: str
    info_hash: bytes
    port: int
    uploaded: int
    downloaded: int
    left: int
    num_want: Optional[int] = None
    event: Optional[Event] = None


@dataclass(frozen=True)
class GetPeers:
    """A request to find peers of a torrent through the DHT."""

    torrent_id: int
    info_hash: bytes


@dataclass
class TrackerResponse:
    """Peers and swarm statistics returned by a tracker."""

    peers: List[Address] = field(default_factory=list)
    interval: int = DEFAULT_INTERVAL
    leechers: int = 0
    seeders: int = 0

    @classmethod
    def empty(cls) -> "TrackerResponse":
        return cls()

    @classmethod
    def from_dict(cls, data: Any) -> "TrackerResponse":
        """Build a response from a decoded bencoded dictionary.

        Raises TrackerFailure when the tracker reported a failure reason and
        InvalidResponse when the dictionary is malformed.
        """
        if not isinstance(data, Mapping):
            raise InvalidResponse("Tracker response must be a dictionary type!")

        reason = _lookup(data, "failure reason")
        if isinstance(reason, (bytes, bytearray)):
            try:
                text = bytes(reason).decode("utf-8")
            except UnicodeDecodeError as exc:
                raise InvalidResponse("Failure reason must be UTF8!") from exc
            raise TrackerFailure(text)
        if isinstance(reason, str):
            raise TrackerFailure(reason)

        resp = cls.empty()
        peers = _lookup(data, "peers")
        if isinstance(peers, (bytes, bytearray)):
            compact = bytes(peers)
            whole = len(compact) - len(compact) % 6
            resp.peers = [bytes_to_addr(compact[i:i + 6]) for i in range(0, whole, 6)]

        interval = _lookup(data, "interval")
        if not isinstance(interval, int) or isinstance(interval, bool):
            raise InvalidResponse("Response must have interval!")
        resp.interval = interval & 0xFFFFFFFF
        return resp


def _lookup(data: Mapping, key: str) -> Any:
    if key in data:
        return data[key]
    return data.get(key.encode("ascii"))


@dataclass
class TrackerReply:
    """Outcome of an announce: a response or the error that ended it."""

    tid: int
    url: str
    result: Union[TrackerResponse, TrackerError]

    @property
    def ok(self) -> bool:
        return isinstance(self.result, TrackerResponse)


@dataclass
class PeersReply:
    """Peers found for a torrent by the DHT or by peer exchange."""

    tid: int
    peers: List[Address] = field(default_factory=list)
    source: str = "dht"


def new_announce(
    torrent_id: int,
    url: Optional[str],
    info_hash: bytes,
    port: int,
    uploaded: int,
    downloaded: int,
    total_len: int,
    pieces_done: int,
    piece_len: int,
    complete: bool,
    event: Optional[Event] = None,
) -> Optional[Announce]:
    """Build an announce for a torrent, or None when it has no tracker url."""
    if url is None:
        return None
    left = max(0, total_len - pieces_done * piece_len)
    return Announce(
        torrent_id=torrent_id,
        url=url,
        info_hash=info_hash,
        port=port,
        uploaded=uploaded,
        downloaded=downloaded,
        left=left,
        num_want=None if complete else DEFAULT_NUM_WANT,
        event=event,
    )