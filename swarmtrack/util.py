"""Hashing, address packing, identifier and non-blocking I/O helpers."""

from __future__ import annotations

import enum
import errno
import hashlib
import ipaddress
import os
import random
import string
from dataclasses import dataclass
from typing import IO, Iterable, Optional, Tuple, TypeVar

T = TypeVar("T")

_ALPHANUMERIC = string.ascii_letters + string.digits
_HEX_DIGITS = frozenset(string.hexdigits)

Address = Tuple[str, int]


class IOStatus(enum.Enum):
    """Outcome of a single non-blocking read or write."""

    COMPLETE = "complete"
    INCOMPLETE = "incomplete"
    BLOCKED = "blocked"
    EOF = "eof"


@dataclass(frozen=True)
class IOResult:
    """Status of a non-blocking operation and, when incomplete, the bytes moved."""

    status: IOStatus
    count: int = 0


def random_sample(iterable: Iterable[T]) -> Optional[T]:
    """Pick one element uniformly at random in a single pass, or None if empty."""
    chosen: Optional[T] = None
    for seen, item in enumerate(iterable, start=1):
        if random.random() < 1.0 / seen:
            chosen = item
    return chosen


def random_string(length: int) -> str:
    """Return a random string of ASCII letters and digits."""
    return "".join(random.choices(_ALPHANUMERIC, k=length))


def sha1_hash(data: bytes) -> bytes:
    """Return the 20-byte SHA-1 digest of data."""
    return hashlib.sha1(data).digest()


def _rpc_id(*parts: bytes) -> str:
    ctx = hashlib.sha1()
    for part in parts:
        ctx.update(part)
    return hash_to_id(ctx.digest())


def peer_rpc_id(torrent: bytes, peer: int) -> str:
    """Identifier of a peer of a torrent."""
    return _rpc_id(torrent, b"PEER", peer.to_bytes(8, "big"))


def file_rpc_id(torrent: bytes, file: str) -> str:
    """Identifier of a file of a torrent."""
    return _rpc_id(torrent, b"FILE", file.encode("utf-8"))


def trk_rpc_id(torrent: bytes, url: str) -> str:
    """Identifier of a tracker of a torrent."""
    return _rpc_id(torrent, b"TRK", url.encode("utf-8"))


def hash_to_id(digest: bytes) -> str:
    """Render bytes as upper-case hexadecimal."""
    return digest.hex().upper()


def id_to_hash(s: str) -> Optional[bytes]:
    """Parse a 40 character hex identifier into 20 bytes, or None if malformed."""
    if len(s) != 40 or not all(c in _HEX_DIGITS for c in s):
        return None
    return bytes.fromhex(s)


def bytes_to_addr(data: bytes) -> Address:
    """Decode a compact IPv4 address and big-endian port."""
    if len(data) < 6:
        raise ValueError("compact address needs 6 bytes")
    ip = ipaddress.IPv4Address(bytes(data[:4]))
    return str(ip), int.from_bytes(data[4:6], "big")


def addr_to_bytes(addr: Address) -> bytes:
    """Encode an IPv4 (host, port) pair in compact form."""
    host, port = addr[0], addr[1]
    ip = ipaddress.ip_address(host)
    if not isinstance(ip, ipaddress.IPv4Address):
        raise ValueError("IPv6 DHT not supported")
    return ip.packed + port.to_bytes(2, "big")


def find_subseq(haystack: bytes, needle: bytes) -> Optional[int]:
    """Index of the first occurrence of needle in haystack, or None."""
    if not needle:
        raise ValueError("needle must not be empty")
    pos = haystack.find(needle)
    return None if pos < 0 else pos


def div_round_up(a: int, b: int) -> int:
    """Integer division rounding up."""
    return (a + b - 1) // b


def aread(buf, reader) -> IOResult:
    """Read into buf without blocking; unexpected OS errors propagate."""
    if len(buf) == 0:
        return IOResult(IOStatus.COMPLETE)
    read_into = getattr(reader, "readinto", None) or reader.recv_into
    try:
        count = read_into(buf)
    except (BlockingIOError, BrokenPipeError):
        return IOResult(IOStatus.BLOCKED)
    if count is None:
        return IOResult(IOStatus.BLOCKED)
    if count == 0:
        return IOResult(IOStatus.EOF)
    if count == len(buf):
        return IOResult(IOStatus.COMPLETE, count)
    return IOResult(IOStatus.INCOMPLETE, count)


def awrite(data: bytes, writer) -> IOResult:
    """Write data without blocking; unexpected OS errors propagate."""
    write = getattr(writer, "write", None) or writer.send
    try:
        count = write(data)
    except (BlockingIOError, BrokenPipeError):
        return IOResult(IOStatus.BLOCKED)
    if count is None:
        return IOResult(IOStatus.BLOCKED)
    if count == 0:
        return IOResult(IOStatus.EOF)
    if count == len(data):
        return IOResult(IOStatus.COMPLETE, count)
    return IOResult(IOStatus.INCOMPLETE, count)


def is_sparse(f: IO) -> bool:
    """True if the file occupies fewer blocks on disk than its size suggests."""
    st = os.fstat(f.fileno())
    return st.st_blocks * st.st_blksize < st.st_size


def fallocate(f: IO, length: int) -> bool:
    """Reserve length bytes for the file.

    Returns True when space was allocated, False when the platform cannot
    allocate and the file was only resized.
    """
    fd = f.fileno()
    allocate = getattr(os, "posix_fallocate", None)
    if allocate is None:
        os.ftruncate(fd, length)
        return False
    while True:
        try:
            allocate(fd, 0, length)
            return True
        except InterruptedError:
            continue
        except OSError as exc:
            if exc.errno in (errno.EOPNOTSUPP, errno.ENOSYS, errno.EINVAL):
                os.ftruncate(fd, length)
                return False
            if exc.errno == errno.ENOSPC:
                raise OSError(errno.ENOSPC, "Out of disk space!") from exc
            raise