"""Incremental reading of tracker HTTP responses and writing of requests."""

from __future__ import annotations

import errno
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from .errors import InvalidResponse, TrackerEOF, TrackerIOError
from .util import IOStatus, aread

_INITIAL_SIZE = 75
_MAX_HEADERS = 16
_REDIRECT_CODES = frozenset({301, 302, 303, 307, 308})
_STATUS_PREFIX = b"HTTP/1."


@dataclass(frozen=True)
class Redirect:
    """The tracker answered with a redirect to another location."""

    location: str


def _malformed() -> InvalidResponse:
    return InvalidResponse("malformed HTTP")


def _header_end(data: bytes) -> Optional[Tuple[int, int]]:
    """Return (end of header lines, start of body), or None if incomplete."""
    candidates = [(pos, pos + len(sep)) for sep in (b"\r\n\r\n", b"\n\n")
                  if (pos := data.find(sep)) >= 0]
    return min(candidates) if candidates else None


def _parse_head(head: bytes) -> Tuple[int, List[Tuple[str, bytes]]]:
    lines = head.replace(b"\r\n", b"\n").split(b"\n")
    parts = lines[0].split(b" ", 2)
    if (len(parts) < 2 or not parts[0].startswith(_STATUS_PREFIX)
            or len(parts[0]) != len(_STATUS_PREFIX) + 1
            or not parts[0][-1:].isdigit()
            or len(parts[1]) != 3 or not parts[1].isdigit()):
        raise _malformed()
    code = int(parts[1])
    headers = []
    for line in lines[1:]:
        name, sep, value = line.partition(b":")
        if not sep or not name or name != name.strip():
            raise _malformed()
        try:
            headers.append((name.decode("ascii"), value.strip()))
        except UnicodeDecodeError as exc:
            raise _malformed() from exc
    if len(headers) > _MAX_HEADERS:
        raise _malformed()
    return code, headers


class Reader:
    """Reads a response from a non-blocking connection until it closes."""

    def __init__(self):
        self._data = bytearray(_INITIAL_SIZE)
        self._idx = 0
        self._in_body = False

    def readable(self, conn) -> Union[None, bytes, Redirect]:
        """Consume what the connection has.

        Returns None when more data is needed, the body once the connection
        closes, or a Redirect when the tracker redirects.
        """
        while True:
            try:
                with memoryview(self._data) as whole, whole[self._idx:] as view:
                    result = aread(view, conn)
            except OSError as exc:
                raise TrackerIOError() from exc

            if result.status is IOStatus.COMPLETE:
                self._idx = len(self._data)
                new_len = max(int(self._idx * 1.5), _INITIAL_SIZE)
                self._data.extend(bytes(new_len - self._idx))
            elif result.status is IOStatus.INCOMPLETE:
                self._idx += result.count
            elif result.status is IOStatus.BLOCKED:
                return None
            else:
                if self._in_body:
                    body = bytes(self._data[:self._idx])
                    self._data = bytearray()
                    return body
                raise TrackerEOF()

            redirect = self._process()
            if redirect is not None:
                return redirect

    def _process(self) -> Optional[Redirect]:
        if self._in_body:
            return None
        received = bytes(self._data[:self._idx])
        prefix = received[:len(_STATUS_PREFIX)]
        if not _STATUS_PREFIX.startswith(prefix):
            raise _malformed()
        bounds = _header_end(received)
        if bounds is None:
            return None
        head_end, body_start = bounds
        code, headers = _parse_head(received[:head_end])
        if code in _REDIRECT_CODES:
            location = next((value for name, value in headers if name == "Location"), None)
            if location is None:
                raise _malformed()
            try:
                return Redirect(location.decode("utf-8"))
            except UnicodeDecodeError as exc:
                raise _malformed() from exc
        self._data = self._data[body_start:]
        self._idx -= body_start
        self._in_body = True
        return None


class Writer:
    """Writes a request to a non-blocking connection across several calls."""

    def __init__(self, data: bytes):
        self._data = bytes(data)
        self._idx = 0

    def writable(self, conn) -> bool:
        """Write what the connection accepts; True once everything is sent."""
        write = getattr(conn, "write", None) or conn.send
        try:
            count = write(self._data[self._idx:])
        except (BlockingIOError, BrokenPipeError):
            return False
        except OSError as exc:
            if exc.errno == errno.ENOTCONN:
                return False
            raise TrackerIOError() from exc
        if count is None:
            return False
        if count == 0:
            raise TrackerEOF()
        if self._idx + count == len(self._data):
            return True
        self._idx += count
        return False