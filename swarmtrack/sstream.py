"""Non-blocking TCP stream that is either plain or wrapped in TLS."""

from __future__ import annotations

import errno
import os
import re
import socket
import ssl
from typing import Optional, Tuple

_CONNECT_PENDING = frozenset({0, errno.EINPROGRESS, errno.EWOULDBLOCK})
_RECV_CHUNK = 16_384
_LABEL = re.compile(r"^(?!-)[A-Za-z0-9_-]{1,63}(?<!-)$")


def _valid_dns_name(host: str) -> bool:
    if not host or not host.isascii():
        return False
    name = host[:-1] if host.endswith(".") else host
    if not name or len(name) > 253:
        return False
    labels = name.split(".")
    if not all(_LABEL.match(label) for label in labels):
        return False
    return not labels[-1].isdigit()


class SStream:
    """A non-blocking stream socket, optionally carrying a TLS session."""

    def __init__(
        self,
        sock: socket.socket,
        context: Optional[ssl.SSLContext] = None,
        server_hostname: Optional[str] = None,
        server_side: bool = False,
    ):
        sock.setblocking(False)
        self._sock = sock
        self._fd = sock.fileno()
        self._server_side = server_side
        self._tls: Optional[ssl.SSLObject] = None
        if context is not None:
            self._incoming = ssl.MemoryBIO()
            self._outgoing = ssl.MemoryBIO()
            self._tls = context.wrap_bio(
                self._incoming,
                self._outgoing,
                server_side=server_side,
                server_hostname=server_hostname,
            )
        self._handshaken = False
        self._eof = False
        self._pending_plain = bytearray()
        self._unsent = bytearray()

    @classmethod
    def _create(cls, family: int, host: Optional[str]) -> "SStream":
        if host is not None and not _valid_dns_name(host):
            raise ValueError("invalid host string used")
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            if host is None:
                return cls(sock)
            return cls(sock, ssl.create_default_context(), server_hostname=host)
        except BaseException:
            sock.close()
            raise

    @classmethod
    def new_v4(cls, host: Optional[str]) -> "SStream":
        """An unconnected IPv4 stream; TLS to host when host is given."""
        return cls._create(socket.AF_INET, host)

    @classmethod
    def new_v6(cls, host: Optional[str]) -> "SStream":
        """An unconnected IPv6 stream; TLS to host when host is given."""
        return cls._create(socket.AF_INET6, host)

    @classmethod
    def from_plain(cls, sock: socket.socket) -> "SStream":
        """Wrap an already connected socket without TLS."""
        return cls(sock)

    @classmethod
    def from_ssl(cls, sock: socket.socket, context: ssl.SSLContext) -> "SStream":
        """Wrap an accepted socket as the server side of a TLS session."""
        return cls(sock, context, server_side=True)

    def connect(self, addr: Tuple) -> None:
        """Start a non-blocking connect; an in-progress connect is not an error."""
        if self._server_side:
            raise ValueError("server side TLS connect")
        code = self._sock.connect_ex(addr)
        if code not in _CONNECT_PENDING:
            raise OSError(code, os.strerror(code))

    @property
    def socket(self) -> socket.socket:
        return self._sock

    def _advance_handshake(self) -> None:
        if self._handshaken:
            return
        try:
            self._tls.do_handshake()
        except ssl.SSLWantReadError:
            return
        self._handshaken = True
        if self._pending_plain:
            self._tls.write(bytes(self._pending_plain))
            self._pending_plain.clear()

    def _flush_outgoing(self) -> int:
        self._unsent += self._outgoing.read()
        sent = 0
        while self._unsent:
            count = self._sock.send(self._unsent)
            del self._unsent[:count]
            sent += count
        return sent

    def _complete_io(self) -> Tuple[int, int]:
        """Move TLS records between the session and the socket.

        Returns (bytes received, bytes sent); (0, 0) means the peer closed.
        Raises BlockingIOError when nothing could be moved.
        """
        self._advance_handshake()
        try:
            written = self._flush_outgoing()
        except BlockingIOError:
            written = 0
        if self._eof:
            return 0, written
        try:
            data = self._sock.recv(_RECV_CHUNK)
        except BlockingIOError:
            if written:
                return 0, written
            raise
        if not data:
            self._eof = True
            self._incoming.write_eof()
            return 0, written
        self._incoming.write(data)
        self._advance_handshake()
        try:
            written += self._flush_outgoing()
        except BlockingIOError:
            pass
        return len(data), written

    def _tls_read(self, size: int) -> bytes:
        try:
            return self._tls.read(size)
        except (ssl.SSLWantReadError, ssl.SSLZeroReturnError, ssl.SSLEOFError):
            return b""

    def _read(self, size: int) -> bytes:
        if self._tls is None:
            return self._sock.recv(size)
        while True:
            received, sent = self._complete_io()
            if received == 0 and sent == 0:
                return self._tls_read(size)
            data = self._tls_read(size)
            if data:
                return data

    def read(self, size: int) -> bytes:
        """Read up to size bytes; b"" at end of stream.

        Raises BlockingIOError when no data is available yet.
        """
        try:
            return self._read(size)
        except ConnectionAbortedError:
            return b""

    def readinto(self, buf) -> int:
        """Read into a writable buffer, returning the number of bytes read."""
        if self._tls is None:
            try:
                return self._sock.recv_into(buf)
            except ConnectionAbortedError:
                return 0
        data = self.read(len(buf))
        buf[: len(data)] = data
        return len(data)

    def write(self, data: bytes) -> int:
        """Write data, returning how many bytes were accepted."""
        if self._tls is None:
            return self._sock.send(data)
        payload = bytes(data)
        if self._handshaken:
            self._tls.write(payload)
        else:
            self._pending_plain += payload
        try:
            self._complete_io()
        except BlockingIOError:
            pass
        return len(payload)

    def flush(self) -> None:
        """Push any buffered TLS records to the socket."""
        if self._tls is None:
            return
        self._advance_handshake()
        try:
            self._flush_outgoing()
        except BlockingIOError:
            pass

    def fileno(self) -> int:
        return self._fd

    def close(self) -> None:
        self._sock.close()

    def __enter__(self) -> "SStream":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()