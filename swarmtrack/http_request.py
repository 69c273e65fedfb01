"""Minimal HTTP/1.1 GET request encoding with tracker-style query escaping."""

from __future__ import annotations

from typing import List, Optional, Tuple, Union

BytesLike = Union[bytes, bytearray, str]


def _as_bytes(value: BytesLike) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


def encode_param(param: BytesLike) -> bytes:
    """Percent-encode every byte except ASCII letters, digits and '-'."""
    out = bytearray()
    for byte in _as_bytes(param):
        ch = chr(byte)
        if 0x20 < byte < 0x7E and (ch.isalnum() or ch == "-"):
            out.append(byte)
        else:
            out += b"%%%02X" % byte
    return bytes(out)


class RequestBuilder:
    """Accumulates query parameters and headers for a request line."""

    def __init__(self, method: str, path: str, query: Optional[str] = None):
        self.method = method
        self.path = path
        self.base_query = query
        self._query_pairs: List[Tuple[str, bytes]] = []
        self._headers: List[Tuple[str, str]] = []

    def query(self, name: str, value: BytesLike) -> "RequestBuilder":
        self._query_pairs.append((name, _as_bytes(value)))
        return self

    def query_opt(self, name: str, value: Optional[BytesLike]) -> "RequestBuilder":
        if value is not None:
            self.query(name, value)
        return self

    def header(self, name: str, value: str) -> "RequestBuilder":
        self._headers.append((name, value))
        return self

    def encode(self) -> bytes:
        """Render the request line and headers, terminated by a blank line."""
        params = []
        if self.base_query is not None:
            params.append(self.base_query.encode("utf-8"))
        params.extend(name.encode("utf-8") + b"=" + encode_param(value)
                      for name, value in self._query_pairs)
        target = self.path.encode("utf-8")
        if params:
            target += b"?" + b"&".join(params)
        lines = [self.method.encode("utf-8") + b" " + target + b" HTTP/1.1"]
        lines.extend(f"{name}: {value}".encode("utf-8") for name, value in self._headers)
        return b"\r\n".join(lines) + b"\r\n\r\n"