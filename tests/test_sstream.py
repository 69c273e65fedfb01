import socket
import ssl

import pytest

from swarmtrack.sstream import SStream


@pytest.fixture
def pair():
    a, b = socket.socketpair()
    yield a, b
    a.close()
    b.close()


def test_plain_round_trip(pair):
    a, b = pair
    stream = SStream.from_plain(a)
    b.sendall(b"hello")
    assert stream.read(16) == b"hello"
    assert stream.write(b"pong") == 4
    b.settimeout(2)
    assert b.recv(4) == b"pong"


def test_from_plain_is_nonblocking_and_keeps_fd(pair):
    a, _ = pair
    stream = SStream.from_plain(a)
    assert a.getblocking() is False
    assert stream.fileno() == a.fileno()


def test_read_without_data_blocks(pair):
    a, _ = pair
    stream = SStream.from_plain(a)
    with pytest.raises(BlockingIOError):
        stream.read(8)


def test_read_after_peer_close_is_eof(pair):
    a, b = pair
    stream = SStream.from_plain(a)
    b.close()
    assert stream.read(8) == b""


def test_readinto_fills_buffer(pair):
    a, b = pair
    stream = SStream.from_plain(a)
    b.sendall(b"abc")
    buf = bytearray(10)
    count = stream.readinto(buf)
    assert count == 3
    assert bytes(buf[:count]) == b"abc"


@pytest.mark.parametrize("host", ["bad host!", "127.0.0.1", "", "-lead.example.com"])
def test_invalid_tls_host_rejected(host):
    with pytest.raises(ValueError):
        SStream.new_v4(host)


def test_server_side_connect_rejected(pair):
    a, _ = pair
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    stream = SStream.from_ssl(a, context)
    with pytest.raises(ValueError):
        stream.connect(("127.0.0.1", 1))


def test_plain_connect_and_exchange():
    listener = socket.create_server(("127.0.0.1", 0))
    listener.settimeout(5)
    port = listener.getsockname()[1]
    with SStream.new_v4(None) as stream:
        stream.connect(("127.0.0.1", port))
        server, _ = listener.accept()
        server.settimeout(5)
        assert stream.write(b"ping") == 4
        assert server.recv(4) == b"ping"
        server.close()
    listener.close()


def test_tls_client_sends_handshake_record():
    listener = socket.create_server(("127.0.0.1", 0))
    listener.settimeout(5)
    port = listener.getsockname()[1]
    with SStream.new_v4("localhost") as stream:
        stream.connect(("127.0.0.1", port))
        server, _ = listener.accept()
        server.settimeout(5)
        assert stream.write(b"hi") == 2
        stream.flush()
        record = server.recv(5)
        # 0x16 is the TLS handshake record type.
        assert record[:1] == b"\x16"
        with pytest.raises(BlockingIOError):
            stream.read(16)
        server.close()
    listener.close()