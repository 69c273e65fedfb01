import pytest

from swarmtrack.errors import InvalidResponse, TrackerFailure
from swarmtrack.tracker import (
    Announce,
    Event,
    TrackerReply,
    TrackerResponse,
    new_announce,
)

HASH = b"\x01" * 20


def test_empty_response_defaults():
    resp = TrackerResponse.empty()
    assert resp.peers == []
    assert resp.interval == 900
    assert (resp.leechers, resp.seeders) == (0, 0)


def test_from_dict_parses_compact_peers():
    data = {b"interval": 1800, b"peers": b"\x7f\x00\x00\x01\x1a\xe1"}
    resp = TrackerResponse.from_dict(data)
    assert resp.interval == 1800
    assert resp.peers == [("127.0.0.1", 6881)]


def test_from_dict_accepts_str_keys_and_ignores_trailing_bytes():
    data = {"interval": 60, "peers": b"\x0a\x00\x00\x02\x00\x50\x0b\x0c"}
    resp = TrackerResponse.from_dict(data)
    assert resp.peers == [("10.0.0.2", 80)]
    assert resp.interval == 60


def test_from_dict_requires_interval():
    with pytest.raises(InvalidResponse):
        TrackerResponse.from_dict({b"peers": b""})


def test_from_dict_requires_integer_interval():
    with pytest.raises(InvalidResponse):
        TrackerResponse.from_dict({b"interval": b"60"})


def test_from_dict_rejects_non_dict():
    with pytest.raises(InvalidResponse):
        TrackerResponse.from_dict([1, 2, 3])


def test_failure_reason_raises_tracker_failure():
    with pytest.raises(TrackerFailure) as info:
        TrackerResponse.from_dict({b"failure reason": b"unregistered torrent"})
    assert info.value.reason == "unregistered torrent"


def test_failure_reason_must_be_utf8():
    with pytest.raises(InvalidResponse):
        TrackerResponse.from_dict({b"failure reason": b"\xff\xfe"})


def test_new_announce_without_url():
    assert new_announce(1, None, HASH, 6881, 0, 0, 100, 0, 10, False, None) is None


def test_new_announce_leeching():
    ann = new_announce(3, "http://tracker.example.com/announce", HASH, 6881,
                       5, 7, 100, 4, 10, False, Event.STARTED)
    assert isinstance(ann, Announce)
    assert ann.left == 100 - 4 * 10
    assert ann.num_want == 50
    assert ann.event is Event.STARTED
    assert (ann.torrent_id, ann.uploaded, ann.downloaded) == (3, 5, 7)


def test_new_announce_left_saturates_and_seeding_wants_none():
    ann = new_announce(3, "udp://tracker.example.com:80", HASH, 6881,
                       0, 0, 95, 10, 10, True, None)
    assert ann.left == 0
    assert ann.num_want is None
    assert ann.event is None


def test_event_values():
    assert Event("started") is Event.STARTED
    stopped = new_announce(1, "udp://tracker.example.com:80", HASH, 6881,
                           0, 0, 10, 0, 10, False, Event.STOPPED)
    completed = new_announce(1, "udp://tracker.example.com:80", HASH, 6881,
                             0, 0, 10, 1, 10, True, Event.COMPLETED)
    assert stopped.event.udp_code == 3
    assert completed.event.udp_code == 1


def test_tracker_reply_ok():
    good = TrackerReply(1, "http://tracker.example.com", TrackerResponse.empty())
    bad = TrackerReply(1, "http://tracker.example.com", InvalidResponse("x"))
    assert good.ok is True
    assert bad.ok is False