from dataclasses import dataclass, field
from unittest import mock

import pytest

from swarmtrack.picker import BLOCK_SIZE, Block, Picker, piece_priorities


@dataclass
class FakePeer:
    id: int
    pieces: set
    rank: int = 0
    piece_cache: list = field(default_factory=list)


def test_seq_picker():
    picker = Picker(BLOCK_SIZE, BLOCK_SIZE, [False] * 10, None)
    picker.change_picker(True)
    peer = FakePeer(0, set(range(10)))

    for i in range(10):
        assert picker.pick(peer) == Block(i, 0)

    for i in range(10):
        canceled = []
        assert picker.completed(Block(i, 0), canceled.append) is True
        assert canceled == [0]

    picker.invalidate_piece(5)
    assert picker.pick(peer) == Block(5, 0)


def test_is_sequential_follows_change_picker():
    picker = Picker(BLOCK_SIZE, BLOCK_SIZE, [False, False], None)
    assert picker.is_sequential() is False
    picker.change_picker(True)
    assert picker.is_sequential() is True
    picker.change_picker(False)
    assert picker.is_sequential() is False


def test_rarest_splits_piece_into_blocks():
    picker = Picker(2 * BLOCK_SIZE, BLOCK_SIZE, [False, False, False], None)
    peer = FakePeer(1, {0})
    assert picker.pick(peer) == Block(0, 0)
    assert picker.pick(peer) == Block(0, BLOCK_SIZE)
    assert picker.pick(peer) is None


def test_duplicate_request_to_other_peer():
    picker = Picker(2 * BLOCK_SIZE, BLOCK_SIZE, [False, False, False], None)
    first = FakePeer(1, {0})
    second = FakePeer(2, {0})
    assert picker.pick(first) == Block(0, 0)
    assert picker.pick(first) == Block(0, BLOCK_SIZE)
    assert picker.pick(second) == Block(0, 0)
    canceled = []
    assert picker.completed(Block(0, 0), canceled.append) is False
    assert sorted(canceled) == [1, 2]


def test_completed_reports_whole_piece():
    picker = Picker(2 * BLOCK_SIZE, BLOCK_SIZE, [False, False, False], None)
    peer = FakePeer(1, {0})
    a = picker.pick(peer)
    b = picker.pick(peer)
    assert picker.have_block(a) is False
    assert picker.completed(a) is False
    assert picker.have_block(a) is True
    assert picker.completed(b) is True


def test_last_piece_has_fewer_blocks():
    picker = Picker(2 * BLOCK_SIZE, BLOCK_SIZE, [False, False, False], None)
    peer = FakePeer(1, {2})
    assert picker.pick(peer) == Block(2, 0)
    assert picker.pick(peer) is None
    assert picker.completed(Block(2, 0)) is True


def test_completed_unrequested_block_raises():
    picker = Picker(BLOCK_SIZE, BLOCK_SIZE, [False], None)
    with pytest.raises(KeyError):
        picker.completed(Block(0, 0))


def test_completed_twice_raises():
    picker = Picker(BLOCK_SIZE, BLOCK_SIZE, [False], None)
    block = picker.pick(FakePeer(1, {0}))
    assert picker.completed(block) is True
    with pytest.raises(KeyError):
        picker.completed(block)


@pytest.mark.parametrize("common, expected", [(0, Block(1, 0)), (1, Block(0, 0))])
def test_piece_available_prefers_rarer_piece(common, expected):
    picker = Picker(BLOCK_SIZE, BLOCK_SIZE, [False, False], None)
    picker.piece_available(common)
    assert picker.pick(FakePeer(1, {0, 1})) == expected


def test_rarest_prefers_piece_held_by_fewer_peers():
    picker = Picker(BLOCK_SIZE, BLOCK_SIZE, [False, False, False], None)
    holders = [FakePeer(1, {0, 1}), FakePeer(2, {0})]
    for holder in holders:
        picker.add_peer(holder)
    assert picker.pick(FakePeer(3, {0, 1})) == Block(1, 0)


def test_remove_peer_drops_its_requests():
    picker = Picker(BLOCK_SIZE, BLOCK_SIZE, [False, False], None)
    first = FakePeer(1, {0})
    second = FakePeer(2, {0})
    picker.add_peer(first)
    picker.add_peer(second)
    assert picker.pick(first) == Block(0, 0)
    picker.remove_peer(first)
    assert picker.pick(second) == Block(0, 0)
    canceled = []
    assert picker.completed(Block(0, 0), canceled.append) is True
    assert canceled == [2]


def test_seeders_counted():
    picker = Picker(BLOCK_SIZE, BLOCK_SIZE, [False, False], None)
    seeder = FakePeer(1, {0, 1})
    picker.add_peer(seeder)
    assert picker.seeders == 1
    picker.remove_peer(seeder)
    assert picker.seeders == 0


def test_zero_priority_piece_not_picked_rarest():
    picker = Picker(BLOCK_SIZE, BLOCK_SIZE, [False, False], [0, 3])
    peer = FakePeer(1, {0, 1})
    assert picker.pick(peer) == Block(1, 0)
    assert picker.pick(peer) is None


def test_zero_priority_piece_not_picked_sequential():
    picker = Picker(BLOCK_SIZE, BLOCK_SIZE, [False, False], None)
    picker.change_picker(True)
    picker.set_priorities([0, 3])
    peer = FakePeer(1, {0, 1})
    assert picker.pick(peer) == Block(1, 0)
    assert picker.pick(peer) is None


def test_sequential_high_priority_first():
    picker = Picker(BLOCK_SIZE, BLOCK_SIZE, [False, False, False], None)
    picker.change_picker(True)
    picker.set_priorities([1, 5, 3])
    peer = FakePeer(1, {0, 1, 2})
    assert [picker.pick(peer) for _ in range(3)] == [Block(1, 0), Block(2, 0), Block(0, 0)]


def test_set_priorities_wrong_length():
    picker = Picker(BLOCK_SIZE, BLOCK_SIZE, [False, False], None)
    with pytest.raises(ValueError):
        picker.set_priorities([3])


def test_invalidate_after_done():
    picker = Picker(BLOCK_SIZE, BLOCK_SIZE, [False], None)
    peer = FakePeer(1, {0})
    block = picker.pick(peer)
    assert picker.completed(block) is True
    picker.done()
    picker.invalidate_piece(0)
    assert picker.pick(peer) == Block(0, 0)


def test_tick_stalls_timed_out_block():
    picker = Picker(BLOCK_SIZE, BLOCK_SIZE, [False], None)
    peers = [FakePeer(i, {0}) for i in range(1, 5)]
    with mock.patch("time.monotonic", return_value=100.0) as clock:
        assert picker.pick(peers[0]) == Block(0, 0)
        assert picker.pick(peers[1]) == Block(0, 0)
        assert picker.pick(peers[2]) == Block(0, 0)
        assert picker.pick(peers[3]) is None
        clock.return_value = 105.0
        picker.tick()
        assert picker.pick(peers[3]) is None
        clock.return_value = 111.0
        picker.tick()
        assert picker.pick(peers[3]) == Block(0, 0)
    canceled = []
    assert picker.completed(Block(0, 0), canceled.append) is True
    assert sorted(canceled) == [2, 3, 4]


@pytest.mark.parametrize("priority, elapsed, stalled", [
    (5, 8.0, True),
    (3, 9.0, False),
    (3, 10.0, True),
])
def test_tick_deadline_depends_on_priority(priority, elapsed, stalled):
    picker = Picker(BLOCK_SIZE, BLOCK_SIZE, [False], [priority])
    peers = [FakePeer(i, {0}) for i in range(1, 5)]
    with mock.patch("time.monotonic", return_value=100.0) as clock:
        for peer in peers[:3]:
            assert picker.pick(peer) == Block(0, 0)
        clock.return_value = 100.0 + elapsed
        picker.tick()
        result = picker.pick(peers[3])
    assert result == (Block(0, 0) if stalled else None)


def test_piece_priorities_takes_max_file_priority():
    assert piece_priorities([1, 5], [[0], [0, 1], [1]]) == [1, 5, 5]


def test_piece_priorities_requires_locations():
    with pytest.raises(ValueError):
        piece_priorities([1, 5], [[0], []])