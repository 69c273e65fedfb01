from dataclasses import dataclass, field
from typing import Set

import pytest

from swarmtrack.sequential import SequentialPicker


@dataclass
class _Peer:
    pieces: Set[int] = field(default_factory=set)


def test_piece_pick_order():
    picker = SequentialPicker([False] * 3)
    peer = _Peer()
    assert picker.pick(peer) is None
    peer.pieces.add(1)
    assert picker.pick(peer) == 1
    peer.pieces.add(0)
    assert picker.pick(peer) == 0
    picker.completed(0)
    picker.completed(1)
    peer.pieces.add(2)
    assert picker.pick(peer) == 2

    picker.completed(2)
    assert picker.pick(peer) is None
    picker.incomplete(1)
    assert picker.pick(peer) == 1


def test_held_pieces_are_skipped():
    picker = SequentialPicker([True, False, True])
    peer = _Peer(pieces={0, 1, 2})
    assert picker.pick(peer) == 1


def test_higher_priority_picked_first():
    picker = SequentialPicker([False] * 4, [1, 3, 5, 3])
    peer = _Peer(pieces={0, 1, 2, 3})
    assert picker.pick(peer) == 2
    picker.completed(2)
    assert picker.pick(peer) == 1
    picker.completed(1)
    assert picker.pick(peer) == 3
    picker.completed(3)
    assert picker.pick(peer) == 0
    picker.completed(0)
    assert picker.pick(peer) is None


def test_priority_zero_is_never_picked():
    picker = SequentialPicker([False] * 2, [0, 3])
    peer = _Peer(pieces={0})
    assert picker.pick(peer) is None


def test_held_piece_ignores_its_priority():
    picker = SequentialPicker([True, False], [5, 1])
    peer = _Peer(pieces={0, 1})
    assert picker.pick(peer) == 1


def test_invalid_priority_raises():
    with pytest.raises(ValueError):
        SequentialPicker([False], [6])


def test_incomplete_held_piece_becomes_pickable():
    picker = SequentialPicker([True, False])
    peer = _Peer(pieces={0})
    assert picker.pick(peer) is None
    picker.incomplete(0)
    assert picker.pick(peer) == 0