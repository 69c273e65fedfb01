"""In-order piece selection, grouped by priority.

Peers are expected to expose ``pieces``, a container of the piece indices
they hold.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

DEFAULT_PRIORITY = 3
MAX_PRIORITY = 5


@dataclass
class _Piece:
    pos: int
    complete: bool


class SequentialPicker:
    """Picks pieces in index order, highest priority group first.

    Held pieces and pieces of priority 0 are treated as already complete.
    """

    def __init__(self, have: Sequence[bool], priorities: Optional[Sequence[int]] = None):
        buckets: List[List[int]] = [[] for _ in range(MAX_PRIORITY + 1)]
        if priorities is None:
            for piece, held in enumerate(have):
                buckets[0 if held else DEFAULT_PRIORITY].append(piece)
        else:
            for piece, priority in enumerate(priorities):
                if not 0 <= priority <= MAX_PRIORITY:
                    raise ValueError(f"invalid priority {priority} for piece {piece}")
                buckets[0 if have[piece] else priority].append(piece)

        self._pieces = [_Piece(pos, True) for pos in buckets[0]]
        self._piece_idx = len(self._pieces)
        for priority in range(MAX_PRIORITY, 0, -1):
            self._pieces.extend(_Piece(pos, False) for pos in buckets[priority])

    def pick(self, peer) -> Optional[int]:
        """Return the first piece past the completed prefix that the peer holds."""
        return next((p.pos for p in self._pieces[self._piece_idx:] if p.pos in peer.pieces),
                    None)

    def completed(self, piece: int) -> None:
        """Mark a piece complete and advance past completed pieces."""
        for entry in self._pieces[self._piece_idx:]:
            if entry.pos == piece:
                entry.complete = True
                break
        self._update_piece_idx()

    def incomplete(self, piece: int) -> None:
        """Mark a piece incomplete and resume picking from its position."""
        for position, entry in enumerate(self._pieces):
            if entry.pos == piece:
                entry.complete = False
                self._piece_idx = position
                break

    def _update_piece_idx(self) -> None:
        tail = self._pieces[self._piece_idx:]
        self._piece_idx += sum(1 for entry in tail if entry.complete)