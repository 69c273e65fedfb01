"""Rarest-first piece selection.

Pieces are kept in one list ordered by availability, with a list of
boundaries marking where each availability level begins, so that moving a
piece between levels is a single swap.

A peer handed to the picker exposes ``pieces``, a container of the piece
indices it holds (supporting ``in`` and iteration), and ``piece_cache``, a
mutable list the picker uses to remember candidate pieces for that peer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

MAX_PC_SIZE = 50
PIECE_COMPLETE_DEC = 100
_INITIAL_AVAILABILITY_STEPS = 6


@dataclass
class _PieceInfo:
    idx: int
    availability: int = 0
    complete: bool = False


class RarestPicker:
    """Selects the least available piece a peer can provide."""

    def __init__(self, have: Sequence[bool]):
        count = len(have)
        self._pieces: List[int] = list(range(count))
        self._piece_idx: List[_PieceInfo] = [_PieceInfo(idx=i) for i in range(count)]
        self._priorities: List[int] = [count]

        # Every piece starts at an even availability of 12: decrementing for an
        # initial pick never underflows, and odd/even marks picked/unpicked.
        for piece in reversed(range(count)):
            for _ in range(_INITIAL_AVAILABILITY_STEPS):
                self.piece_available(piece)
            if have[piece]:
                self.completed(piece)

    def add_peer(self, peer) -> None:
        """Account for the pieces a newly connected peer holds."""
        for piece in sorted(peer.pieces):
            self.piece_available(piece)

    def remove_peer(self, peer) -> None:
        """Forget the pieces a departing peer held."""
        for piece in sorted(peer.pieces):
            self.piece_unavailable(piece)

    def piece_available(self, piece: int) -> None:
        """One more peer holds the piece."""
        self._dec_pri(piece)
        self._dec_pri(piece)

    def piece_unavailable(self, piece: int) -> None:
        """One fewer peer holds the piece."""
        self._inc_pri(piece)
        self._inc_pri(piece)

    def _dec_pri(self, piece: int) -> None:
        info = self._piece_idx[piece]
        self._priorities[info.availability] -= 1
        info.availability += 1
        if len(self._priorities) == info.availability:
            self._priorities.append(len(self._pieces))
        swap_idx = self._priorities[info.availability - 1]
        self._swap_piece(info.idx, swap_idx)

    def _inc_pri(self, piece: int) -> None:
        info = self._piece_idx[piece]
        if info.availability < 2:
            raise ValueError(f"piece {piece} availability cannot drop further")
        info.availability -= 1
        self._priorities[info.availability] += 1
        swap_idx = self._priorities[info.availability - 1]
        self._swap_piece(info.idx, swap_idx)

    def pick(self, peer) -> Optional[int]:
        """Return the rarest incomplete piece the peer holds, or None."""
        cache = peer.piece_cache
        while cache and self._piece_idx[cache[-1]].complete:
            cache.pop()

        if not cache:
            for piece in self._pieces:
                if piece in peer.pieces and not self._piece_idx[piece].complete:
                    cache.append(piece)
                if len(cache) >= MAX_PC_SIZE:
                    break
            cache.reverse()

        if not cache:
            return None
        piece = cache[-1]
        if self._piece_idx[piece].availability % 2 == 0:
            self._inc_pri(piece)
        return piece

    def incomplete(self, piece: int) -> None:
        """Make a piece selectable again."""
        info = self._piece_idx[piece]
        if info.complete:
            info.complete = False
            for _ in range(PIECE_COMPLETE_DEC):
                self._inc_pri(piece)

    def completed(self, piece: int) -> None:
        """Stop offering a piece; it is pushed far behind every other piece."""
        info = self._piece_idx[piece]
        if not info.complete:
            info.complete = True
            for _ in range(PIECE_COMPLETE_DEC):
                self._dec_pri(piece)

    def _swap_piece(self, a: int, b: int) -> None:
        pieces = self._pieces
        self._piece_idx[pieces[a]].idx = b
        self._piece_idx[pieces[b]].idx = a
        pieces[a], pieces[b] = pieces[b], pieces[a]