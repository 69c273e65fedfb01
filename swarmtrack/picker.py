"""Block selection for a torrent download.

The picker chooses which block to request from which peer. Whole pieces are
chosen by a rarest-first or sequential piece picker; this module splits
pieces into blocks, keeps track of outstanding requests, re-requests blocks
from slow peers and applies piece priorities.

A peer handed to the picker exposes ``id`` and ``rank`` (integers),
``pieces`` (a container of the piece indices it holds) and ``piece_cache``
(a mutable list used by the rarest-first picker).
"""

from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Union

from .rarest import RarestPicker
from .sequential import SequentialPicker

log = logging.getLogger(__name__)

BLOCK_SIZE = 16_384
MAX_DUP_REQS = 3
MAX_DL_REREQ = 150
REQ_TIMEOUT = 10
DEFAULT_PRIORITY = 3


@dataclass(frozen=True, order=True)
class Block:
    """A 16 KiB block of a piece, located by piece index and byte offset."""

    index: int
    offset: int


@dataclass
class _Request:
    """A block request and the peers it has been sent to."""

    peers: List[int]
    rank: int
    requested_at: float = field(default_factory=time.monotonic)

    def rereq(self, peer: int, rank: int) -> None:
        self.rank = rank
        self.peers.append(peer)
        self.requested_at = time.monotonic()

    def force_rereq(self, peer: int, rank: int) -> None:
        if len(self.peers) < MAX_DUP_REQS:
            self.rereq(peer, rank)
        else:
            self.peers[0] = peer
            self.requested_at = time.monotonic()
            self.rank = rank

    def has_peer(self, peer: int) -> bool:
        return peer in self.peers


@dataclass
class _Progress:
    requested: int = 0
    completed: int = 0


def piece_priorities(file_priorities: Sequence[int],
                     piece_files: Iterable[Iterable[int]]) -> List[int]:
    """Priority of every piece: the highest priority of the files it touches."""
    result = []
    for piece, files in enumerate(piece_files):
        priorities = [file_priorities[f] for f in files]
        if not priorities:
            raise ValueError(f"piece {piece} must have locations")
        result.append(max(priorities))
    return result


def _blocks_in(length: int) -> int:
    return -(-length // BLOCK_SIZE)


class Picker:
    """Chooses blocks to request, rarest first unless switched to sequential."""

    def __init__(self, piece_len: int, last_piece_len: int, have: Sequence[bool],
                 priorities: Optional[Sequence[int]] = None):
        self._have = [bool(h) for h in have]
        count = len(self._have)
        self._scale = piece_len // BLOCK_SIZE
        self._last_piece = max(count - 1, 0)
        self._last_piece_scale = _blocks_in(last_piece_len)
        self.seeders = 0
        self._downloading: Dict[Block, _Request] = {}
        complete = all(self._have)
        self._blocks: List[_Progress] = [] if complete else [_Progress() for _ in range(count)]
        self._stalled: Set[Block] = set()
        # True marks a piece that has been fully picked (or is already held).
        self._unpicked: List[bool] = list(self._have)
        self._picker: Union[RarestPicker, SequentialPicker] = RarestPicker(self._have)
        self._priorities: List[int] = [DEFAULT_PRIORITY] * count
        self.set_priorities(self._priorities if priorities is None else priorities)

    @property
    def piece_count(self) -> int:
        return len(self._have)

    def is_sequential(self) -> bool:
        """True if pieces are currently picked in order."""
        return isinstance(self._picker, SequentialPicker)

    def done(self) -> None:
        """Release download bookkeeping once the torrent is complete."""
        self._downloading = {}
        self._blocks = []
        self._stalled = set()

    def tick(self) -> None:
        """Mark requests that have waited past their deadline as stalled."""
        now = time.monotonic()
        expired = 0
        for block, req in self._downloading.items():
            deadline = REQ_TIMEOUT + (DEFAULT_PRIORITY - self._priorities[block.index])
            if now - req.requested_at >= deadline and block not in self._stalled:
                expired += 1
                self._stalled.add(block)
        if expired:
            log.debug("Expired %d chunks!", expired)
        if self._downloading:
            log.debug("Unpicked: %d/%d, Downloading: %d", sum(self._unpicked),
                      len(self._unpicked), len(self._downloading))

    def _is_last_block(self, piece: int, amount: int) -> bool:
        return amount == self._scale or (piece == self._last_piece
                                         and amount == self._last_piece_scale)

    def pick(self, peer) -> Optional[Block]:
        """Select a block to request from the peer, or None."""
        for block in sorted(self._stalled):
            req = self._downloading.get(block)
            if req is None or block.index not in peer.pieces or req.has_peer(peer.id):
                continue
            self._stalled.discard(block)
            req.force_rereq(peer.id, peer.rank)
            return block

        piece = self._picker.pick(peer)
        if piece is not None:
            return self._pick_piece(piece, peer.id, peer.rank)
        return self._pick_dl(peer)

    def _pick_piece(self, piece: int, peer_id: int, rank: int) -> Block:
        progress = self._blocks[piece]
        progress.requested += 1
        amount = progress.requested
        if self._is_last_block(piece, amount):
            self._picker.completed(piece)
            self._unpicked[piece] = True
        block = Block(piece, (amount - 1) * BLOCK_SIZE)
        self._downloading[block] = _Request(peers=[peer_id], rank=rank)
        return block

    def _pick_dl(self, peer) -> Optional[Block]:
        candidates = ((block, req) for block, req in self._downloading.items()
                      if len(req.peers) < MAX_DUP_REQS and not req.has_peer(peer.id))
        best = None
        for block, req in itertools.islice(candidates, MAX_DL_REREQ):
            if best is None or len(req.peers) < len(best[1].peers):
                best = (block, req)
        if best is None:
            return None
        block, req = best
        req.rereq(peer.id, peer.rank)
        return block

    def completed(self, block: Block,
                  cancel: Optional[Callable[[int], None]] = None) -> bool:
        """Record a received block and return whether its piece is now whole.

        Every peer the block was requested from is passed to cancel. Raises
        KeyError if the block was never requested.
        """
        self._stalled.discard(block)
        req = self._downloading.pop(block, None)
        if req is None:
            raise KeyError(f"block {block} was not requested")
        if cancel is not None:
            for peer in req.peers:
                cancel(peer)
        progress = self._blocks[block.index]
        progress.completed += 1
        return self._is_last_block(block.index, progress.completed)

    def have_block(self, block: Block) -> bool:
        """True unless the block is still being downloaded."""
        return block not in self._downloading

    def invalidate_piece(self, index: int) -> None:
        """Make a piece that failed verification downloadable again."""
        self._picker.incomplete(index)
        if not self._blocks:
            self._blocks = [_Progress() for _ in range(len(self._priorities))]
        self._blocks[index] = _Progress()
        self._unpicked[index] = False

    def piece_available(self, index: int) -> None:
        """A connected peer announced that it now holds a piece."""
        if isinstance(self._picker, RarestPicker):
            self._picker.piece_available(index)

    def _peer_complete(self, peer) -> bool:
        return all(i in peer.pieces for i in range(self.piece_count))

    def add_peer(self, peer) -> None:
        if self._peer_complete(peer):
            self.seeders += 1
        elif isinstance(self._picker, RarestPicker):
            self._picker.add_peer(peer)

    def remove_peer(self, peer) -> None:
        # A peer may have joined as a leecher and become a seeder since.
        if self._peer_complete(peer) and self.seeders > 0:
            self.seeders -= 1
        elif isinstance(self._picker, RarestPicker):
            self._picker.remove_peer(peer)
        for req in self._downloading.values():
            if peer.id in req.peers:
                req.peers.remove(peer.id)

    def change_picker(self, sequential: bool) -> None:
        """Switch between sequential and rarest-first picking.

        After switching to rarest first, peers must be added again.
        """
        if sequential:
            self._picker = SequentialPicker(self._unpicked)
        else:
            self._picker = RarestPicker(self._unpicked)

    def set_priorities(self, priorities: Sequence[int]) -> None:
        """Replace the per-piece priorities."""
        priorities = list(priorities)
        if len(priorities) != self.piece_count:
            raise ValueError(
                f"expected {self.piece_count} piece priorities, got {len(priorities)}")
        self.unapply_priorities()
        self._priorities = priorities
        self.apply_priorities()

    def apply_priorities(self) -> None:
        if self.is_sequential():
            self._picker = SequentialPicker(self._unpicked, self._priorities)
            return
        for piece, priority in enumerate(self._priorities):
            for _ in range(priority):
                self._picker.piece_unavailable(piece)
            if priority == 0 and not self._unpicked[piece]:
                self._picker.completed(piece)

    def unapply_priorities(self) -> None:
        if self.is_sequential():
            return
        for piece, priority in enumerate(self._priorities):
            for _ in range(priority):
                self._picker.piece_available(piece)
            if priority == 0 and not self._unpicked[piece]:
                self._picker.incomplete(piece)