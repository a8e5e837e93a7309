"""
Pure position arithmetic for the ranking engine.

Everything here works on plain ``{entrant_id: position}`` mappings so the
engine can plan a whole event in memory and persist it with one bulk write.
"""

from collections import Counter
from typing import Dict, Iterable, List, Sequence, Tuple

Move = Tuple[str, int]  # (entrant_id, positions to jump)


def promotion_target(position: int, jump: int) -> int:
    """New position after jumping ``jump`` places toward the front, clamped at 1."""
    if jump <= 0:
        return position
    return max(1, position - jump)


def window_bounds(movers: Sequence[Tuple[int, int]]) -> Tuple[int, int]:
    """
    Closed position range that has to be loaded to plan ``movers``.

    ``movers`` is a list of (current position, jump). A later mover may be
    pushed back one slot by an earlier one, so the window is widened by one
    on both ends.
    """
    lo = min(position - max(jump, 0) - 1 for position, jump in movers)
    hi = max(position + 1 for position, _ in movers)
    return max(1, lo), hi


def plan_moves(
    window: Dict[str, int], moves: Sequence[Move]
) -> Tuple[Dict[str, int], List[Tuple[str, int, int]]]:
    """
    Apply promotions in order over a window of live positions.

    For each mover going from ``old`` to ``new`` every other entrant with
    ``new <= position < old`` moves back one slot. Later moves see the state
    left by earlier ones.

    Returns the new position of every entrant whose position changed, and
    ``(mover_id, position_before_event, position_after_event)`` per mover.
    """
    current = dict(window)
    for mover_id, jump in moves:
        old = current[mover_id]
        new = promotion_target(old, jump)
        if new >= old:
            continue
        for entrant_id, position in current.items():
            if entrant_id != mover_id and new <= position < old:
                current[entrant_id] = position + 1
        current[mover_id] = new

    changed = {eid: pos for eid, pos in current.items() if pos != window[eid]}
    movers = [(mover_id, window[mover_id], current[mover_id]) for mover_id, _ in moves]
    return changed, movers


def dense_ranks(ordered_ids: Iterable[str]) -> Dict[str, int]:
    return {entrant_id: rank for rank, entrant_id in enumerate(ordered_ids, start=1)}


def duplicate_positions(positions: Iterable[int]) -> List[int]:
    return sorted(pos for pos, count in Counter(positions).items() if count > 1)


def is_dense(positions: Iterable[int]) -> bool:
    """True when ``positions`` is exactly {1..N} with no repeats."""
    ordered = sorted(positions)
    return ordered == list(range(1, len(ordered) + 1))
