"""
Cost-basis arithmetic.

apply_signed_fill() is the incremental update used for live fills.
reconstruct_entry_price() rebuilds the average entry of an open position from
the venue's settled-trade history when the venue cannot report it directly.

The reconstruction walks trades newest-first and has to tell three kinds of
trade apart using only the balance before and after each one:

* pure add      - balance moves further in the position's direction and the
                  pre-trade balance already had that direction; the whole
                  trade size counts.
* pure reduce   - the trade points against the position; it never changes the
                  entry price of what remains, so it is skipped.
* inception     - the pre-trade balance was flat or on the other side; only
                  the post-trade balance counts (the part of a reversal that
                  closed the old side is excluded) and the walk stops.

A same-direction trade whose post-trade balance is on the other side belongs
to an earlier, already closed cycle: the walk stops without it.
"""

from __future__ import annotations

from typing import Iterable, List, Tuple

from hypergrid.core.types import PositionState, TradeRecord

SIZE_EPS = 1e-12


def direction(value: float, eps: float = SIZE_EPS) -> int:
    if value > eps:
        return 1
    if value < -eps:
        return -1
    return 0


def apply_signed_fill(state: PositionState, delta: float, price: float) -> PositionState:
    """
    Return the position after a fill of signed size ``delta`` at ``price``.

    costBasis always equals |net_size| * avg_entry_price; both are zero when flat.
    """
    prev = state.net_size
    nxt = prev + delta
    abs_delta = abs(delta)
    abs_prev = abs(prev)

    if abs_delta <= SIZE_EPS:
        return state

    if direction(nxt) == 0:
        return PositionState(net_size=0.0, avg_entry_price=0.0, cost_basis=0.0)

    if direction(prev) == 0 or direction(prev) == direction(delta):
        cost = state.cost_basis + abs_delta * price
        avg = cost / abs(nxt)
        return PositionState(net_size=nxt, avg_entry_price=avg, cost_basis=cost)

    if abs_delta < abs_prev:
        # Closing part of a position leaves its average entry untouched.
        cost = state.cost_basis * (1 - abs_delta / abs_prev)
        return PositionState(net_size=nxt, avg_entry_price=state.avg_entry_price, cost_basis=cost)

    # Reversal: the excess opens a fresh position at the fill price.
    return PositionState(net_size=nxt, avg_entry_price=price, cost_basis=abs(nxt) * price)


def entry_contributions(net_size: float, records: Iterable[TradeRecord]) -> List[Tuple[float, float]]:
    """(size, price) pairs that make up the current position's entry, newest first."""
    current = direction(net_size)
    contributions: List[Tuple[float, float]] = []
    if current == 0:
        return contributions

    for rec in records:
        if direction(rec.signed_amount) != current:
            continue
        if direction(rec.post_balance) != current:
            break
        if direction(rec.pre_balance) == current:
            contributions.append((abs(rec.signed_amount), rec.price))
            continue
        contributions.append((abs(rec.post_balance), rec.price))
        break
    return contributions


def reconstruct_entry_price(net_size: float, records: Iterable[TradeRecord]) -> float:
    """Volume-weighted entry of the open position; 0.0 when nothing contributes."""
    contributions = entry_contributions(net_size, records)
    total_size = sum(size for size, _ in contributions)
    if total_size <= 0:
        return 0.0
    return sum(size * price for size, price in contributions) / total_size
