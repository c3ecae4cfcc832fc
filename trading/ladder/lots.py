"""Lot ledger: open position lots, candidate selection and PnL realization."""
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import List

from .rules import EntryMatch, MatchOrder, Selector

logger = logging.getLogger(__name__)

QUOTE_DECIMALS = 6
BASE_DECIMALS = 8
DUST_BASE = 1e-8


def round_quote(x: float) -> float:
    return round(float(x), QUOTE_DECIMALS)


def round_base(x: float) -> float:
    return round(float(x), BASE_DECIMALS)


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Lot:
    symbol: str
    entry_step_id: str
    entry_price: float
    base_qty: float
    remaining_base_qty: float
    remaining_cost_quote: float
    entry_ts: int = field(default_factory=now_ms)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def is_open(self) -> bool:
        return self.remaining_base_qty > 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "entryStepId": self.entry_step_id,
            "entryPrice": self.entry_price,
            "entryTimestamp": self.entry_ts,
            "baseQty": self.base_qty,
            "remainingBaseQty": self.remaining_base_qty,
            "remainingCostQuote": self.remaining_cost_quote,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Lot":
        base_qty = float(d.get("baseQty", 0) or 0)
        return cls(
            id=str(d.get("id") or uuid.uuid4()),
            symbol=d["symbol"],
            entry_step_id=d.get("entryStepId", ""),
            entry_price=float(d.get("entryPrice", 0) or 0),
            # older snapshots used "entryTs"
            entry_ts=int(d.get("entryTimestamp", d.get("entryTs", 0)) or 0),
            base_qty=base_qty,
            remaining_base_qty=float(d.get("remainingBaseQty", base_qty) or 0),
            remaining_cost_quote=float(d.get("remainingCostQuote", 0) or 0),
        )


def select_lots(lots: List[Lot], symbol: str, selector: Selector) -> List[Lot]:
    """Open lots for ``symbol`` in the order a sell rule should consume them.

    ``lots`` is in creation order; ties on timestamp keep that order for FIFO
    and reverse it for LIFO.
    """
    open_lots = [l for l in lots if l.symbol == symbol and l.is_open]
    if not open_lots:
        return []

    if isinstance(selector, EntryMatch):
        return [l for l in open_lots if l.entry_step_id == selector.entry_id]

    fifo = sorted(open_lots, key=lambda l: l.entry_ts)
    if selector is MatchOrder.LIFO:
        return list(reversed(fifo))
    return fifo


def realize_lot_pnl(lot: Lot, sold_base: float, net_proceeds_quote: float) -> float:
    """Consume ``sold_base`` from ``lot`` and return the realized PnL delta.

    The cost basis attributed to the sale is the sold fraction of the lot's
    remaining cost. A remainder below ``DUST_BASE`` closes the lot.
    """
    rem_base = lot.remaining_base_qty
    if rem_base <= 0:
        return 0.0

    f = min(1.0, sold_base / rem_base)
    attributed_cost = lot.remaining_cost_quote * f
    pnl = net_proceeds_quote - attributed_cost

    lot.remaining_cost_quote = round_quote(lot.remaining_cost_quote * (1 - f))
    lot.remaining_base_qty = round_base(max(0.0, rem_base - sold_base))
    if lot.remaining_base_qty < DUST_BASE:
        lot.remaining_base_qty = 0.0
        lot.remaining_cost_quote = 0.0
    return pnl


def append_lot(lots: List[Lot], lot: Lot) -> None:
    lots.append(lot)


def prune_closed_lots(lots: List[Lot]) -> int:
    """Drop fully consumed lots in place. Returns how many were removed."""
    before = len(lots)
    lots[:] = [l for l in lots if l.is_open]
    removed = before - len(lots)
    if removed:
        logger.debug("Pruned %d closed lot(s)", removed)
    return removed
