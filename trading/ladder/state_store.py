"""Durable engine state: lots, fire counts, paper wallet, PnL and trade log.

The snapshot is a single JSON document rewritten atomically (temp file,
fsync, ``os.replace``) after every state-mutating action.
"""
import json
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .lots import Lot

logger = logging.getLogger(__name__)

DEFAULT_STARTING_QUOTE = 10000.0
DEFAULT_QUOTE_ASSET = "USDT"


class StatePersistenceError(RuntimeError):
    """The state snapshot could not be read or written. Never swallowed."""


@dataclass
class Trade:
    timestamp: int
    side: str
    symbol: str
    price: float
    base_qty: float
    quote_qty: float
    fee_quote: float
    step_id: str
    lot_ref: Optional[str] = None
    lot_id: Optional[str] = None
    live: bool = False

    def to_dict(self) -> dict:
        d = {
            "timestamp": self.timestamp,
            "side": self.side,
            "symbol": self.symbol,
            "price": self.price,
            "baseQty": self.base_qty,
            "quoteQty": self.quote_qty,
            "feeQuote": self.fee_quote,
            "stepId": self.step_id,
        }
        if self.lot_ref is not None:
            d["lotRef"] = self.lot_ref
        if self.lot_id is not None:
            d["lotId"] = self.lot_id
        if self.live:
            d["live"] = True
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "Trade":
        return cls(
            timestamp=int(d.get("timestamp", d.get("ts", 0)) or 0),
            side=d.get("side", ""),
            symbol=d.get("symbol", ""),
            price=float(d.get("price", 0) or 0),
            base_qty=float(d.get("baseQty", 0) or 0),
            quote_qty=float(d.get("quoteQty", 0) or 0),
            fee_quote=float(d.get("feeQuote", 0) or 0),
            step_id=d.get("stepId", ""),
            lot_ref=d.get("lotRef"),
            lot_id=d.get("lotId"),
            live=bool(d.get("live", False)),
        )


@dataclass
class EngineState:
    lots: List[Lot] = field(default_factory=list)
    steps_fired: Dict[str, int] = field(default_factory=dict)
    balances: Dict[str, float] = field(default_factory=dict)
    realized_pnl: float = 0.0
    trades: List[Trade] = field(default_factory=list)

    def balance(self, asset: str) -> float:
        return float(self.balances.get(asset, 0.0))

    def ensure_asset(self, asset: str) -> None:
        if self.balances.get(asset) is None:
            self.balances[asset] = 0.0

    def to_dict(self) -> dict:
        return {
            "lots": [l.to_dict() for l in self.lots],
            "stepsFired": dict(self.steps_fired),
            "balances": dict(self.balances),
            "realizedPnlUSDT": self.realized_pnl,
            "trades": [t.to_dict() for t in self.trades],
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any], starting_balances: Dict[str, float]) -> "EngineState":
        """Build state from a snapshot, defaulting any missing top-level field."""
        balances = d.get("balances")
        if not isinstance(balances, dict):
            balances = dict(starting_balances)
        pnl = d.get("realizedPnlUSDT")
        if not isinstance(pnl, (int, float)) or isinstance(pnl, bool):
            pnl = 0.0
        lots = d.get("lots") if isinstance(d.get("lots"), list) else []
        trades = d.get("trades") if isinstance(d.get("trades"), list) else []
        fired = d.get("stepsFired") if isinstance(d.get("stepsFired"), dict) else {}
        return cls(
            lots=[Lot.from_dict(l) for l in lots],
            steps_fired={str(k): int(v) for k, v in fired.items()},
            balances={str(k): float(v) for k, v in balances.items()},
            realized_pnl=float(pnl),
            trades=[Trade.from_dict(t) for t in trades],
        )


class StateStore:
    """JSON-file persistence for :class:`EngineState`."""

    def __init__(
        self,
        path: Path,
        starting_quote: float = DEFAULT_STARTING_QUOTE,
        quote_asset: str = DEFAULT_QUOTE_ASSET,
    ):
        self.path = Path(path)
        self.starting_quote = float(starting_quote)
        self.quote_asset = quote_asset

    def starting_balances(self) -> Dict[str, float]:
        return {self.quote_asset: self.starting_quote}

    def initial_state(self) -> EngineState:
        return EngineState(balances=self.starting_balances())

    def load(self) -> EngineState:
        """Read the snapshot, creating a fresh one when none exists."""
        if not self.path.exists():
            state = self.initial_state()
            self.save(state)
            return state
        try:
            data = self.path.read_bytes()
        except OSError as e:
            raise StatePersistenceError(f"cannot read {self.path}: {e}") from e
        try:
            # UnicodeDecodeError and JSONDecodeError are both ValueErrors
            raw = json.loads(data.decode("utf-8"))
            if not isinstance(raw, dict):
                raise ValueError("state root is not an object")
            return EngineState.from_dict(raw, self.starting_balances())
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            return self._quarantine(e)

    def _quarantine(self, reason: Exception) -> EngineState:
        """Move an unreadable snapshot aside and start from a fresh one."""
        corrupt = self.path.with_name(f"{self.path.name}.corrupt-{int(time.time())}")
        logger.error("State file %s unreadable (%s), moved to %s and reinitialized",
                     self.path, reason, corrupt.name)
        try:
            os.replace(self.path, corrupt)
        except OSError as e:
            raise StatePersistenceError(f"cannot move aside {self.path}: {e}") from e
        state = self.initial_state()
        self.save(state)
        return state

    def save(self, state: EngineState) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(state.to_dict(), handle, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StatePersistenceError(f"cannot write {self.path}: {e}") from e
        logger.debug("[STATE] Saved state: balances=%s lots=%d trades=%d pnl=%.6f",
                     state.balances, len(state.lots), len(state.trades), state.realized_pnl)

    def reset(self) -> EngineState:
        state = self.initial_state()
        self.save(state)
        logger.info("[STATE] Reset to %s %.2f", self.quote_asset, self.starting_quote)
        return state
