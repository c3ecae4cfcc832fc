"""Order execution: deterministic paper fills and live fills via the exchange.

Both executors produce a :class:`Fill`; ``apply_buy_fill`` and
``apply_sell_fill`` turn a fill into ledger effects (new lot, realized PnL,
trade record) the same way for paper and live mode.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .lots import Lot, append_lot, now_ms, realize_lot_pnl, round_base, round_quote
from .rules import QuoteAmount, Rule
from .sizing import MarketConstraints
from .state_store import EngineState, Trade

logger = logging.getLogger(__name__)

DEFAULT_FEE_PCT = 0.1       # percent of gross notional
DEFAULT_SLIPPAGE_BPS = 2.0  # basis points

# Paper sells tolerate float residue on the base balance check
_BALANCE_TOLERANCE = 1e-12


class InsufficientBalance(Exception):
    """Paper wallet cannot cover an action; the action is skipped."""


class OrderFailed(Exception):
    """Live order submission failed or reported nothing usable."""


@dataclass
class Fill:
    side: str
    price: float
    base_qty: float
    gross_quote: float
    fee_quote: float
    live: bool = False
    order_id: Optional[str] = None

    @property
    def net_quote(self) -> float:
        if self.side == "buy":
            return round_quote(self.gross_quote + self.fee_quote)
        return round_quote(self.gross_quote - self.fee_quote)


class PaperExecutor:
    """Simulated fills: fixed slippage against the mid price, fee in quote."""

    live = False

    def __init__(self, fee_pct: float = DEFAULT_FEE_PCT, slippage_bps: float = DEFAULT_SLIPPAGE_BPS):
        self.fee_pct = float(fee_pct)
        self.slippage_bps = float(slippage_bps)

    @property
    def slippage_fraction(self) -> float:
        return self.slippage_bps / 10000

    def fill_price(self, mid: float, side: str) -> float:
        if side == "buy":
            return mid * (1 + self.slippage_fraction)
        if side == "sell":
            return mid * (1 - self.slippage_fraction)
        return mid

    def fee(self, gross_quote: float) -> float:
        return round_quote(gross_quote * self.fee_pct / 100)

    def buy(self, state: EngineState, symbol: str, rule: Rule, market: MarketConstraints,
            base_qty: float, cost: float, fill_price: float, mid: float) -> Fill:
        fee = self.fee(cost)
        spend = round_quote(cost + fee)
        if state.balance(market.quote) < spend:
            raise InsufficientBalance(
                f"not enough {market.quote}: need={spend} bal={state.balance(market.quote)}")
        state.ensure_asset(market.quote)
        state.ensure_asset(market.base)

        state.balances[market.quote] = round_quote(state.balance(market.quote) - spend)
        state.balances[market.base] = round_base(state.balance(market.base) + base_qty)
        return Fill(side="buy", price=fill_price, base_qty=base_qty, gross_quote=cost, fee_quote=fee)

    def sell(self, state: EngineState, symbol: str, rule: Rule, market: MarketConstraints,
             base_qty: float, gross: float, fill_price: float, mid: float) -> Fill:
        if state.balance(market.base) + _BALANCE_TOLERANCE < base_qty:
            raise InsufficientBalance(
                f"not enough {market.base}: need={base_qty} bal={state.balance(market.base)}")
        state.ensure_asset(market.quote)
        state.ensure_asset(market.base)

        fee = self.fee(gross)
        net = round_quote(gross - fee)
        state.balances[market.base] = round_base(max(0.0, state.balance(market.base) - base_qty))
        state.balances[market.quote] = round_quote(state.balance(market.quote) + net)
        return Fill(side="sell", price=fill_price, base_qty=base_qty, gross_quote=gross, fee_quote=fee)


class LiveExecutor:
    """Real market orders through the exchange client.

    The exchange's reported fill wins; when a field is missing the sized
    values are used instead, which is only an approximation of what the
    exchange actually did.
    """

    live = True

    def __init__(self, client):
        self.client = client

    def fill_price(self, mid: float, side: str) -> float:
        return mid

    def buy(self, state: EngineState, symbol: str, rule: Rule, market: MarketConstraints,
            base_qty: float, cost: float, fill_price: float, mid: float) -> Fill:
        try:
            if isinstance(rule.amount, QuoteAmount):
                logger.info("[BUY] %s step=%s price~%s quote=%s ...", symbol, rule.id, mid, rule.amount.value)
                order = self.client.execute_buy(symbol, quote_amount=rule.amount.value)
            else:
                logger.info("[BUY] %s step=%s price~%s base=%s ...", symbol, rule.id, mid, base_qty)
                order = self.client.execute_buy(symbol, base_amount=base_qty)
        except Exception as e:
            raise OrderFailed(str(e)) from e
        return self._to_fill("buy", order, base_qty, mid)

    def sell(self, state: EngineState, symbol: str, rule: Rule, market: MarketConstraints,
             base_qty: float, gross: float, fill_price: float, mid: float) -> Fill:
        logger.info("[SELL] %s step=%s price~%s base=%s ...", symbol, rule.id, mid, base_qty)
        try:
            order = self.client.execute_sell(symbol, base_qty)
        except Exception as e:
            raise OrderFailed(str(e)) from e
        return self._to_fill("sell", order, base_qty, mid)

    @staticmethod
    def _to_fill(side: str, order: Optional[Dict[str, Any]], base_qty: float, mid: float) -> Fill:
        if order is None:
            raise OrderFailed(f"{side} order returned no result")
        filled = float(order.get("qty") or 0) or base_qty
        price = float(order.get("price") or 0) or mid
        cost = order.get("cost")
        gross = round_quote(float(cost)) if cost is not None else round_quote(filled * price)
        fee = round_quote(float(order.get("fee") or 0))
        return Fill(side=side, price=price, base_qty=round_base(filled), gross_quote=gross,
                    fee_quote=fee, live=True, order_id=order.get("order_id"))


def apply_buy_fill(state: EngineState, symbol: str, rule: Rule, fill: Fill) -> Lot:
    """Open a lot for ``fill``; the fee is part of the lot's cost basis."""
    ts = now_ms()
    lot = Lot(
        symbol=symbol,
        entry_step_id=rule.id,
        entry_price=fill.price,
        entry_ts=ts,
        base_qty=fill.base_qty,
        remaining_base_qty=fill.base_qty,
        remaining_cost_quote=fill.net_quote,
    )
    append_lot(state.lots, lot)
    state.trades.append(Trade(
        timestamp=ts, side="buy", symbol=symbol, price=fill.price,
        base_qty=fill.base_qty, quote_qty=fill.gross_quote, fee_quote=fill.fee_quote,
        step_id=rule.id, lot_id=lot.id, live=fill.live,
    ))
    return lot


def apply_sell_fill(state: EngineState, symbol: str, rule: Rule, lot: Lot, fill: Fill) -> float:
    """Realize PnL on ``lot`` for ``fill`` and log the trade. Returns the PnL delta."""
    pnl = realize_lot_pnl(lot, fill.base_qty, fill.net_quote)
    state.realized_pnl = round_quote(state.realized_pnl + pnl)
    state.trades.append(Trade(
        timestamp=now_ms(), side="sell", symbol=symbol, price=fill.price,
        base_qty=fill.base_qty, quote_qty=fill.gross_quote, fee_quote=fill.fee_quote,
        step_id=rule.id, lot_ref=lot.entry_step_id, lot_id=lot.id, live=fill.live,
    ))
    return pnl
