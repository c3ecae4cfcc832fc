from __future__ import annotations

import pytest

from trading.ladder.execution import (
    Fill, InsufficientBalance, LiveExecutor, OrderFailed, PaperExecutor,
    apply_buy_fill, apply_sell_fill,
)
from trading.ladder.rules import parse_rule
from trading.ladder.sizing import MarketConstraints
from trading.ladder.state_store import EngineState

SOL = MarketConstraints(base="SOL", quote="USDT")

BUY = parse_rule({"id": "sol_buy", "side": "buy", "trigger": {"type": "price", "op": "lte", "value": 200},
                  "amount": {"type": "quote", "value": 100}})
SELL = parse_rule({"id": "sol_sell", "side": "sell", "trigger": {"type": "price", "op": "gte", "value": 1},
                   "amount": {"type": "lot_percent", "value": 50}})


def test_slippage_moves_price_against_the_trader() -> None:
    paper = PaperExecutor(fee_pct=0.1, slippage_bps=20)
    assert paper.slippage_fraction == pytest.approx(0.002)
    assert paper.fill_price(100.0, "buy") == pytest.approx(100.2)
    assert paper.fill_price(100.0, "sell") == pytest.approx(99.8)


def test_paper_buy_conserves_value() -> None:
    paper = PaperExecutor(fee_pct=0.1, slippage_bps=0)
    state = EngineState(balances={"USDT": 1000.0})
    fill = paper.buy(state, "SOL/USDT", BUY, SOL, base_qty=1.0, cost=100.0, fill_price=100.0, mid=100.0)
    assert fill.fee_quote == pytest.approx(0.1)
    assert state.balances["USDT"] == pytest.approx(1000.0 - 100.0 - 0.1)
    assert state.balances["SOL"] == pytest.approx(1.0)


def test_paper_buy_without_funds_mutates_nothing() -> None:
    paper = PaperExecutor()
    state = EngineState(balances={"USDT": 50.0})
    with pytest.raises(InsufficientBalance):
        paper.buy(state, "SOL/USDT", BUY, SOL, base_qty=1.0, cost=100.0, fill_price=100.0, mid=100.0)
    assert state.balances == {"USDT": 50.0}


def test_paper_sell_credits_net_proceeds() -> None:
    paper = PaperExecutor(fee_pct=0.1, slippage_bps=0)
    state = EngineState(balances={"USDT": 0.0, "SOL": 1.0})
    fill = paper.sell(state, "SOL/USDT", SELL, SOL, base_qty=0.5, gross=60.0, fill_price=120.0, mid=120.0)
    assert fill.net_quote == pytest.approx(59.94)
    assert state.balances["SOL"] == pytest.approx(0.5)
    assert state.balances["USDT"] == pytest.approx(59.94)


def test_paper_sell_without_base_mutates_nothing() -> None:
    paper = PaperExecutor()
    state = EngineState(balances={"USDT": 0.0, "SOL": 0.1})
    with pytest.raises(InsufficientBalance):
        paper.sell(state, "SOL/USDT", SELL, SOL, base_qty=0.5, gross=60.0, fill_price=120.0, mid=120.0)
    assert state.balances == {"USDT": 0.0, "SOL": 0.1}


def test_buy_fill_opens_lot_with_fee_in_cost_basis() -> None:
    state = EngineState()
    fill = Fill(side="buy", price=100.0, base_qty=1.0, gross_quote=100.0, fee_quote=0.1)
    lot = apply_buy_fill(state, "SOL/USDT", BUY, fill)
    assert state.lots == [lot]
    assert lot.entry_step_id == "sol_buy"
    assert lot.remaining_cost_quote == pytest.approx(100.1)
    assert lot.remaining_base_qty == lot.base_qty == 1.0
    trade = state.trades[-1]
    assert (trade.side, trade.quote_qty, trade.fee_quote, trade.step_id) == ("buy", 100.0, 0.1, "sol_buy")


def test_sell_fill_realizes_pnl_against_lot() -> None:
    state = EngineState()
    lot = apply_buy_fill(state, "SOL/USDT", BUY,
                         Fill(side="buy", price=120.0, base_qty=1.0, gross_quote=120.0, fee_quote=0.0))
    pnl = apply_sell_fill(state, "SOL/USDT", SELL, lot,
                          Fill(side="sell", price=140.0, base_qty=0.5, gross_quote=70.0, fee_quote=0.0))
    assert pnl == pytest.approx(10.0)
    assert state.realized_pnl == pytest.approx(10.0)
    assert lot.remaining_base_qty == pytest.approx(0.5)
    assert lot.remaining_cost_quote == pytest.approx(60.0)
    assert state.trades[-1].lot_ref == "sol_buy"
    assert state.trades[-1].lot_id == lot.id


class _Client:
    def __init__(self, result=None, error=None):
        self.result, self.error, self.calls = result, error, []

    def execute_buy(self, symbol, quote_amount=None, base_amount=None):
        self.calls.append((symbol, quote_amount, base_amount))
        if self.error:
            raise self.error
        return self.result

    def execute_sell(self, symbol, base_amount):
        self.calls.append((symbol, None, base_amount))
        if self.error:
            raise self.error
        return self.result


def test_live_buy_uses_reported_fill() -> None:
    client = _Client({"order_id": "42", "price": 101.0, "qty": 0.99, "cost": 99.99, "fee": 0.1})
    fill = LiveExecutor(client).buy(EngineState(), "SOL/USDT", BUY, SOL, 1.0, 100.0, 100.0, 100.0)
    assert client.calls == [("SOL/USDT", 100.0, None)]
    assert (fill.price, fill.base_qty, fill.gross_quote, fill.fee_quote) == (101.0, 0.99, 99.99, 0.1)
    assert fill.live and fill.order_id == "42"


def test_live_fill_falls_back_to_sized_values() -> None:
    client = _Client({"order_id": None, "price": None, "qty": None, "cost": None, "fee": None})
    fill = LiveExecutor(client).sell(EngineState(), "SOL/USDT", SELL, SOL, 0.5, 60.0, 120.0, 120.0)
    assert fill.base_qty == 0.5
    assert fill.price == 120.0
    assert fill.gross_quote == pytest.approx(60.0)
    assert fill.fee_quote == 0.0


def test_live_order_errors_become_order_failed() -> None:
    client = _Client(error=RuntimeError("exchange down"))
    with pytest.raises(OrderFailed, match="exchange down"):
        LiveExecutor(client).sell(EngineState(), "SOL/USDT", SELL, SOL, 0.5, 60.0, 120.0, 120.0)
