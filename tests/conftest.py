from __future__ import annotations

import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)

from trading.ladder.config import LadderConfig, PaperSettings
from trading.ladder.engine import LadderEngine
from trading.ladder.rules import parse_ruleset
from trading.ladder.sizing import MarketConstraints


class FakeMarket:
    """Stands in for SpotExchangeClient: fixed prices, recorded orders."""

    def __init__(self, prices: Optional[Dict[str, float]] = None):
        self.prices: Dict[str, float] = dict(prices or {})
        self.closes: Dict[str, List[float]] = {}
        self.constraints: Dict[str, MarketConstraints] = {}
        self.fail_price: set = set()
        self.orders: List[tuple] = []
        self.order_result: Optional[dict] = None
        self.order_error: Optional[Exception] = None
        self.closes_requests = 0

    def get_current_price(self, symbol: str) -> float:
        if symbol in self.fail_price:
            raise ConnectionError(f"ticker unavailable for {symbol}")
        return self.prices[symbol]

    def get_recent_closes(self, symbol: str, timeframe: str = "1m", count: int = 50) -> List[float]:
        self.closes_requests += 1
        return list(self.closes.get(symbol, []))

    def get_market_constraints(self, symbol: str) -> MarketConstraints:
        if symbol in self.constraints:
            return self.constraints[symbol]
        base, _, quote = symbol.partition("/")
        return MarketConstraints(base=base, quote=quote)

    def execute_buy(self, symbol, quote_amount=None, base_amount=None):
        self.orders.append(("buy", symbol, quote_amount, base_amount))
        if self.order_error is not None:
            raise self.order_error
        return self.order_result

    def execute_sell(self, symbol, base_amount):
        self.orders.append(("sell", symbol, None, base_amount))
        if self.order_error is not None:
            raise self.order_error
        return self.order_result


@pytest.fixture
def market() -> FakeMarket:
    return FakeMarket({"SOL/USDT": 100.0, "BTC/USDT": 60000.0})


@pytest.fixture
def make_engine(tmp_path, market):
    """Build an engine over ``market`` with a throwaway state file."""

    def _make(coins: Dict[str, list], fee_pct: float = 0.1, slippage_bps: float = 0.0,
              starting_quote: float = 10000.0, live: bool = False,
              prune_closed_lots: bool = False) -> LadderEngine:
        cfg = LadderConfig(
            coins={sym: parse_ruleset(steps) for sym, steps in coins.items()},
            live=live,
            state_path=tmp_path / "state.json",
            prune_closed_lots=prune_closed_lots,
            paper=PaperSettings(fee_pct=fee_pct, slippage_bps=slippage_bps,
                                starting_quote=starting_quote),
        )
        return LadderEngine(cfg, market, notify=lambda msg: None)

    return _make
