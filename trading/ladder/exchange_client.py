"""CCXT-backed market collaborator for the ladder engine.

Supplies prices, recent closes and market constraints, and submits market
orders in live mode. The engine only talks to the exchange through this
class, so tests substitute a plain fake with the same methods.
"""
import logging
import os
import time
from typing import Any, Dict, List, Optional

import ccxt

from .sizing import DEFAULT_AMOUNT_DECIMALS, MarketConstraints

logger = logging.getLogger(__name__)

_TERMINAL_STATUSES = ("closed", "filled", "canceled", "cancelled", "rejected", "expired")


class SpotExchangeClient:
    """Spot market access wrapping a CCXT exchange instance."""

    def __init__(self):
        self.exchange: Optional[ccxt.Exchange] = None
        self.exchange_name: str = ""
        self._markets_loaded: bool = False

    # ── connection ──────────────────────────────────────────────

    def connect(self, exchange_name: str = "binance", config: Optional[Dict[str, Any]] = None,
                testnet: bool = False) -> None:
        """Initialize the CCXT exchange instance.

        Args:
            exchange_name: CCXT exchange id (e.g. 'binance').
            config: Optional dict with 'apiKey', 'secret' and extra CCXT options.
                    Credentials default to the API_KEY / API_SECRET env vars.
            testnet: Switch the exchange into sandbox mode.
        """
        self.exchange_name = exchange_name.lower()
        config = config or {}

        exchange_class = getattr(ccxt, self.exchange_name, None)
        if exchange_class is None:
            raise ValueError(f"Unknown exchange: {self.exchange_name}")

        api_key = config.get("apiKey") or os.environ.get("API_KEY", "")
        secret = config.get("secret") or os.environ.get("API_SECRET", "")

        params: Dict[str, Any] = {
            "enableRateLimit": True,
            "options": {"defaultType": "spot", **config.get("options", {})},
        }
        if api_key:
            params["apiKey"] = api_key
            params["secret"] = secret
        for k, v in config.items():
            if k not in ("apiKey", "secret", "options"):
                params[k] = v

        self.exchange = exchange_class(params)
        if testnet:
            self.exchange.set_sandbox_mode(True)
        self._markets_loaded = False
        logger.info("Connected to %s (authenticated=%s, testnet=%s)",
                    self.exchange_name, bool(api_key), testnet)

    def _ensure_markets(self) -> None:
        if self.exchange is None:
            raise RuntimeError("SpotExchangeClient.connect() has not been called")
        if not self._markets_loaded:
            self.exchange.load_markets()
            self._markets_loaded = True

    # ── market data ─────────────────────────────────────────────

    def get_current_price(self, symbol: str) -> float:
        self._ensure_markets()
        try:
            ticker = self.exchange.fetch_ticker(symbol)
        except Exception as e:
            logger.error("fetch_ticker(%s) failed: %s", symbol, e)
            raise
        price = ticker.get("last") or ticker.get("close")
        if not price:
            raise ValueError(f"No last price for {symbol}")
        return float(price)

    def fetch_ohlcv(self, symbol: str, timeframe: str = "1m", limit: int = 50) -> List[list]:
        """OHLCV candles as [timestamp, O, H, L, C, V] rows, oldest first."""
        self._ensure_markets()
        try:
            return self.exchange.fetch_ohlcv(symbol, timeframe, limit=limit)
        except Exception as e:
            logger.error("fetch_ohlcv(%s, %s) failed: %s", symbol, timeframe, e)
            raise

    def get_recent_closes(self, symbol: str, timeframe: str = "1m", count: int = 50) -> List[float]:
        return [float(c[4]) for c in self.fetch_ohlcv(symbol, timeframe, count)]

    def get_market_constraints(self, symbol: str) -> MarketConstraints:
        self._ensure_markets()
        market = self.exchange.market(symbol)
        precision = market.get("precision") or {}
        limits = market.get("limits") or {}

        amount_precision = precision.get("amount")
        if amount_precision is None:
            step = 10 ** -DEFAULT_AMOUNT_DECIMALS
        elif self.exchange.precisionMode == ccxt.TICK_SIZE:
            step = float(amount_precision)
        else:
            step = 10 ** -int(amount_precision)

        base, _, quote = symbol.partition("/")
        return MarketConstraints(
            base=market.get("base") or base,
            quote=market.get("quote") or quote,
            base_step=step,
            min_base_amount=float((limits.get("amount") or {}).get("min") or 0),
            min_quote_notional=float((limits.get("cost") or {}).get("min") or 0),
        )

    # ── order management ────────────────────────────────────────

    def execute_buy(self, symbol: str, quote_amount: Optional[float] = None,
                    base_amount: Optional[float] = None) -> Dict[str, Any]:
        """Market buy by quote spend or by base quantity. Returns the parsed fill."""
        self._ensure_markets()
        if quote_amount is not None:
            logger.info("MARKET BUY %s quote=%.8f", symbol, quote_amount)
            if self.exchange.has.get("createMarketBuyOrderWithCost"):
                order = self.exchange.create_market_buy_order_with_cost(symbol, quote_amount)
            else:
                order = self.exchange.create_order(
                    symbol, "market", "buy", None, None, {"quoteOrderQty": float(quote_amount)})
        elif base_amount is not None:
            logger.info("MARKET BUY %s qty=%.8f", symbol, base_amount)
            order = self.exchange.create_market_buy_order(symbol, base_amount)
        else:
            raise ValueError("execute_buy needs quote_amount or base_amount")
        return self._parse_order(symbol, self._wait_for_fill(symbol, order))

    def execute_sell(self, symbol: str, base_amount: float) -> Dict[str, Any]:
        self._ensure_markets()
        logger.info("MARKET SELL %s qty=%.8f", symbol, base_amount)
        order = self.exchange.create_market_sell_order(symbol, base_amount)
        return self._parse_order(symbol, self._wait_for_fill(symbol, order))

    def _wait_for_fill(self, symbol: str, order: Dict[str, Any], timeout: int = 30) -> Dict[str, Any]:
        """Poll the order until it reaches a terminal status or ``timeout`` seconds pass."""
        order_id = order.get("id")
        if not order_id or order.get("status") in _TERMINAL_STATUSES:
            return order
        deadline = time.time() + timeout
        while time.time() < deadline:
            try:
                latest = self.exchange.fetch_order(order_id, symbol)
                if latest.get("status") in _TERMINAL_STATUSES:
                    return latest
                order = latest
            except Exception as e:
                logger.warning("Error polling order %s: %s", order_id, e)
            time.sleep(1)
        logger.warning("Order %s did not fill within %ds", order_id, timeout)
        return order

    def _parse_order(self, symbol: str, order: Dict[str, Any]) -> Dict[str, Any]:
        """Reduce a CCXT order to {order_id, price, qty, cost, fee}; missing values are None."""
        quote = symbol.partition("/")[2]
        fee = None
        fee_info = order.get("fee") or {}
        if fee_info.get("cost") is not None and fee_info.get("currency") in (None, quote):
            fee = float(fee_info["cost"])
        price = order.get("average") or order.get("price")
        return {
            "order_id": order.get("id"),
            "price": float(price) if price else None,
            "qty": float(order["filled"]) if order.get("filled") else None,
            "cost": float(order["cost"]) if order.get("cost") else None,
            "fee": fee,
        }
