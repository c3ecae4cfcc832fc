"""Order sizing and market-precision normalization.

All rounding of order quantities is truncation toward zero so an order is
never larger than what was sized for.
"""
import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Tuple

from .lots import Lot, round_quote
from .rules import (
    Amount, BaseAmount, ConfigurationError, LotPercentAmount, LotQuoteAmount,
    QuoteAmount,
)

logger = logging.getLogger(__name__)

DEFAULT_AMOUNT_DECIMALS = 8

# Guards floor() against float artifacts such as 0.3 / 0.1 == 2.9999999999999996
_FLOOR_EPSILON = 1e-9


@dataclass(frozen=True)
class MarketConstraints:
    """Precision and minimums of one spot market.

    ``base_step`` is the smallest tradable increment of the base asset
    (e.g. 0.001). Minimums of 0 mean "no limit".
    """
    base: str
    quote: str
    base_step: float = 10 ** -DEFAULT_AMOUNT_DECIMALS
    min_base_amount: float = 0.0
    min_quote_notional: float = 0.0

    @property
    def step_decimals(self) -> int:
        exponent = Decimal(str(self.base_step)).normalize().as_tuple().exponent
        return max(0, -int(exponent))


def normalize_base_amount(market: MarketConstraints, base_amt: float) -> float:
    """Truncate ``base_amt`` to the market step; 0 if below the market minimum."""
    step = market.base_step
    if base_amt <= 0 or step <= 0:
        return 0.0
    # exact multiple of the step, never above base_amt
    units = math.floor(base_amt / step + _FLOOR_EPSILON)
    rounded = float(Decimal(units) * Decimal(str(step)))
    if rounded <= 0 or (market.min_base_amount and rounded < market.min_base_amount):
        return 0.0
    return rounded


def meets_min_notional(market: MarketConstraints, cost: float) -> bool:
    if not market.min_quote_notional:
        return True
    return cost >= market.min_quote_notional


def size_buy(amount: Amount, fill_price: float, market: MarketConstraints) -> Tuple[float, float]:
    """Return ``(base_qty, cost)`` for a buy at ``fill_price``.

    ``(0, 0)`` means the order is below the market minimums.
    """
    if isinstance(amount, QuoteAmount):
        base_amt = amount.value / fill_price
    elif isinstance(amount, BaseAmount):
        base_amt = amount.value
    else:
        raise ConfigurationError(f"Unsupported buy amount: {amount}")

    base_amt = normalize_base_amount(market, base_amt)
    cost = round_quote(base_amt * fill_price)
    if base_amt <= 0 or not meets_min_notional(market, cost):
        return 0.0, cost
    return base_amt, cost


def base_qty_from_sell_amount(amount: Amount, lot: Lot, price: float) -> float:
    """Raw (un-normalized) base quantity a sell rule wants from ``lot``."""
    rem_base = lot.remaining_base_qty

    if isinstance(amount, LotPercentAmount):
        pct = max(0.0, min(100.0, amount.value))
        return rem_base * pct / 100

    if isinstance(amount, LotQuoteAmount):
        if amount.value <= 0 or price <= 0:
            return 0.0
        return min(amount.value / price, rem_base)

    if isinstance(amount, BaseAmount):
        return min(max(0.0, amount.value), rem_base)

    raise ConfigurationError(f"Unsupported sell amount: {amount}")


def size_sell(
    amount: Amount, lot: Lot, fill_price: float, market: MarketConstraints
) -> Tuple[float, Optional[float]]:
    """Return ``(base_qty, gross_quote)``; base_qty 0 means skip."""
    raw = base_qty_from_sell_amount(amount, lot, fill_price)
    if raw <= 0:
        return 0.0, None
    base_amt = normalize_base_amount(market, raw)
    gross = round_quote(base_amt * fill_price)
    if base_amt <= 0 or not meets_min_notional(market, gross):
        return 0.0, gross
    return base_amt, gross
