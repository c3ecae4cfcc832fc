"""Trigger evaluation: pure predicates over the current tick's data."""
import logging
from typing import Optional, Sequence

from .lots import Lot
from .rules import (
    ConfigurationError, LotEntryTrigger, Op, PriceTrigger, ReferenceKind,
    ReferenceTrigger, Rule, Trigger, UnsupportedTrigger,
)

logger = logging.getLogger(__name__)


def compare(op: Op, left: float, right: float) -> bool:
    if op is Op.GTE:
        return left >= right
    if op is Op.LTE:
        return left <= right
    if op is Op.GT:
        return left > right
    if op is Op.LT:
        return left < right
    if op is Op.EQ:
        return left == right
    raise ConfigurationError(f"Unsupported op: {op}")


def _pct_change(price: float, ref: float) -> float:
    return (price - ref) / ref * 100


def trigger_satisfied(
    trigger: Trigger,
    price: float,
    lot: Optional[Lot] = None,
    recent_closes: Optional[Sequence[float]] = None,
) -> bool:
    """Return True when ``trigger`` holds at ``price``.

    Missing context (no lot for a lot-relative trigger, empty close series,
    zero reference) evaluates to False rather than raising.
    """
    if isinstance(trigger, PriceTrigger):
        return compare(trigger.op, price, trigger.value)

    if isinstance(trigger, LotEntryTrigger):
        if lot is None or lot.entry_price <= 0:
            return False
        return compare(trigger.op, _pct_change(price, lot.entry_price), trigger.value)

    if isinstance(trigger, ReferenceTrigger):
        if trigger.kind is ReferenceKind.CUSTOM:
            ref = trigger.reference_value
        else:
            ref = recent_closes[-1] if recent_closes else None
        if not ref:
            return False
        return compare(trigger.op, _pct_change(price, ref), trigger.value)

    if isinstance(trigger, UnsupportedTrigger):
        logger.warning("Unsupported trigger type %r evaluated as not satisfied", trigger.type_name)
        return False

    logger.warning("Unrecognized trigger %r evaluated as not satisfied", trigger)
    return False


def needs_recent_closes(rule: Rule) -> bool:
    t = rule.trigger
    return isinstance(t, ReferenceTrigger) and t.kind is ReferenceKind.LAST_CLOSE
