"""Ladder rule (step) model.

Rules are loaded once from configuration and never mutated. Each tagged
field of the JSON config (``trigger``, ``amount``, ``match``) is parsed into
one of a closed set of frozen dataclasses so the evaluator and sizer can
dispatch on type instead of on loose ``type`` strings.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Invalid ladder configuration. Aborts the offending rule only."""


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"


class Op(str, Enum):
    GTE = "gte"
    LTE = "lte"
    GT = "gt"
    LT = "lt"
    EQ = "eq"


class ReferenceKind(str, Enum):
    CUSTOM = "custom"
    LAST_CLOSE = "last_close"


# ── Triggers ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PriceTrigger:
    op: Op
    value: float


@dataclass(frozen=True)
class LotEntryTrigger:
    """Percent move of the current price from a lot's entry price."""
    op: Op
    value: float


@dataclass(frozen=True)
class ReferenceTrigger:
    """Percent move from a fixed value or from the latest recent close."""
    op: Op
    value: float
    kind: ReferenceKind
    reference_value: Optional[float] = None


@dataclass(frozen=True)
class UnsupportedTrigger:
    type_name: str


Trigger = Union[PriceTrigger, LotEntryTrigger, ReferenceTrigger, UnsupportedTrigger]


# ── Amounts ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class QuoteAmount:
    value: float


@dataclass(frozen=True)
class BaseAmount:
    value: float


@dataclass(frozen=True)
class LotPercentAmount:
    value: float


@dataclass(frozen=True)
class LotQuoteAmount:
    value: float


@dataclass(frozen=True)
class UnsupportedAmount:
    type_name: str


Amount = Union[QuoteAmount, BaseAmount, LotPercentAmount, LotQuoteAmount, UnsupportedAmount]


# ── Lot selectors ──────────────────────────────────────────────────────────

class MatchOrder(str, Enum):
    FIFO = "fifo"
    LIFO = "lifo"


@dataclass(frozen=True)
class EntryMatch:
    """Only lots opened by the buy rule ``entry_id``."""
    entry_id: str


Selector = Union[MatchOrder, EntryMatch, None]


@dataclass(frozen=True)
class Rule:
    id: str
    side: Side
    trigger: Trigger
    amount: Amount
    repeatable: bool = False
    max_fires: Optional[int] = None
    match: Selector = None

    @property
    def is_buy(self) -> bool:
        return self.side is Side.BUY

    @property
    def is_sell(self) -> bool:
        return self.side is Side.SELL


# ── Parsing ────────────────────────────────────────────────────────────────

_TRIGGER_TYPES = {
    "price": PriceTrigger,
    "percent_from_lot_entry": LotEntryTrigger,
}

_AMOUNT_TYPES = {
    "quote": QuoteAmount,
    "base": BaseAmount,
    "lot_percent": LotPercentAmount,
    "lot_quote": LotQuoteAmount,
}


def parse_op(raw: Any) -> Op:
    try:
        return Op(str(raw))
    except ValueError:
        raise ConfigurationError(f"Unsupported op: {raw}") from None


def _number(raw: Any, what: str) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{what} must be numeric, got {raw!r}") from None


def parse_trigger(d: Optional[Dict[str, Any]]) -> Trigger:
    if not d:
        return UnsupportedTrigger(type_name="")
    type_name = str(d.get("type", ""))

    if type_name in _TRIGGER_TYPES:
        cls = _TRIGGER_TYPES[type_name]
        return cls(op=parse_op(d.get("op")), value=_number(d.get("value"), "trigger.value"))

    if type_name == "percent_from_reference":
        reference = d.get("reference") or {}
        try:
            kind = ReferenceKind(reference.get("kind"))
        except ValueError:
            raise ConfigurationError("percent_from_reference requires reference.kind") from None
        ref_value = None
        if kind is ReferenceKind.CUSTOM:
            ref_value = _number(reference.get("value"), "reference.value")
        return ReferenceTrigger(
            op=parse_op(d.get("op")),
            value=_number(d.get("value"), "trigger.value"),
            kind=kind,
            reference_value=ref_value,
        )

    logger.warning("Unknown trigger type %r, rule will never fire", type_name)
    return UnsupportedTrigger(type_name=type_name)


def parse_amount(d: Optional[Dict[str, Any]]) -> Amount:
    if not d:
        return UnsupportedAmount(type_name="")
    type_name = str(d.get("type", ""))
    cls = _AMOUNT_TYPES.get(type_name)
    if cls is None:
        return UnsupportedAmount(type_name=type_name)
    return cls(value=_number(d.get("value"), "amount.value"))


def parse_selector(raw: Any) -> Selector:
    if isinstance(raw, dict) and raw.get("entryId"):
        return EntryMatch(entry_id=str(raw["entryId"]))
    if isinstance(raw, str):
        try:
            return MatchOrder(raw.lower())
        except ValueError:
            logger.warning("Unknown lot selector %r, defaulting to fifo", raw)
    return None


def parse_rule(d: Dict[str, Any]) -> Rule:
    rule_id = d.get("id")
    if not rule_id:
        raise ConfigurationError(f"Rule without id: {d}")
    try:
        side = Side(d.get("side"))
    except ValueError:
        raise ConfigurationError(f"Rule {rule_id}: side must be buy or sell") from None

    repeatable = d.get("repeatable", False)
    if not isinstance(repeatable, bool):
        raise ConfigurationError(f"Rule {rule_id}: repeatable must be true or false, got {repeatable!r}")

    max_fires = d.get("maxFires")
    if max_fires is not None:
        max_fires = int(_number(max_fires, f"Rule {rule_id}: maxFires"))
        if max_fires < 0:
            raise ConfigurationError(f"Rule {rule_id}: maxFires must be >= 0")

    return Rule(
        id=str(rule_id),
        side=side,
        trigger=parse_trigger(d.get("trigger")),
        amount=parse_amount(d.get("amount")),
        repeatable=repeatable,
        max_fires=max_fires,
        match=parse_selector(d.get("match")) if side is Side.SELL else None,
    )


def parse_ruleset(steps: List[Dict[str, Any]]) -> List[Rule]:
    """Parse a symbol's step list, keeping configuration order."""
    rules = [parse_rule(s) for s in steps]
    seen = set()
    for r in rules:
        if r.id in seen:
            raise ConfigurationError(f"Duplicate rule id: {r.id}")
        seen.add(r.id)
    return rules
