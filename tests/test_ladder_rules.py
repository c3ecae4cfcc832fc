from __future__ import annotations

import pytest

from trading.ladder.lots import Lot
from trading.ladder.rules import (
    BaseAmount, ConfigurationError, EntryMatch, LotEntryTrigger, LotPercentAmount,
    MatchOrder, Op, PriceTrigger, QuoteAmount, ReferenceKind, ReferenceTrigger,
    UnsupportedAmount, UnsupportedTrigger, parse_rule, parse_ruleset,
)
from trading.ladder.triggers import compare, needs_recent_closes, trigger_satisfied


def _lot(entry_price: float) -> Lot:
    return Lot(symbol="SOL/USDT", entry_step_id="b1", entry_price=entry_price,
               base_qty=1.0, remaining_base_qty=1.0, remaining_cost_quote=entry_price)


def test_parse_buy_rule_with_price_trigger() -> None:
    rule = parse_rule({
        "id": "sol_buy_180", "side": "buy",
        "trigger": {"type": "price", "op": "lte", "value": 180},
        "amount": {"type": "quote", "value": 100},
    })
    assert rule.is_buy
    assert rule.trigger == PriceTrigger(op=Op.LTE, value=180.0)
    assert rule.amount == QuoteAmount(value=100.0)
    assert rule.repeatable is False
    assert rule.max_fires is None
    assert rule.match is None


def test_parse_sell_rule_selectors() -> None:
    base = {"side": "sell", "trigger": {"type": "price", "op": "gte", "value": 1},
            "amount": {"type": "lot_percent", "value": 50}}
    assert parse_rule({**base, "id": "a", "match": "fifo"}).match is MatchOrder.FIFO
    assert parse_rule({**base, "id": "b", "match": "lifo"}).match is MatchOrder.LIFO
    assert parse_rule({**base, "id": "c", "match": {"entryId": "buy_1"}}).match == EntryMatch("buy_1")
    assert parse_rule({**base, "id": "d", "match": "random"}).match is None
    assert parse_rule({**base, "id": "e"}).amount == LotPercentAmount(50.0)


def test_unknown_operator_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError, match="Unsupported op"):
        parse_rule({"id": "x", "side": "buy",
                    "trigger": {"type": "price", "op": "between", "value": 1},
                    "amount": {"type": "quote", "value": 10}})


def test_reference_trigger_requires_kind() -> None:
    with pytest.raises(ConfigurationError, match="reference.kind"):
        parse_rule({"id": "x", "side": "buy",
                    "trigger": {"type": "percent_from_reference", "op": "lte", "value": -3},
                    "amount": {"type": "quote", "value": 10}})


def test_unknown_trigger_and_amount_types_parse_as_unsupported() -> None:
    rule = parse_rule({"id": "x", "side": "buy",
                       "trigger": {"type": "moon_phase", "op": "gte", "value": 1},
                       "amount": {"type": "leverage", "value": 10}})
    assert rule.trigger == UnsupportedTrigger("moon_phase")
    assert rule.amount == UnsupportedAmount("leverage")


@pytest.mark.parametrize("flag", ["false", "true", 1, 0, None])
def test_repeatable_must_be_a_boolean(flag) -> None:
    with pytest.raises(ConfigurationError, match="repeatable"):
        parse_rule({"id": "x", "side": "buy", "repeatable": flag,
                    "trigger": {"type": "price", "op": "lte", "value": 1},
                    "amount": {"type": "quote", "value": 10}})


def test_non_numeric_max_fires_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError, match="maxFires"):
        parse_rule({"id": "x", "side": "buy", "repeatable": True, "maxFires": "many",
                    "trigger": {"type": "price", "op": "lte", "value": 1},
                    "amount": {"type": "quote", "value": 10}})


def test_parse_ruleset_rejects_duplicate_ids() -> None:
    step = {"id": "dup", "side": "buy", "trigger": {"type": "price", "op": "lte", "value": 1},
            "amount": {"type": "base", "value": 1}}
    with pytest.raises(ConfigurationError, match="Duplicate"):
        parse_ruleset([step, dict(step)])


@pytest.mark.parametrize(
    "op,left,right,expected",
    [
        (Op.GTE, 2, 2, True), (Op.GTE, 1, 2, False),
        (Op.LTE, 2, 2, True), (Op.LTE, 3, 2, False),
        (Op.GT, 2, 2, False), (Op.GT, 3, 2, True),
        (Op.LT, 2, 2, False), (Op.LT, 1, 2, True),
        (Op.EQ, 2, 2, True), (Op.EQ, 2.5, 2, False),
    ],
)
def test_compare(op: Op, left: float, right: float, expected: bool) -> None:
    assert compare(op, left, right) is expected


def test_compare_rejects_non_operator() -> None:
    with pytest.raises(ConfigurationError):
        compare("between", 1, 2)  # type: ignore[arg-type]


def test_price_trigger_needs_no_lot() -> None:
    assert trigger_satisfied(PriceTrigger(Op.LTE, 180), 175.0) is True
    assert trigger_satisfied(PriceTrigger(Op.LTE, 180), 181.0) is False


def test_percent_from_lot_entry_scenario() -> None:
    lot = _lot(100.0)
    assert trigger_satisfied(LotEntryTrigger(Op.GTE, 12), 112.0, lot) is True
    assert trigger_satisfied(LotEntryTrigger(Op.GTE, 13), 112.0, lot) is False


def test_percent_from_lot_entry_without_lot_is_false() -> None:
    assert trigger_satisfied(LotEntryTrigger(Op.GTE, -100), 112.0, None) is False


def test_percent_from_custom_reference() -> None:
    trig = ReferenceTrigger(Op.LTE, -5, ReferenceKind.CUSTOM, reference_value=200.0)
    assert trigger_satisfied(trig, 190.0) is True
    assert trigger_satisfied(trig, 191.0) is False


def test_percent_from_last_close_uses_latest_close() -> None:
    trig = ReferenceTrigger(Op.LTE, -3, ReferenceKind.LAST_CLOSE)
    assert trigger_satisfied(trig, 97.0, recent_closes=[150.0, 100.0]) is True
    assert trigger_satisfied(trig, 98.0, recent_closes=[150.0, 100.0]) is False


def test_percent_from_last_close_with_empty_series_is_false() -> None:
    trig = ReferenceTrigger(Op.LTE, 1000, ReferenceKind.LAST_CLOSE)
    assert trigger_satisfied(trig, 97.0, recent_closes=[]) is False
    assert trigger_satisfied(trig, 97.0, recent_closes=None) is False


def test_unsupported_trigger_never_fires() -> None:
    assert trigger_satisfied(UnsupportedTrigger("moon_phase"), 1.0) is False


def test_needs_recent_closes_only_for_last_close_references() -> None:
    last_close = parse_rule({"id": "a", "side": "buy", "amount": {"type": "quote", "value": 1},
                             "trigger": {"type": "percent_from_reference", "op": "lte", "value": -3,
                                         "reference": {"kind": "last_close"}}})
    custom = parse_rule({"id": "b", "side": "buy", "amount": {"type": "base", "value": 1},
                         "trigger": {"type": "percent_from_reference", "op": "lte", "value": -3,
                                     "reference": {"kind": "custom", "value": 100}}})
    assert needs_recent_closes(last_close) is True
    assert needs_recent_closes(custom) is False
    assert custom.amount == BaseAmount(1.0)
