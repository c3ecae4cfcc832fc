from __future__ import annotations

from trading.ladder.firing import can_fire, fire_count, record_fire, remaining_fires
from trading.ladder.rules import parse_rule


def _rule(repeatable: bool = False, max_fires=None):
    d = {"id": "r1", "side": "buy", "repeatable": repeatable,
         "trigger": {"type": "price", "op": "lte", "value": 1},
         "amount": {"type": "quote", "value": 10}}
    if max_fires is not None:
        d["maxFires"] = max_fires
    return parse_rule(d)


def test_one_shot_rule_fires_once() -> None:
    fired = {}
    rule = _rule()
    assert can_fire(fired, rule) is True
    assert remaining_fires(fired, rule) == 1
    record_fire(fired, rule)
    assert can_fire(fired, rule) is False
    assert remaining_fires(fired, rule) == 0


def test_repeatable_rule_respects_cap() -> None:
    fired = {}
    rule = _rule(repeatable=True, max_fires=2)
    assert record_fire(fired, rule) == 1
    assert can_fire(fired, rule) is True
    assert remaining_fires(fired, rule) == 1
    assert record_fire(fired, rule) == 2
    assert can_fire(fired, rule) is False
    assert remaining_fires(fired, rule) == 0
    assert fired == {"r1": 2}


def test_zero_cap_never_fires() -> None:
    rule = _rule(repeatable=True, max_fires=0)
    assert can_fire({}, rule) is False
    assert remaining_fires({}, rule) == 0


def test_repeatable_rule_without_cap_is_unbounded() -> None:
    fired = {"r1": 1000}
    rule = _rule(repeatable=True)
    assert can_fire(fired, rule) is True
    assert remaining_fires(fired, rule) is None


def test_counts_are_keyed_by_rule_id() -> None:
    fired = {"other": 3}
    assert fire_count(fired, _rule()) == 0
