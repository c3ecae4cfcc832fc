"""Per-rule fire counters (one-shot vs. repeatable with optional cap)."""
from typing import Dict, Optional

from .rules import Rule


def fire_count(steps_fired: Dict[str, int], rule: Rule) -> int:
    return int(steps_fired.get(rule.id, 0))


def can_fire(steps_fired: Dict[str, int], rule: Rule) -> bool:
    fired = fire_count(steps_fired, rule)
    if rule.repeatable:
        if rule.max_fires is None:
            return True
        return fired < rule.max_fires
    return fired == 0


def remaining_fires(steps_fired: Dict[str, int], rule: Rule) -> Optional[int]:
    """Fires left for ``rule``; None means unbounded."""
    fired = fire_count(steps_fired, rule)
    if not rule.repeatable:
        return 0 if fired else 1
    if rule.max_fires is None:
        return None
    return max(0, rule.max_fires - fired)


def record_fire(steps_fired: Dict[str, int], rule: Rule) -> int:
    """Count one successful action for ``rule``. Call only after it executed."""
    steps_fired[rule.id] = fire_count(steps_fired, rule) + 1
    return steps_fired[rule.id]
