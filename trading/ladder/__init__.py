"""Price-ladder spot trading engine."""
from .config import LadderConfig, load_ladder_config, parse_ladder_config
from .engine import LadderEngine
from .rules import ConfigurationError, Rule, parse_rule, parse_ruleset
from .state_store import EngineState, StatePersistenceError, StateStore

__all__ = [
    "LadderConfig", "load_ladder_config", "parse_ladder_config",
    "LadderEngine",
    "ConfigurationError", "Rule", "parse_rule", "parse_ruleset",
    "EngineState", "StatePersistenceError", "StateStore",
]
