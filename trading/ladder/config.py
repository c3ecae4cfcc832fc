"""Ladder configuration: JSON file plus environment overrides."""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .execution import DEFAULT_FEE_PCT, DEFAULT_SLIPPAGE_BPS
from .rules import ConfigurationError, Rule, parse_rule
from .state_store import DEFAULT_QUOTE_ASSET, DEFAULT_STARTING_QUOTE

logger = logging.getLogger(__name__)

_CONFIG_ENV_VAR = "LADDER_CONFIG"
_DEFAULT_FILE_NAME = "ladder_config.json"
_PACKAGE_DIR = Path(__file__).resolve().parent
DEFAULT_STATE_PATH = _PACKAGE_DIR / "data" / "state.json"


@dataclass
class PaperSettings:
    fee_pct: float = DEFAULT_FEE_PCT
    slippage_bps: float = DEFAULT_SLIPPAGE_BPS
    starting_quote: float = DEFAULT_STARTING_QUOTE
    quote_asset: str = DEFAULT_QUOTE_ASSET


@dataclass
class ReferenceSettings:
    """Candle window used by ``last_close`` reference triggers."""
    timeframe: str = "1m"
    count: int = 50


@dataclass
class LadderConfig:
    coins: Dict[str, List[Rule]] = field(default_factory=dict)
    live: bool = False
    loop_seconds: float = 30.0
    exchange: str = "binance"
    testnet: bool = False
    state_path: Path = DEFAULT_STATE_PATH
    prune_closed_lots: bool = False
    paper: PaperSettings = field(default_factory=PaperSettings)
    reference: ReferenceSettings = field(default_factory=ReferenceSettings)
    # rule id -> reason, for rules dropped at load time
    invalid_rules: Dict[str, str] = field(default_factory=dict)

    @property
    def symbols(self) -> List[str]:
        return list(self.coins)


def _env_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


def resolve_config_path(path: Optional[os.PathLike] = None) -> Path:
    candidates: List[Path] = []
    if path:
        candidates.append(Path(path).expanduser())
    env_path = os.environ.get(_CONFIG_ENV_VAR)
    if env_path:
        candidates.append(Path(env_path).expanduser())
    candidates.append(_PACKAGE_DIR / _DEFAULT_FILE_NAME)
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return candidates[0]


def _parse_coins(raw_coins: Mapping[str, Any], strict: bool,
                 invalid: Dict[str, str]) -> Dict[str, List[Rule]]:
    coins: Dict[str, List[Rule]] = {}
    seen_ids = set()
    for symbol, coin_cfg in raw_coins.items():
        rules: List[Rule] = []
        for i, step in enumerate((coin_cfg or {}).get("steps", [])):
            step_id = str(step.get("id") or f"{symbol}#{i}")
            try:
                rule = parse_rule(step)
                if rule.id in seen_ids:
                    raise ConfigurationError(f"Duplicate rule id: {rule.id}")
            except ConfigurationError as e:
                if strict:
                    raise
                logger.error("[CONFIG] %s rule %s disabled: %s", symbol, step_id, e)
                invalid[step_id] = str(e)
                continue
            seen_ids.add(rule.id)
            rules.append(rule)
        coins[symbol] = rules
    return coins


def parse_ladder_config(
    raw: Mapping[str, Any],
    env: Optional[Mapping[str, str]] = None,
    strict: bool = False,
) -> LadderConfig:
    """Build a :class:`LadderConfig` from a decoded JSON document.

    Environment variables override the file: LIVE, LOOP_SECONDS, USE_TESTNET,
    PAPER_FEE_PCT, PAPER_SLIPPAGE_BPS, PAPER_STARTING_USDT, LADDER_STATE_PATH.
    Invalid rules are logged and dropped unless ``strict`` is set.
    """
    env = os.environ if env is None else env
    paper_raw = raw.get("paper") or {}
    ref_raw = raw.get("reference") or {}

    paper = PaperSettings(
        fee_pct=float(env.get("PAPER_FEE_PCT") or paper_raw.get("fee_pct", DEFAULT_FEE_PCT)),
        slippage_bps=float(env.get("PAPER_SLIPPAGE_BPS")
                           or paper_raw.get("slippage_bps", DEFAULT_SLIPPAGE_BPS)),
        starting_quote=float(env.get("PAPER_STARTING_USDT")
                             or paper_raw.get("starting_quote", DEFAULT_STARTING_QUOTE)),
        quote_asset=str(paper_raw.get("quote_asset", DEFAULT_QUOTE_ASSET)),
    )
    reference = ReferenceSettings(
        timeframe=str(ref_raw.get("timeframe", "1m")),
        count=int(ref_raw.get("count", 50)),
    )

    live = bool(raw.get("live", False))
    if env.get("LIVE"):
        live = _env_bool(env["LIVE"])
    testnet = bool(raw.get("testnet", False))
    if env.get("USE_TESTNET"):
        testnet = _env_bool(env["USE_TESTNET"])

    state_path = env.get("LADDER_STATE_PATH") or raw.get("state_path")
    invalid: Dict[str, str] = {}
    return LadderConfig(
        coins=_parse_coins(raw.get("coins") or {}, strict, invalid),
        live=live,
        loop_seconds=float(env.get("LOOP_SECONDS") or raw.get("loop_seconds", 30)),
        exchange=str(raw.get("exchange", "binance")),
        testnet=testnet,
        state_path=Path(state_path).expanduser() if state_path else DEFAULT_STATE_PATH,
        prune_closed_lots=bool(raw.get("prune_closed_lots", False)),
        paper=paper,
        reference=reference,
        invalid_rules=invalid,
    )


def load_ladder_config(path: Optional[os.PathLike] = None, strict: bool = False) -> LadderConfig:
    config_path = resolve_config_path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"ladder config not found at {config_path}")
    with open(config_path, encoding="utf-8") as f:
        raw = json.load(f)
    cfg = parse_ladder_config(raw, strict=strict)
    logger.info("Loaded ladder config %s: %d symbol(s), live=%s", config_path, len(cfg.coins), cfg.live)
    return cfg
