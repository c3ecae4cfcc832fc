"""Ladder engine: evaluates each symbol's buy/sell rules on one tick.

One ``LadderEngine`` owns the state store for a deployment. Every public
operation runs under the engine lock, so a manual tick and the scheduled
tick can never interleave their load/mutate/save sequences.
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from .alerts import send_telegram
from .config import LadderConfig
from .execution import (
    InsufficientBalance, LiveExecutor, OrderFailed, PaperExecutor,
    apply_buy_fill, apply_sell_fill,
)
from .firing import can_fire, record_fire, remaining_fires
from .lots import prune_closed_lots, select_lots
from .rules import ConfigurationError, Rule
from .sizing import MarketConstraints, size_buy, size_sell
from .state_store import EngineState, StatePersistenceError, StateStore
from .triggers import needs_recent_closes, trigger_satisfied

logger = logging.getLogger(__name__)


class LadderEngine:
    """Owns the engine state and evaluates rule ladders against live prices."""

    def __init__(
        self,
        config: LadderConfig,
        client,
        store: Optional[StateStore] = None,
        notify: Callable[[str], None] = send_telegram,
    ):
        self.config = config
        self.client = client
        self.store = store or StateStore(
            config.state_path,
            starting_quote=config.paper.starting_quote,
            quote_asset=config.paper.quote_asset,
        )
        self.paper = PaperExecutor(config.paper.fee_pct, config.paper.slippage_bps)
        self.live_executor = LiveExecutor(client)
        self.notify = notify

        self._lock = threading.RLock()
        self._tick_count = 0
        self._last_tick: Optional[str] = None
        self._last_errors: Dict[str, str] = {}

    # ── public operations ──────────────────────────────────────────────

    def evaluate_symbol(self, symbol: str, rules: Sequence[Rule], live: Optional[bool] = None) -> int:
        """Run buy rules then sell rules for ``symbol``. Returns the number of fires.

        Collaborator failures propagate to the caller; rule-level skips and
        configuration errors do not.
        """
        live = self.config.live if live is None else live
        executor = self.live_executor if live else self.paper

        with self._lock:
            market = self.client.get_market_constraints(symbol)
            mid = self.client.get_current_price(symbol)
            closes = None
            if any(needs_recent_closes(r) for r in rules):
                ref = self.config.reference
                closes = self.client.get_recent_closes(symbol, ref.timeframe, ref.count)

            state = self.store.load()
            fires = 0

            for rule in (r for r in rules if r.is_buy):
                try:
                    if self._run_buy(state, symbol, rule, market, mid, closes, executor):
                        fires += 1
                except ConfigurationError as e:
                    logger.error("[CONFIG] %s step=%s aborted: %s", symbol, rule.id, e)

            for rule in (r for r in rules if r.is_sell):
                try:
                    fires += self._run_sell(state, symbol, rule, market, mid, closes, executor)
                except ConfigurationError as e:
                    logger.error("[CONFIG] %s step=%s aborted: %s", symbol, rule.id, e)

            return fires

    def evaluate_all_symbols(self, blocking: bool = True) -> bool:
        """Evaluate every configured symbol once.

        Returns False without doing anything when ``blocking`` is False and
        another tick holds the engine. A failing symbol is logged and the
        tick moves on; persistence failures abort the tick.
        """
        if not self._lock.acquire(blocking=blocking):
            logger.warning("[BOT] tick already in progress, skipped")
            return False
        try:
            mode = "LIVE" if self.config.live else "SIM"
            logger.info("[BOT] %s | %s | symbols=%s", mode,
                        datetime.now(timezone.utc).isoformat(timespec="seconds"),
                        ", ".join(self.config.symbols))
            errors: Dict[str, str] = {}
            for symbol, rules in self.config.coins.items():
                try:
                    self.evaluate_symbol(symbol, rules)
                except StatePersistenceError:
                    raise
                except Exception as e:
                    logger.error("[EVAL ERROR] %s: %s", symbol, e)
                    errors[symbol] = str(e)
            self._tick_count += 1
            self._last_tick = datetime.now(timezone.utc).isoformat(timespec="seconds")
            self._last_errors = errors
            return True
        finally:
            self._lock.release()

    def get_engine_state(self) -> EngineState:
        with self._lock:
            return self.store.load()

    def reset_engine_state(self) -> EngineState:
        with self._lock:
            return self.store.reset()

    def status(self) -> dict:
        return {
            "live": self.config.live,
            "exchange": self.config.exchange,
            "testnet": self.config.testnet,
            "loop_seconds": self.config.loop_seconds,
            "symbols": self.config.symbols,
            "ticks": self._tick_count,
            "last_tick": self._last_tick,
            "last_errors": dict(self._last_errors),
            "invalid_rules": dict(self.config.invalid_rules),
        }

    # ── rule passes ────────────────────────────────────────────────────

    def _run_buy(self, state: EngineState, symbol: str, rule: Rule, market: MarketConstraints,
                 mid: float, closes: Optional[List[float]], executor) -> bool:
        if not can_fire(state.steps_fired, rule):
            return False
        if not trigger_satisfied(rule.trigger, mid, None, closes):
            logger.debug("[STEP SKIP] %s step=%s trigger not satisfied", symbol, rule.id)
            return False

        fill_price = executor.fill_price(mid, "buy")
        base_qty, cost = size_buy(rule.amount, fill_price, market)
        if base_qty <= 0:
            logger.info("[SKIP] %s BUY %s below market minimum: cost=%s", symbol, rule.id, cost)
            return False

        try:
            fill = executor.buy(state, symbol, rule, market, base_qty, cost, fill_price, mid)
        except InsufficientBalance as e:
            logger.info("[SKIP] %s step=%s %s", symbol, rule.id, e)
            return False
        except OrderFailed as e:
            logger.error("[BUY ERROR] %s step=%s: %s", symbol, rule.id, e)
            return False

        lot = apply_buy_fill(state, symbol, rule, fill)
        record_fire(state.steps_fired, rule)
        self.store.save(state)

        tag = "BUY" if fill.live else "SIM BUY"
        logger.info("[%s] %s step=%s @%.6f base=%s cost=%s fee=%s left=%s", tag, symbol, rule.id,
                    fill.price, fill.base_qty, fill.gross_quote, fill.fee_quote, self._fires_left(state, rule))
        self._notify(f"📥 <b>{tag}</b> {symbol}\nStep: {rule.id}\nPrice: {fill.price:.6f}\n"
                     f"Base: {lot.base_qty}\nCost: {fill.gross_quote:.2f}")
        return True

    def _run_sell(self, state: EngineState, symbol: str, rule: Rule, market: MarketConstraints,
                  mid: float, closes: Optional[List[float]], executor) -> int:
        if not can_fire(state.steps_fired, rule):
            return 0

        fires = 0
        for lot in select_lots(state.lots, symbol, rule.match):
            if not can_fire(state.steps_fired, rule):
                break
            if not trigger_satisfied(rule.trigger, mid, lot, closes):
                logger.debug("[STEP] %s %s not triggered for lot=%s", symbol, rule.id, lot.entry_step_id)
                continue

            fill_price = executor.fill_price(mid, "sell")
            base_qty, gross = size_sell(rule.amount, lot, fill_price, market)
            if base_qty <= 0:
                logger.info("[STEP SKIP] %s step=%s nothing to sell from lot=%s (gross=%s)",
                            symbol, rule.id, lot.entry_step_id, gross)
                continue

            try:
                fill = executor.sell(state, symbol, rule, market, base_qty, gross, fill_price, mid)
            except InsufficientBalance as e:
                logger.info("[SKIP] %s step=%s %s", symbol, rule.id, e)
                continue
            except OrderFailed as e:
                logger.error("[SELL ERROR] %s step=%s: %s", symbol, rule.id, e)
                continue

            pnl = apply_sell_fill(state, symbol, rule, lot, fill)
            record_fire(state.steps_fired, rule)
            if self.config.prune_closed_lots:
                prune_closed_lots(state.lots)
            self.store.save(state)
            fires += 1

            tag = "SELL" if fill.live else "SIM SELL"
            logger.info("[%s] %s step=%s lot=%s @%.6f base=%s proceeds=%s fee=%s pnl=%.6f left=%s",
                        tag, symbol, rule.id, lot.entry_step_id, fill.price, fill.base_qty,
                        fill.gross_quote, fill.fee_quote, pnl, self._fires_left(state, rule))
            self._notify(f"📤 <b>{tag}</b> {symbol}\nStep: {rule.id}\nLot: {lot.entry_step_id}\n"
                         f"Price: {fill.price:.6f}\nBase: {fill.base_qty}\nPnL: {pnl:.2f}")

            if not rule.repeatable:
                break
        return fires

    @staticmethod
    def _fires_left(state: EngineState, rule: Rule) -> str:
        left = remaining_fires(state.steps_fired, rule)
        return "unbounded" if left is None else str(left)

    def _notify(self, msg: str) -> None:
        try:
            self.notify(msg)
        except Exception as e:
            logger.warning("Notification failed: %s", e)
