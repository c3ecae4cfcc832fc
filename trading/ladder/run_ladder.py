#!/usr/bin/env python3
"""Command line entry point for the ladder bot.

    python -m trading.ladder.run_ladder tick
    python -m trading.ladder.run_ladder run
    python -m trading.ladder.run_ladder state | balances | lots | trades | status | reset
    python -m trading.ladder.run_ladder price SOL/USDT
    python -m trading.ladder.run_ladder indicators SOL/USDT --ema 20 --rsi 14
"""
import argparse
import json
import logging
import signal
import sys
import time
from typing import List, Optional

from .config import LadderConfig, load_ladder_config
from .engine import LadderEngine
from .exchange_client import SpotExchangeClient
from .indicators import ema, rsi

logger = logging.getLogger("trading.ladder")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def setup_logging(cfg: LadderConfig, verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logger.setLevel(logging.DEBUG)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(console)

    cfg.state_path.parent.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(cfg.state_path.parent / "bot.log", encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(fh)


def build_engine(cfg: LadderConfig) -> LadderEngine:
    client = SpotExchangeClient()
    client.connect(cfg.exchange, testnet=cfg.testnet)
    return LadderEngine(cfg, client)


def run_loop(engine: LadderEngine) -> None:
    """Tick every ``loop_seconds`` until SIGINT/SIGTERM."""
    running = True

    def _shutdown(sig, frame):
        nonlocal running
        logger.info("Shutdown signal received")
        running = False

    signal.signal(signal.SIGINT, _shutdown)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _shutdown)

    loop_seconds = max(1, int(engine.config.loop_seconds))
    logger.info("Ladder bot started. Loop=%ds, Live=%s, Testnet=%s",
                loop_seconds, engine.config.live, engine.config.testnet)
    while running:
        engine.evaluate_all_symbols(blocking=False)
        # Sleep in small increments for responsive shutdown
        for _ in range(loop_seconds):
            if not running:
                break
            time.sleep(1)
    logger.info("Ladder bot stopped.")


def _dump(obj) -> None:
    print(json.dumps(obj, indent=2, default=str))


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Price-ladder spot trading bot")
    parser.add_argument("--config", default=None, help="Path to ladder_config.json")
    parser.add_argument("--live", action="store_true", help="Place real orders (overrides config)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging on the console")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("tick", help="Evaluate every symbol once")
    sub.add_parser("run", help="Evaluate every symbol every loop_seconds")
    for name in ("state", "balances", "lots", "trades", "status", "reset"):
        sub.add_parser(name)
    price = sub.add_parser("price", help="Current price of a symbol")
    price.add_argument("symbol")
    ind = sub.add_parser("indicators", help="EMA/RSI over the reference candle window")
    ind.add_argument("symbol")
    ind.add_argument("--ema", type=int, default=20)
    ind.add_argument("--rsi", type=int, default=14)
    args = parser.parse_args(argv)

    cfg = load_ladder_config(args.config)
    if args.live:
        cfg.live = True
    setup_logging(cfg, args.verbose)

    if args.command in ("tick", "run", "price", "indicators"):
        engine = build_engine(cfg)
    else:
        # state inspection never needs the exchange
        engine = LadderEngine(cfg, client=None)

    if args.command == "tick":
        engine.evaluate_all_symbols()
        _dump(engine.status())
    elif args.command == "run":
        run_loop(engine)
    elif args.command == "price":
        _dump({"symbol": args.symbol, "price": engine.client.get_current_price(args.symbol)})
    elif args.command == "indicators":
        ref = cfg.reference
        closes = engine.client.get_recent_closes(args.symbol, ref.timeframe, ref.count)
        ema_values = ema(closes, args.ema)
        rsi_values = rsi(closes, args.rsi)
        _dump({"symbol": args.symbol, "timeframe": ref.timeframe, "close": closes[-1] if closes else None,
               "ema": ema_values[-1] if ema_values else None,
               "rsi": rsi_values[-1] if rsi_values else None})
    elif args.command == "status":
        _dump(engine.status())
    elif args.command == "reset":
        _dump({"ok": True, "state": engine.reset_engine_state().to_dict()})
    else:
        state = engine.get_engine_state().to_dict()
        if args.command == "balances":
            _dump({"balances": state["balances"], "realizedPnlUSDT": state["realizedPnlUSDT"]})
        elif args.command == "state":
            _dump(state)
        else:
            _dump({args.command: state[args.command]})
    return 0


if __name__ == "__main__":
    sys.exit(main())
