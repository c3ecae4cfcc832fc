"""EMA / RSI over a close series.

Outputs drop the warm-up period, so ``ema(values, p)`` has
``len(values) - p + 1`` points and ``rsi(values, p)`` has ``len(values) - p``.
"""
from typing import List, Sequence

import numpy as np
import pandas as pd


def ema(values: Sequence[float], period: int) -> List[float]:
    """Exponential moving average seeded with the SMA of the first ``period`` values."""
    if period <= 0:
        raise ValueError("period must be positive")
    s = pd.Series(values, dtype="float64")
    if len(s) < period:
        return []
    seeded = s.copy()
    seeded.iloc[period - 1] = s.iloc[:period].mean()
    out = seeded.iloc[period - 1:].ewm(span=period, adjust=False).mean()
    return [float(x) for x in out]


def rsi(values: Sequence[float], period: int = 14) -> List[float]:
    """Wilder's RSI."""
    if period <= 0:
        raise ValueError("period must be positive")
    s = pd.Series(values, dtype="float64")
    if len(s) <= period:
        return []
    delta = s.diff().iloc[1:]
    gains = delta.clip(lower=0).to_numpy()
    losses = (-delta.clip(upper=0)).to_numpy()

    avg_gain = gains[:period].mean()
    avg_loss = losses[:period].mean()
    out = []
    for i in range(period, len(gains) + 1):
        if i > period:
            avg_gain = (avg_gain * (period - 1) + gains[i - 1]) / period
            avg_loss = (avg_loss * (period - 1) + losses[i - 1]) / period
        if avg_loss == 0:
            out.append(100.0)
        else:
            rs = avg_gain / avg_loss
            out.append(float(100 - 100 / (1 + rs)))
    return [float(np.round(x, 2)) for x in out]
