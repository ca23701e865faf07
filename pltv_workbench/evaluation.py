"""
evaluation.py — Ranking and calibration metrics for pLTV predictions.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from . import config


@dataclass(frozen=True)
class DecileRow:
    decile: int              # 1 = highest predicted values
    users: int
    avg_predicted: float
    avg_actual: float
    lift: float
    revenue_share: float


@dataclass(frozen=True)
class CalibrationBucket:
    bucket: str
    users: int
    avg_predicted: float
    avg_actual: float


def decile_table(y_true, y_pred) -> List[DecileRow]:
    """Avg predicted vs actual per decile of predicted rank (top decile first)."""
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    n = len(y_true)
    if n == 0:
        return []
    order = np.argsort(-y_pred, kind="stable")
    chunk = math.ceil(n / 10)
    overall = y_true.mean()
    total = y_true.sum()
    table = []
    for d in range(10):
        idx = order[d * chunk:(d + 1) * chunk]
        if len(idx) == 0:
            break
        actual = y_true[idx]
        table.append(DecileRow(
            decile=d + 1,
            users=int(len(idx)),
            avg_predicted=round(float(y_pred[idx].mean()), 4),
            avg_actual=round(float(actual.mean()), 4),
            lift=round(float(actual.mean() / overall), 4) if overall > 0 else 0.0,
            revenue_share=round(float(actual.sum() / total), 4) if total > 0 else 0.0,
        ))
    return table


def calibration_buckets(y_true, y_pred) -> List[CalibrationBucket]:
    """Group users by predicted value bucket and compare to realized value."""
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    buckets = []
    for label, lo, hi in config.CALIBRATION_BUCKETS:
        mask = (y_pred >= lo) & (y_pred < hi)
        if mask.sum() == 0:
            continue
        buckets.append(CalibrationBucket(
            bucket=label,
            users=int(mask.sum()),
            avg_predicted=round(float(y_pred[mask].mean()), 4),
            avg_actual=round(float(y_true[mask].mean()), 4),
        ))
    return buckets


def top_decile_stats(y_true, y_pred) -> tuple:
    """(lift, capture) of the top 10% by prediction.

    lift = mean actual in top 10% / overall mean; capture = top 10% revenue / total.
    """
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    n = len(y_true)
    if n == 0:
        return 0.0, 0.0
    k = max(1, int(math.ceil(n * 0.10)))
    top = y_true[np.argsort(-y_pred, kind="stable")[:k]]
    mean = y_true.mean()
    total = y_true.sum()
    lift = float(top.mean() / mean) if mean > 0 else 0.0
    capture = float(top.sum() / total) if total > 0 else 0.0
    return round(lift, 4), round(capture, 4)


def percentile_deciles(y_pred: Sequence[float]) -> np.ndarray:
    """decile = min(ceil(pct_rank * 10), 10) where pct_rank = share of predictions <= own."""
    y_pred = np.asarray(y_pred, dtype=float)
    n = len(y_pred)
    if n == 0:
        return np.array([], dtype=int)
    ranks = np.searchsorted(np.sort(y_pred), y_pred, side="right") / n
    return np.minimum(np.ceil(ranks * 10), 10).astype(int)


def assign_segments(y_pred, deciles) -> List[str]:
    y_pred = np.asarray(y_pred, dtype=float)
    if len(y_pred) == 0:
        return []
    whale_cut = np.percentile(y_pred, config.WHALE_PERCENTILE)
    segments = []
    for pred, decile in zip(y_pred, deciles):
        if pred >= whale_cut and pred > 0:
            segments.append(config.WHALE_SEGMENT)
            continue
        for min_decile, name in config.SEGMENT_BANDS:
            if decile >= min_decile:
                segments.append(name)
                break
    return segments
