"""
trainer.py — Fit an XGBoost pLTV regressor on a Dataset and score users.

Cold track = no D0-D7 payment features (scores every install); warm track = all features.
The held-out split here is internal to training and independent of the registry split.
"""
from __future__ import annotations

import logging
import pickle
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score
from sklearn.model_selection import train_test_split
from xgboost import XGBRegressor

from .config import MIN_FEATURES, SEED, TARGETS, TRACKS, WHALE_SEGMENT, XGB_PARAMS
from .dataset_registry import Dataset
from .evaluation import (
    CalibrationBucket,
    DecileRow,
    assign_segments,
    calibration_buckets,
    decile_table,
    percentile_deciles,
    top_decile_stats,
)
from .exceptions import ConfigurationError
from .feature_catalog import FEATURE_CATALOG, PAYMENT_FEATURES
from .features import FeatureRow, to_frame, validate_names

logger = logging.getLogger(__name__)

MODEL_TYPE = "XGBRegressor"


@dataclass(frozen=True)
class TrainingConfig:
    target: str = "ltv_d60"
    log_transform: bool = True
    track: str = "warm"
    test_split: float = 0.2
    seed: int = SEED


@dataclass(frozen=True)
class ScoredUser:
    user_id: str
    predicted: float
    decile: int
    segment: str
    actual: float
    is_top_1pct: bool


@dataclass
class ModelResult:
    model_type: str
    target: str
    track: str
    log_transform: bool
    features: List[str]
    dropped_features: List[str]
    mae: float
    rmse: float
    r2: float
    top_decile_lift: float
    top_decile_capture: float
    decile_table: List[DecileRow]
    calibration: List[CalibrationBucket]
    feature_importance: List[Tuple[str, float]]
    scored_users: List[ScoredUser]
    train_size: int
    test_size: int
    training_dataset_id: Optional[int] = None
    training_seconds: float = field(default=0.0, compare=False)
    estimator: object = field(default=None, compare=False, repr=False)

    def metrics(self) -> Dict[str, float]:
        return {
            "mae": self.mae,
            "rmse": self.rmse,
            "r2": self.r2,
            "top_decile_lift": self.top_decile_lift,
            "top_decile_capture": self.top_decile_capture,
        }


# ── Config checks ───────────────────────────────────────────────────
def resolve_features(features: Sequence[str], track: str) -> Tuple[List[str], List[str]]:
    """Validate the selection and apply the track filter → (kept, dropped)."""
    selected = list(dict.fromkeys(features))
    if len(selected) < MIN_FEATURES:
        raise ConfigurationError(
            f"Select at least {MIN_FEATURES} features (got {len(selected)})",
            {"selected": selected},
        )
    validate_names(selected, FEATURE_CATALOG)
    if track not in TRACKS:
        raise ConfigurationError(f"Unknown track {track!r}", {"allowed": list(TRACKS)})
    dropped = [f for f in selected if track == "cold" and f in PAYMENT_FEATURES]
    kept = [f for f in selected if f not in dropped]
    if not kept:
        raise ConfigurationError("No features left after applying the cold track filter",
                                 {"dropped": dropped})
    return kept, dropped


def _check_config(config: TrainingConfig) -> None:
    if config.target not in TARGETS:
        raise ConfigurationError(f"Unknown target {config.target!r}", {"allowed": list(TARGETS)})
    if not 0 <= config.test_split < 1:
        raise ConfigurationError(f"test_split must be in [0, 1), got {config.test_split}")


# ── Matrix helpers ──────────────────────────────────────────────────
def _design_matrix(rows: Sequence[FeatureRow], features: Sequence[str]) -> np.ndarray:
    df = to_frame(rows)
    return df[list(features)].fillna(0).values.astype(float)


def _targets(rows: Sequence[FeatureRow], target: str) -> np.ndarray:
    return np.array([getattr(r, target) for r in rows], dtype=float)


def predict(model, X: np.ndarray, log_transform: bool) -> np.ndarray:
    raw = model.predict(X)
    preds = np.expm1(np.clip(raw, 0, None)) if log_transform else raw
    return np.clip(preds, 0, None).astype(float)


def _scored_users(rows: Sequence[FeatureRow], y_pred: np.ndarray, y_true: np.ndarray) -> List[ScoredUser]:
    deciles = percentile_deciles(y_pred)
    segments = assign_segments(y_pred, deciles)
    return [
        ScoredUser(
            user_id=row.user_id,
            predicted=round(float(p), 4),
            decile=int(d),
            segment=s,
            actual=float(a),
            is_top_1pct=s == WHALE_SEGMENT,
        )
        for row, p, d, s, a in zip(rows, y_pred, deciles, segments, y_true)
    ]


def _error_metrics(y_true: np.ndarray, y_pred: np.ndarray) -> Tuple[float, float, float]:
    if len(y_true) == 0:
        return 0.0, 0.0, 0.0
    mae = float(mean_absolute_error(y_true, y_pred))
    rmse = float(np.sqrt(mean_squared_error(y_true, y_pred)))
    r2 = float(r2_score(y_true, y_pred)) if len(y_true) > 1 else 0.0
    return round(mae, 4), round(rmse, 4), round(r2, 4)


def _importances(model, features: Sequence[str]) -> List[Tuple[str, float]]:
    raw = np.asarray(model.feature_importances_, dtype=float)
    raw = np.nan_to_num(raw, nan=0.0)
    total = raw.sum()
    norm = raw / total if total > 0 else np.zeros_like(raw)
    pairs = [(f, round(float(v), 4)) for f, v in zip(features, norm)]
    return sorted(pairs, key=lambda x: (-x[1], x[0]))


def _result(model, rows, features, dropped, target, track, log_transform,
            eval_idx, train_size, dataset_id) -> ModelResult:
    X = _design_matrix(rows, features)
    y = _targets(rows, target)
    y_pred = predict(model, X, log_transform)
    y_eval, p_eval = y[eval_idx], y_pred[eval_idx]
    mae, rmse, r2 = _error_metrics(y_eval, p_eval)
    lift, capture = top_decile_stats(y_eval, p_eval)
    return ModelResult(
        model_type=MODEL_TYPE,
        target=target,
        track=track,
        log_transform=log_transform,
        features=list(features),
        dropped_features=list(dropped),
        mae=mae,
        rmse=rmse,
        r2=r2,
        top_decile_lift=lift,
        top_decile_capture=capture,
        decile_table=decile_table(y_eval, p_eval),
        calibration=calibration_buckets(y_eval, p_eval),
        feature_importance=_importances(model, features),
        scored_users=_scored_users(rows, y_pred, y),
        train_size=train_size,
        test_size=len(eval_idx),
        training_dataset_id=dataset_id,
        estimator=model,
    )


# ── Public API ──────────────────────────────────────────────────────
def train(dataset: Dataset, features: Sequence[str], config: Optional[TrainingConfig] = None) -> ModelResult:
    """Fit the estimator on ``dataset`` and evaluate on an internal holdout.

    With ``test_split == 0`` the metrics are in-sample. Scored users cover every row of
    the dataset, in dataset row order.
    """
    config = config or TrainingConfig()
    _check_config(config)
    kept, dropped = resolve_features(features, config.track)
    rows = list(dataset.rows)
    if not rows:
        raise ConfigurationError("Cannot train on an empty dataset", {"dataset_id": dataset.id})

    idx = np.arange(len(rows))
    if config.test_split > 0:
        try:
            train_idx, test_idx = train_test_split(idx, test_size=config.test_split,
                                                   random_state=config.seed)
        except ValueError as exc:
            raise ConfigurationError(f"Dataset too small for test_split={config.test_split}: {exc}",
                                     {"rows": len(rows)}) from exc
        train_idx, test_idx = np.sort(train_idx), np.sort(test_idx)
    else:
        train_idx = test_idx = idx

    X = _design_matrix(rows, kept)
    y = np.clip(_targets(rows, config.target), 0, None)
    y_fit = np.log1p(y) if config.log_transform else y

    model = XGBRegressor(**{**XGB_PARAMS, "random_state": config.seed})
    started = time.perf_counter()
    model.fit(X[train_idx], y_fit[train_idx])
    elapsed = time.perf_counter() - started

    result = _result(model, rows, kept, dropped, config.target, config.track, config.log_transform,
                     test_idx, len(train_idx), dataset.id)
    result.training_seconds = round(elapsed, 3)
    logger.info(
        "Trained %s on %d rows (%s track, %d features, target=%s, log=%s) in %.2fs | "
        "MAE %.3f  RMSE %.3f  R² %.3f  top-decile capture %.1f%%",
        MODEL_TYPE, len(train_idx), config.track, len(kept), config.target, config.log_transform,
        elapsed, result.mae, result.rmse, result.r2, result.top_decile_capture * 100,
    )
    if dropped:
        logger.info("Cold track dropped payment features: %s", ", ".join(dropped))
    return result


def serialize(model) -> bytes:
    return pickle.dumps(model)


def deserialize(state: bytes):
    return pickle.loads(state)


def score(model_version, dataset: Dataset) -> List[ScoredUser]:
    """Score every row of ``dataset`` with a saved ModelVersion (pure inference, no refit)."""
    rows = list(dataset.rows)
    if not rows:
        return []
    model = deserialize(model_version.model_state)
    X = _design_matrix(rows, model_version.features)
    y_pred = predict(model, X, model_version.log_transform)
    logger.info("Scored %d users of %s with %s", len(rows), dataset.name, model_version.name)
    return _scored_users(rows, y_pred, _targets(rows, model_version.target))


def evaluate_version(model_version, dataset: Dataset) -> ModelResult:
    """Report full metrics for a saved ModelVersion on a new dataset (test_split = 0)."""
    rows = list(dataset.rows)
    if not rows:
        raise ConfigurationError("Cannot evaluate on an empty dataset", {"dataset_id": dataset.id})
    model = deserialize(model_version.model_state)
    return _result(model, rows, list(model_version.features), [], model_version.target,
                   model_version.track, model_version.log_transform,
                   np.arange(len(rows)), 0, model_version.training_dataset_id)
