"""
conflicts.py — Label-conflict diagnostics in normalized feature space.

A noisy target definition shows up as neighbourhoods where near-identical users carry
different labels. This module only reports; it never edits rows.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Sequence

import numpy as np
from sklearn.metrics.pairwise import euclidean_distances

from . import config
from .exceptions import ConfigurationError
from .feature_catalog import ALL_FEATURES
from .features import LABEL_FIELDS, FeatureRow, resolve_accessor, validate_names

logger = logging.getLogger(__name__)

# Distance inputs must be numeric: catalog features and label fields only.
NUMERIC_FIELDS = frozenset(ALL_FEATURES) | frozenset(LABEL_FIELDS)


@dataclass(frozen=True)
class ConflictPair:
    user_id: str
    label: str
    neighbor_id: str
    neighbor_label: str
    distance: float


@dataclass(frozen=True)
class BoundaryExample:
    user_id: str
    label: str
    nearest_other_id: str
    nearest_other_label: str
    distance: float


@dataclass
class ConflictResult:
    total_samples: int
    conflicting_samples: int
    conflict_rate: float          # percent, 1 decimal
    severity: str                 # low / moderate / high
    k: int
    feature_ids: List[str]
    target_key: str
    conflict_pairs: List[ConflictPair] = field(default_factory=list)
    boundary_zone: List[BoundaryExample] = field(default_factory=list)
    boundary_count: int = 0


def severity_for(rate: float) -> str:
    if rate > 20:
        return "high"
    if rate > 10:
        return "moderate"
    return "low"


def normalize_matrix(X: np.ndarray) -> np.ndarray:
    """Per-column min/max scaling to [0, 1]; constant columns map to 0."""
    lo = X.min(axis=0)
    span = X.max(axis=0) - lo
    span[span == 0] = 1.0
    return (X - lo) / span


def detect_label_conflicts(rows: Sequence[FeatureRow], feature_ids: Sequence[str],
                           target_key: str, k: int = 5) -> ConflictResult:
    if isinstance(k, bool) or not isinstance(k, int) or k < 1:
        raise ConfigurationError(f"k must be a positive integer, got {k!r}")
    feature_ids = list(feature_ids)
    if not feature_ids:
        raise ConfigurationError("Select at least one feature for conflict detection")
    validate_names(feature_ids, NUMERIC_FIELDS)
    label_of = resolve_accessor(target_key)

    rows = list(rows)
    n = len(rows)
    result = ConflictResult(total_samples=n, conflicting_samples=0, conflict_rate=0.0, severity="low",
                            k=k, feature_ids=feature_ids, target_key=target_key)
    if n < k + 1:
        logger.info("Conflict scan skipped: %d rows, need at least %d", n, k + 1)
        return result

    accessors = [resolve_accessor(f) for f in feature_ids]
    X = np.array([[float(a(r)) for a in accessors] for r in rows], dtype=float)
    X = normalize_matrix(np.nan_to_num(X))
    labels = np.array([str(label_of(r)) for r in rows])
    dist = euclidean_distances(X)

    conflicting = 0
    boundary_count = 0
    for i in range(n):
        d = dist[i].copy()
        d[i] = np.inf
        order = np.argsort(d, kind="stable")
        neighbors = order[:k]
        disagree = [j for j in neighbors if labels[j] != labels[i]]

        if len(disagree) > k / 2:
            conflicting += 1
            if len(result.conflict_pairs) < config.MAX_CONFLICT_PAIRS:
                j = disagree[0]
                result.conflict_pairs.append(ConflictPair(
                    rows[i].user_id, labels[i], rows[j].user_id, labels[j], round(float(d[j]), 4)))

        others = order[labels[order] != labels[i]]
        if len(others) and d[others[0]] < config.BOUNDARY_DISTANCE:
            boundary_count += 1
            if len(result.boundary_zone) < config.MAX_BOUNDARY_EXAMPLES:
                j = others[0]
                result.boundary_zone.append(BoundaryExample(
                    rows[i].user_id, labels[i], rows[j].user_id, labels[j], round(float(d[j]), 4)))

    result.conflicting_samples = conflicting
    result.boundary_count = boundary_count
    result.conflict_rate = round(conflicting / n * 100, 1)
    result.severity = severity_for(result.conflict_rate)
    logger.info("Label conflicts on %s: %.1f%% (%s), %d in boundary zone",
                target_key, result.conflict_rate, result.severity, boundary_count)
    return result
