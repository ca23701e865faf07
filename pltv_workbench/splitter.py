"""
splitter.py — Partition FeatureRows into train / validation / test Datasets.

Temporal splitting (train on past months, evaluate on future months) is the default;
the random strategy drops the freshest installs (immature labels) and shuffles the
rest with a seeded generator.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union

import pandas as pd

from . import config
from .dataset_registry import Dataset, DatasetRegistry
from .exceptions import ConfigurationError
from .features import FeatureRow

logger = logging.getLogger(__name__)

MONTH_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
STRATEGIES = ("temporal", "random")


@dataclass(frozen=True)
class DatasetFilters:
    """Row filters applied before splitting. Dates are inclusive ``YYYY-MM-DD`` strings."""

    date_start: Optional[str] = None
    date_end: Optional[str] = None
    channels: Tuple[str, ...] = ()
    countries: Tuple[str, ...] = ()
    os: Tuple[str, ...] = ()
    payers_only: bool = False

    def accepts(self, row: FeatureRow) -> bool:
        if self.date_start and row.install_date < self.date_start:
            return False
        if self.date_end and row.install_date > self.date_end:
            return False
        if self.channels and row.channel not in self.channels:
            return False
        if self.countries and row.country not in self.countries:
            return False
        if self.os and row.os not in self.os:
            return False
        if self.payers_only and row.ltv_d60 <= 0:
            return False
        return True

    def describe(self) -> str:
        parts = []
        if self.date_start or self.date_end:
            parts.append(f"date={self.date_start or '*'}..{self.date_end or '*'}")
        if self.channels:
            parts.append("ch=" + ",".join(self.channels))
        if self.countries:
            parts.append("co=" + ",".join(self.countries))
        if self.os:
            parts.append("os=" + ",".join(self.os))
        if self.payers_only:
            parts.append("payers_only")
        return "; ".join(parts) or "none"


@dataclass(frozen=True)
class TemporalSplitParams:
    train_months: Sequence[str] = field(default_factory=tuple)
    validation_months: Sequence[str] = field(default_factory=tuple)
    test_months: Sequence[str] = field(default_factory=tuple)


@dataclass(frozen=True)
class RandomSplitParams:
    train_fraction: float = config.TRAIN_FRACTION
    validation_fraction: float = config.VALIDATION_FRACTION
    test_fraction: float = config.TEST_FRACTION
    immature_fraction: float = config.IMMATURE_FRACTION
    seed: int = config.SEED


SplitParams = Union[TemporalSplitParams, RandomSplitParams]


@dataclass(frozen=True)
class SplitResult:
    train: Dataset
    validation: Dataset
    test: Dataset
    excluded: int

    def __iter__(self):
        return iter((self.train, self.validation, self.test, self.excluded))


# ── Validation ──────────────────────────────────────────────────────
def _check_temporal(params: TemporalSplitParams) -> None:
    buckets = {
        "train": list(params.train_months),
        "validation": list(params.validation_months),
        "test": list(params.test_months),
    }
    if not buckets["train"]:
        raise ConfigurationError("Temporal split needs at least one train month")
    bad = [m for months in buckets.values() for m in months if not MONTH_RE.match(str(m))]
    if bad:
        raise ConfigurationError(f"Months must be YYYY-MM, got: {', '.join(map(str, bad))}", {"invalid": bad})
    seen = {}
    for role, months in buckets.items():
        for m in months:
            if m in seen and seen[m] != role:
                raise ConfigurationError(
                    f"Month {m} assigned to both {seen[m]} and {role}",
                    {"month": m, "roles": [seen[m], role]},
                )
            seen[m] = role


def _check_random(params: RandomSplitParams) -> None:
    fractions = {
        "train_fraction": params.train_fraction,
        "validation_fraction": params.validation_fraction,
        "test_fraction": params.test_fraction,
        "immature_fraction": params.immature_fraction,
    }
    negative = [k for k, v in fractions.items() if v < 0]
    if negative:
        raise ConfigurationError(f"Split fractions cannot be negative: {', '.join(negative)}", fractions)
    if params.immature_fraction >= 1:
        raise ConfigurationError("immature_fraction must be below 1", fractions)
    total = params.train_fraction + params.validation_fraction + params.test_fraction
    if total > 1 + 1e-9:
        raise ConfigurationError(
            f"Split percentages sum to {total * 100:.1f}% (> 100%)",
            {"total": total, **fractions},
        )


# ── Strategies ──────────────────────────────────────────────────────
def _temporal_split(rows: List[FeatureRow], params: TemporalSplitParams):
    role_by_month = {}
    for role, months in (("train", params.train_months),
                         ("validation", params.validation_months),
                         ("test", params.test_months)):
        for m in months:
            role_by_month[m] = role
    parts = {"train": [], "validation": [], "test": []}
    excluded = 0
    for row in rows:
        role = role_by_month.get(row.install_month)
        if role is None:
            excluded += 1
        else:
            parts[role].append(row)
    return parts, excluded


def _random_split(rows: List[FeatureRow], params: RandomSplitParams):
    n = len(rows)
    frame = pd.DataFrame({
        "pos": range(n),
        "install_time": [r.install_time for r in rows],
        "user_id": [r.user_id for r in rows],
    }).sort_values(["install_time", "user_id"], kind="mergesort")

    n_mature = int(n * (1 - params.immature_fraction))
    mature = frame.iloc[:n_mature]
    shuffled = mature.sample(frac=1, random_state=params.seed)["pos"].tolist()

    m = len(shuffled)
    total = params.train_fraction + params.validation_fraction + params.test_fraction
    train_end = int(m * params.train_fraction)
    val_end = int(m * (params.train_fraction + params.validation_fraction))
    test_end = m if abs(total - 1) < 1e-9 else int(m * total)

    parts = {
        "train": [rows[i] for i in shuffled[:train_end]],
        "validation": [rows[i] for i in shuffled[train_end:val_end]],
        "test": [rows[i] for i in shuffled[val_end:test_end]],
    }
    excluded = (n - m) + (m - test_end)
    return parts, excluded


# ── Entry point ─────────────────────────────────────────────────────
def build_dataset(rows: Sequence[FeatureRow], filters: Optional[DatasetFilters] = None,
                  strategy: str = "temporal", params: Optional[SplitParams] = None,
                  registry: Optional[DatasetRegistry] = None, source: str = "pipeline") -> SplitResult:
    """Filter, split and register rows as three new Datasets.

    Invariant: ``len(train) + len(validation) + len(test) + excluded == len(rows)``.
    Filtered-out rows count as excluded.
    """
    filters = filters or DatasetFilters()
    registry = registry if registry is not None else DatasetRegistry()
    if strategy not in STRATEGIES:
        raise ConfigurationError(f"Unknown split strategy {strategy!r}", {"allowed": list(STRATEGIES)})

    if strategy == "temporal":
        if params is None:
            raise ConfigurationError("Temporal split needs TemporalSplitParams with month buckets")
        if not isinstance(params, TemporalSplitParams):
            raise ConfigurationError("Temporal split needs TemporalSplitParams")
        _check_temporal(params)
    else:
        params = params or RandomSplitParams()
        if not isinstance(params, RandomSplitParams):
            raise ConfigurationError("Random split needs RandomSplitParams")
        _check_random(params)

    rows = list(rows)
    kept = [r for r in rows if filters.accepts(r)]
    filtered_out = len(rows) - len(kept)

    if strategy == "temporal":
        parts, excluded = _temporal_split(kept, params)
    else:
        parts, excluded = _random_split(kept, params)
    excluded += filtered_out

    logger.info("Split %d rows (%s): %d filtered out, %d excluded in total",
                len(rows), strategy, filtered_out, excluded)
    description = f"{strategy}; {filters.describe()}"
    train = registry.register(parts["train"], "train", source=source, filters=description)
    validation = registry.register(parts["validation"], "validation", source=source, filters=description)
    test = registry.register(parts["test"], "test", source=source, filters=description)
    return SplitResult(train=train, validation=validation, test=test, excluded=excluded)
