"""
dataset_registry.py — Immutable dataset snapshots and their append-only registry.

Every split produces new entries; nothing already registered is ever edited.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from types import MappingProxyType
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np

from .exceptions import ConfigurationError, DatasetNotFoundError
from .features import FeatureRow
from .registry import AppendOnlyRegistry

logger = logging.getLogger(__name__)

SPLIT_ROLES = ("train", "validation", "test", "custom")


@dataclass(frozen=True)
class Dataset:
    id: int
    name: str
    source: str
    split_role: str
    rows: Tuple[FeatureRow, ...]
    row_count: int
    payer_rate: float
    avg_ltv: float
    avg_ltv_d90: float
    date_range: Tuple[str, str]
    filters: str
    created_at: str

    def __len__(self) -> int:
        return self.row_count


def describe_rows(rows: Sequence[FeatureRow]) -> dict:
    """Summary stats for a set of rows: payer rate (% with D60 revenue), avg D60/D90 LTV, date range."""
    if not rows:
        return {"payer_rate": 0.0, "avg_ltv": 0.0, "avg_ltv_d90": 0.0, "date_range": ("", "")}
    ltv60 = np.array([r.ltv_d60 for r in rows], dtype=float)
    ltv90 = np.array([r.ltv_d90 for r in rows], dtype=float)
    dates = sorted(r.install_date for r in rows)
    return {
        "payer_rate": round(float((ltv60 > 0).mean() * 100), 2),
        "avg_ltv": round(float(ltv60.mean()), 2),
        "avg_ltv_d90": round(float(ltv90.mean()), 2),
        "date_range": (dates[0], dates[-1]),
    }


def _freeze(row: FeatureRow) -> FeatureRow:
    """Copy of ``row`` whose feature mapping is read-only and detached from the caller."""
    return replace(row, features=MappingProxyType(dict(row.features)))


def _dataset_name(ds_id: int, role: str, n: int, date_range: Tuple[str, str]) -> str:
    start, end = date_range
    span = f"{start[:7]}→{end[:7]}" if start else "empty"
    return f"ds_v{ds_id} [{role.capitalize()}] — {n:,} users / {span}"


class DatasetRegistry(AppendOnlyRegistry[Dataset]):
    not_found_error = DatasetNotFoundError
    kind = "Dataset"

    def register(self, rows: Iterable[FeatureRow], split_role: str, source: str = "pipeline",
                 filters: str = "none", name: Optional[str] = None) -> Dataset:
        """Snapshot ``rows`` (read-only copies) and append them as a new Dataset."""
        if split_role not in SPLIT_ROLES:
            raise ConfigurationError(f"split_role must be one of {SPLIT_ROLES}, got {split_role!r}",
                                     {"allowed": list(SPLIT_ROLES)})
        snapshot = tuple(_freeze(r) for r in rows)
        stats = describe_rows(snapshot)
        created_at = datetime.now().isoformat(timespec="seconds")

        def build(ds_id: int) -> Dataset:
            return Dataset(
                id=ds_id,
                name=name or _dataset_name(ds_id, split_role, len(snapshot), stats["date_range"]),
                source=source,
                split_role=split_role,
                rows=snapshot,
                row_count=len(snapshot),
                filters=filters,
                created_at=created_at,
                **stats,
            )

        ds = self.append(build)
        logger.info(
            "  %s: %d rows | dates: %s → %s | payer rate: %.2f%% | avg ltv60: %.2f",
            ds.name, ds.row_count, ds.date_range[0], ds.date_range[1], ds.payer_rate, ds.avg_ltv,
        )
        return ds

    def register_custom(self, rows: Iterable[FeatureRow], source: str = "custom",
                        name: Optional[str] = None) -> Dataset:
        return self.register(rows, "custom", source=source, name=name)

    def by_role(self, split_role: str):
        return [ds for ds in self.list() if ds.split_role == split_role]
