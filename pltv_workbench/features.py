"""
features.py — Build one FeatureRow per player from cleaned events and payments.

Feature values only ever see the D0-D7 window; label fields (ltv_dN, churn) are
computed separately from the player's full history up to each maturity horizon.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Callable, Dict, List

import pandas as pd

from . import config
from .cleaning import to_utc
from .entities import Event, PaymentTxn, Player
from .exceptions import ConfigurationError
from .feature_catalog import ALL_FEATURES, FEATURE_CATALOG, PlayerWindow

logger = logging.getLogger(__name__)

LABEL_FIELDS = ("ltv_d3", "ltv_d7", "ltv_d30", "ltv_d60", "ltv_d90", "is_churned_d14")
ATTRIBUTE_FIELDS = ("channel", "campaign_id", "country", "os", "device_tier", "install_date")


@dataclass(frozen=True)
class FeatureRow:
    user_id: str
    install_time: datetime
    install_date: str
    channel: str
    campaign_id: str
    country: str
    os: str
    device_tier: str
    consent_tracking: bool
    features: Dict[str, float] = field(default_factory=dict)
    ltv_d3: float = 0.0
    ltv_d7: float = 0.0
    ltv_d30: float = 0.0
    ltv_d60: float = 0.0
    ltv_d90: float = 0.0
    is_churned_d14: float = 0.0

    @property
    def install_month(self) -> str:
        return self.install_date[:7]

    def value(self, name: str):
        return resolve_accessor(name)(self)


def _feature_accessor(name: str) -> Callable[[FeatureRow], float]:
    return lambda row: row.features.get(name, 0.0)


def _field_accessor(name: str) -> Callable[[FeatureRow], object]:
    return lambda row: getattr(row, name)


ROW_ACCESSORS: Dict[str, Callable[[FeatureRow], object]] = {
    **{name: _feature_accessor(name) for name in ALL_FEATURES},
    **{name: _field_accessor(name) for name in LABEL_FIELDS + ATTRIBUTE_FIELDS},
}


def resolve_accessor(name: str) -> Callable[[FeatureRow], object]:
    """Look up a feature, label or attribute accessor by name."""
    try:
        return ROW_ACCESSORS[name]
    except KeyError:
        raise ConfigurationError(f"Unknown feature or field: {name}", {"name": name}) from None


def validate_names(names, allowed=None) -> None:
    """Reject any name that is not a known row field (or not in ``allowed``)."""
    pool = ROW_ACCESSORS if allowed is None else allowed
    unknown = [n for n in names if n not in pool]
    if unknown:
        raise ConfigurationError(f"Unknown features: {', '.join(unknown)}", {"unknown": unknown})


# ── Computation ─────────────────────────────────────────────────────
def _group_by_user(records, time_attr: str) -> Dict[str, list]:
    grouped: Dict[str, list] = defaultdict(list)
    for rec in records:
        ts = getattr(rec, time_attr)
        if rec.user_id is None or ts is None:
            continue
        grouped[rec.user_id].append((to_utc(ts), rec))
    return {uid: [r for _, r in sorted(items, key=lambda x: x[0])] for uid, items in grouped.items()}


def _labels(install: datetime, events: List[Event], payments: List[PaymentTxn]) -> Dict[str, float]:
    labels = {}
    for name, days in config.LABEL_HORIZONS.items():
        horizon = install + timedelta(days=days)
        labels[name] = round(sum(t.amount for t in payments if install <= to_utc(t.txn_time) <= horizon), 2)
    lo, hi = (install + timedelta(days=d) for d in config.CHURN_WINDOW_DAYS)
    returned = any(lo < to_utc(e.event_time) <= hi for e in events)
    labels["is_churned_d14"] = 0.0 if returned else 1.0
    return labels


def build_window(player: Player, events: List[Event], payments: List[PaymentTxn]) -> PlayerWindow:
    """Cut the player's D0-D7 observation window. Nothing after the end is kept.

    Records in the window carry UTC timestamps whatever clock they arrived on.
    """
    install = to_utc(player.install_time)
    events = [replace(e, event_time=to_utc(e.event_time)) for e in events]
    payments = [replace(t, txn_time=to_utc(t.txn_time)) for t in payments]
    end = install + timedelta(days=config.FEATURE_WINDOW_DAYS)
    return PlayerWindow(
        player=player,
        install=install,
        end=end,
        events=tuple(e for e in events if install <= e.event_time <= end),
        payments=tuple(t for t in payments if install <= t.txn_time <= end),
    )


def compute_row(player: Player, events: List[Event], payments: List[PaymentTxn]) -> FeatureRow:
    window = build_window(player, events, payments)
    values = {name: float(spec.compute(window)) for name, spec in FEATURE_CATALOG.items()}
    labels = _labels(window.install, events, payments)
    return FeatureRow(
        user_id=player.user_id,
        install_time=window.install,
        install_date=window.install.date().isoformat(),
        channel=player.channel,
        campaign_id=player.campaign_id,
        country=player.country,
        os=player.os,
        device_tier=player.device_tier,
        consent_tracking=player.consent_tracking,
        features=values,
        **labels,
    )


def compute_features(players: List[Player], events: List[Event],
                     payments: List[PaymentTxn]) -> List[FeatureRow]:
    """One FeatureRow per distinct player, in input order. Deterministic."""
    events_by_user = _group_by_user(events, "event_time")
    payments_by_user = _group_by_user(payments, "txn_time")

    rows, seen = [], set()
    for player in players:
        if player.user_id in seen:
            continue
        seen.add(player.user_id)
        rows.append(compute_row(
            player,
            events_by_user.get(player.user_id, []),
            payments_by_user.get(player.user_id, []),
        ))
    logger.info("Computed %d features for %d players", len(ALL_FEATURES), len(rows))
    return rows


def to_frame(rows: List[FeatureRow], columns=None) -> pd.DataFrame:
    """Flatten rows into a DataFrame (user_id, attributes, features, labels)."""
    records = []
    for r in rows:
        rec = {"user_id": r.user_id, "consent_tracking": r.consent_tracking}
        rec.update({name: getattr(r, name) for name in ATTRIBUTE_FIELDS})
        rec.update(r.features)
        rec.update({name: getattr(r, name) for name in LABEL_FIELDS})
        records.append(rec)
    df = pd.DataFrame.from_records(records)
    if columns is not None:
        df = df.reindex(columns=["user_id"] + [c for c in columns if c != "user_id"])
    return df
