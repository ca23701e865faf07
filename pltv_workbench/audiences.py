"""
audiences.py — Activation audiences and per-channel value roll-ups from scored users.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

import pandas as pd

from .features import FeatureRow
from .trainer import ScoredUser


@dataclass(frozen=True)
class AudienceSegment:
    id: str
    name: str
    description: str
    criteria: str
    user_ids: tuple
    user_count: int
    eligible_count: int      # users with tracking consent, i.e. uploadable to ad networks
    avg_predicted: float
    avg_actual: float


AUDIENCE_RULES = [
    ("seed_hv_top1", "Seed: Top 1% Whales", "Highest predicted LTV users for a lookalike seed",
     "is_top_1pct", lambda u, r: u.is_top_1pct),
    ("seed_hv_d7", "Seed: High Value D7", "Top 20% predicted value for a broad lookalike",
     "decile >= 9", lambda u, r: u.decile >= 9),
    ("potential_payer", "Potential Payer (No Purchase Yet)",
     "High predicted value but no purchase yet; target with offers",
     "is_payer_by_d7 = 0 AND decile >= 7",
     lambda u, r: r.features.get("is_payer_by_d7", 0) == 0 and u.decile >= 7),
    ("hv_churn_risk", "High Value x Churn Risk", "Valuable users showing churn signals; retention campaign",
     "decile >= 7 AND is_churned_d14 = 1", lambda u, r: u.decile >= 7 and r.is_churned_d14 == 1),
    ("reactivation", "Reactivation: Lapsed High Value", "High predicted value but low first-week activity",
     "decile >= 6 AND active_days_w7d <= 2",
     lambda u, r: u.decile >= 6 and r.features.get("active_days_w7d", 0) <= 2),
]


def _segment(rule, pairs) -> AudienceSegment:
    seg_id, name, description, criteria, predicate = rule
    members = [(u, r) for u, r in pairs if predicate(u, r)]
    n = len(members)
    return AudienceSegment(
        id=seg_id,
        name=name,
        description=description,
        criteria=criteria,
        user_ids=tuple(u.user_id for u, _ in members),
        user_count=n,
        eligible_count=sum(1 for _, r in members if r.consent_tracking),
        avg_predicted=round(sum(u.predicted for u, _ in members) / n, 2) if n else 0.0,
        avg_actual=round(sum(u.actual for u, _ in members) / n, 2) if n else 0.0,
    )


def build_audiences(scored_users: Sequence[ScoredUser], rows: Sequence[FeatureRow]) -> List[AudienceSegment]:
    """Join scores to feature rows by user_id and cut the standard activation audiences."""
    by_id = {r.user_id: r for r in rows}
    pairs = [(u, by_id[u.user_id]) for u in scored_users if u.user_id in by_id]
    return [_segment(rule, pairs) for rule in AUDIENCE_RULES]


def channel_value_summary(scored_users: Sequence[ScoredUser], rows: Sequence[FeatureRow]) -> pd.DataFrame:
    """Users, predicted and actual value per acquisition channel, highest predicted first."""
    channel = {r.user_id: r.channel for r in rows}
    df = pd.DataFrame({
        "channel": [channel.get(u.user_id, "unknown") for u in scored_users],
        "predicted": [u.predicted for u in scored_users],
        "actual": [u.actual for u in scored_users],
    })
    if df.empty:
        return pd.DataFrame(columns=["channel", "users", "predicted_revenue", "actual_revenue",
                                     "avg_predicted", "avg_actual"])
    out = df.groupby("channel").agg(
        users=("predicted", "size"),
        predicted_revenue=("predicted", "sum"),
        actual_revenue=("actual", "sum"),
    ).reset_index()
    out["avg_predicted"] = (out["predicted_revenue"] / out["users"]).round(2)
    out["avg_actual"] = (out["actual_revenue"] / out["users"]).round(2)
    out["predicted_revenue"] = out["predicted_revenue"].round(2)
    out["actual_revenue"] = out["actual_revenue"].round(2)
    return out.sort_values(["predicted_revenue", "channel"], ascending=[False, True]).reset_index(drop=True)
