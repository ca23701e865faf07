"""
comparator.py — Compare scoring strategies on a fixed set of users.

Three layers:
  * run_comparison          — top-K recall / precision / lift / value capture + Jaccard overlap
  * compute_offline_analysis — seed quality (whale precision@K, Spearman) and lift curves
  * simulate_activation      — closed-form paid-UA response to using each top-K as a lookalike seed

Ranking rule everywhere: score descending, ties broken by user_id ascending.
"""
from __future__ import annotations

import logging
import math
import zlib
from dataclasses import dataclass, field
from itertools import combinations
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from scipy.stats import spearmanr

from . import config
from .exceptions import ConfigurationError
from .features import FeatureRow, resolve_accessor

logger = logging.getLogger(__name__)

KValue = Union[int, float]


@dataclass(frozen=True)
class StrategyDef:
    id: str
    label: str
    score_fn: Callable[[FeatureRow], float]
    kind: str = "heuristic"
    description: str = ""

    def scores(self, rows: Sequence[FeatureRow]) -> Dict[str, float]:
        return {r.user_id: float(self.score_fn(r)) for r in rows}


# ── Strategy factories ──────────────────────────────────────────────
def model_strategy(scored_users, id: str = "model_a", label: str = "pLTV model") -> StrategyDef:
    """Rank by a trained model's predictions (users it did not score get 0)."""
    preds = {u.user_id: u.predicted for u in scored_users}
    return StrategyDef(id, label, lambda r: preds.get(r.user_id, 0.0), kind="model",
                       description="Predicted LTV from a saved model version.")


def label_proxy_strategy(field_name: str, id: Optional[str] = None,
                         label: Optional[str] = None) -> StrategyDef:
    """Rank by a short-horizon revenue field such as ltv_d3 or ltv_d7."""
    accessor = resolve_accessor(field_name)
    return StrategyDef(id or field_name, label or f"{field_name} ranking",
                       lambda r: float(accessor(r)), kind="proxy",
                       description=f"Observed {field_name} revenue as the score.")


def oracle_strategy(target: str = "ltv_d90") -> StrategyDef:
    accessor = resolve_accessor(target)
    return StrategyDef("oracle", f"Oracle ({target})", lambda r: float(accessor(r)), kind="oracle",
                       description="The true label itself; upper bound for every metric.")


def engagement_score(row: FeatureRow) -> float:
    """Cold-start engagement heuristic: behaviour only, no revenue. Range 0-110."""
    f = row.features
    session = min(f.get("sessions_cnt_w7d", 0) / 15, 1) * 30
    level = min(f.get("max_level_w7d", 0) / 20, 1) * 25
    social = (f.get("joined_guild_by_d3", 0) * 10
              + min(f.get("friends_added_w7d", 0) / 5, 1) * 10
              + min(f.get("chat_messages_w7d", 0) / 20, 1) * 5)
    active = min(f.get("active_days_w7d", 0) / 7, 1) * 15
    economy = min((f.get("shop_views_w7d", 0) + f.get("iap_offer_views_w7d", 0)) / 10, 1) * 15
    return round(session + level + social + active + economy, 2)


def engagement_heuristic_strategy(id: str = "engagement", label: str = "Cold-start engagement") -> StrategyDef:
    return StrategyDef(id, label, engagement_score, kind="heuristic",
                       description="Sessions, progression, social and store browsing; usable at install.")


def _stable_unit(user_id: str, salt: str) -> float:
    """Deterministic value in [-1, 1) from a CRC32 of the user id."""
    h = zlib.crc32(f"{user_id}_{salt}".encode("utf-8"))
    return (h % 1000) / 500 - 1


def noisy_strategy(base: StrategyDef, noise: float = 0.4, id: Optional[str] = None,
                   label: Optional[str] = None) -> StrategyDef:
    """``base`` with ±``noise`` multiplicative jitter, for calibration contrast."""
    def score(row: FeatureRow) -> float:
        value = float(base.score_fn(row))
        return max(0.0, round(value + _stable_unit(row.user_id, "c") * noise * value, 2))
    return StrategyDef(id or f"{base.id}_noisy", label or f"{base.label} (noisy)", score, kind="noisy",
                       description=f"{base.label} with ±{noise:.0%} deterministic noise.")


def standard_strategies(scored_users) -> List[StrategyDef]:
    """Model, cold-start heuristic, noisy model, D3 and D7 revenue proxies."""
    model = model_strategy(scored_users)
    return [
        model,
        engagement_heuristic_strategy(),
        noisy_strategy(model, id="model_noisy", label="pLTV model (noisy ensemble)"),
        label_proxy_strategy("ltv_d3", label="LTV 3d ranking"),
        label_proxy_strategy("ltv_d7", label="LTV 7d ranking"),
    ]


# ── K handling ──────────────────────────────────────────────────────
def resolve_k(k: KValue, total: int) -> int:
    """Absolute count for an int (or integral float > 1), population share for a float in (0, 1].

    Values above the population are clamped to it.
    """
    if isinstance(k, bool) or not isinstance(k, (int, float)) or math.isnan(k):
        raise ConfigurationError(f"K must be a number, got {k!r}")
    if isinstance(k, float) and 0 < k <= 1:
        count = max(1, int(round(total * k)))
    elif k >= 1 and float(k).is_integer():
        count = int(k)
    else:
        raise ConfigurationError(f"K must be a positive count or a fraction in (0, 1], got {k!r}")
    return min(count, total)


def preset_k_values(total_users: int) -> List[int]:
    """Standard K sweep: 0.1%-10% of users plus 100 / 500 / 1000 where they fit."""
    ks = set()
    for p in config.PRESET_K_FRACTIONS:
        k = max(1, int(round(total_users * p)))
        if k <= total_users:
            ks.add(k)
    ks.update(k for k in config.PRESET_K_ABSOLUTE if k <= total_users)
    return sorted(ks)


def rank_order(user_ids: np.ndarray, scores: np.ndarray) -> np.ndarray:
    """Row indices ordered by score desc, user_id asc."""
    clean = np.nan_to_num(np.asarray(scores, dtype=float), nan=-np.inf)
    return np.lexsort((user_ids, -clean))


# ── Comparison ──────────────────────────────────────────────────────
@dataclass(frozen=True)
class StrategyMetrics:
    strategy_id: str
    strategy_label: str
    k: int
    k_pct: float
    recall: float
    precision: float
    lift_vs_random: float
    lift_vs_reference: float
    cum_value_captured: float
    true_top_k_share: float
    mean_label: float
    median_label: float
    selected_count: int
    cold_start_coverage: float
    consent_coverage: float


@dataclass(frozen=True)
class OverlapEntry:
    k: int
    strategy_a: str
    strategy_b: str
    jaccard: float


@dataclass
class ComparisonResult:
    target: str
    total_users: int
    strategies: List[str]
    k_values: List[int]
    reference_strategy_id: str
    metrics: List[StrategyMetrics] = field(default_factory=list)
    overlaps: List[OverlapEntry] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)

    def metric(self, strategy_id: str, k: int) -> StrategyMetrics:
        for m in self.metrics:
            if m.strategy_id == strategy_id and m.k == k:
                return m
        raise KeyError((strategy_id, k))

    def overlap(self, a: str, b: str, k: int) -> float:
        for o in self.overlaps:
            if o.k == k and {o.strategy_a, o.strategy_b} == {a, b}:
                return o.jaccard
        raise KeyError((a, b, k))


def _check_strategies(strategies: Sequence[StrategyDef]) -> None:
    if not strategies:
        raise ConfigurationError("At least one strategy is required")
    ids = [s.id for s in strategies]
    dupes = sorted({i for i in ids if ids.count(i) > 1})
    if dupes:
        raise ConfigurationError(f"Duplicate strategy ids: {', '.join(dupes)}", {"duplicates": dupes})


def _ratio(a: float, b: float) -> float:
    return round(a / b, 4) if b > 0 else 0.0


def run_comparison(rows: Sequence[FeatureRow], strategies: Sequence[StrategyDef],
                   k_values: Sequence[KValue], target: str = "ltv_d90",
                   reference_strategy_id: str = config.DEFAULT_REFERENCE_STRATEGY) -> ComparisonResult:
    """Top-K comparison of every strategy at every K against the true ``target`` ranking.

    The reference strategy for ``lift_vs_reference`` falls back to ranking by ``ltv_d7``
    when no strategy carries ``reference_strategy_id``.
    """
    _check_strategies(strategies)
    if not k_values:
        raise ConfigurationError("At least one K value is required")
    label_of = resolve_accessor(target)
    rows = list(rows)
    n = len(rows)
    result = ComparisonResult(target=target, total_users=n, strategies=[s.id for s in strategies],
                              k_values=[], reference_strategy_id=reference_strategy_id,
                              labels={s.id: s.label for s in strategies})
    if n == 0:
        return result

    ks = sorted({resolve_k(k, n) for k in k_values})
    result.k_values = ks

    user_ids = np.array([r.user_id for r in rows])
    y = np.array([float(label_of(r)) for r in rows], dtype=float)
    early = np.array([r.ltv_d7 > 0 or r.ltv_d30 > 0 for r in rows])
    consent = np.array([bool(r.consent_tracking) for r in rows])
    total_value = y.sum()
    global_mean = y.mean()

    orders = {s.id: rank_order(user_ids, [s.score_fn(r) for r in rows]) for s in strategies}
    true_order = rank_order(user_ids, y)
    ref_order = orders.get(reference_strategy_id)
    if ref_order is None:
        ref_order = rank_order(user_ids, [r.ltv_d7 for r in rows])

    for k in ks:
        true_top = set(true_order[:k].tolist())
        true_share = _ratio(y[true_order[:k]].sum(), total_value)
        ref_mean = y[ref_order[:k]].mean()
        selections = {}
        for s in strategies:
            idx = orders[s.id][:k]
            selections[s.id] = set(idx.tolist())
            hits = len(selections[s.id] & true_top)
            chosen = y[idx]
            result.metrics.append(StrategyMetrics(
                strategy_id=s.id,
                strategy_label=s.label,
                k=k,
                k_pct=round(k / n * 100, 2),
                recall=_ratio(hits, len(true_top)),
                precision=_ratio(hits, k),
                lift_vs_random=_ratio(chosen.mean(), global_mean),
                lift_vs_reference=_ratio(chosen.mean(), ref_mean),
                cum_value_captured=_ratio(chosen.sum(), total_value),
                true_top_k_share=true_share,
                mean_label=round(float(chosen.mean()), 4),
                median_label=round(float(np.median(chosen)), 4),
                selected_count=k,
                cold_start_coverage=round(float(early[idx].mean()), 4),
                consent_coverage=round(float(consent[idx].mean()), 4),
            ))
        for a, b in combinations(strategies, 2):
            sa, sb = selections[a.id], selections[b.id]
            union = len(sa | sb)
            result.overlaps.append(OverlapEntry(k, a.id, b.id, _ratio(len(sa & sb), union)))

    logger.info("Compared %d strategies on %d users at K=%s (target %s)",
                len(strategies), n, ks, target)
    return result


# ── Insights ────────────────────────────────────────────────────────
@dataclass
class ComparisonInsights:
    summary: str
    bullets: List[Tuple[str, str]] = field(default_factory=list)   # (kind, text)
    best_at_small_k: Optional[str] = None
    best_at_mid_k: Optional[str] = None
    best_at_large_k: Optional[str] = None
    flip_points: List[Tuple[int, int, str]] = field(default_factory=list)
    recommendations: List[Dict[str, str]] = field(default_factory=list)


def _best_in_band(result: ComparisonResult, ks: List[int]) -> Optional[str]:
    if not ks:
        return None
    best, best_recall = None, -1.0
    for sid in result.strategies:
        recalls = [m.recall for m in result.metrics if m.strategy_id == sid and m.k in ks]
        avg = sum(recalls) / len(recalls) if recalls else 0.0
        if avg > best_recall:
            best, best_recall = sid, avg
    return best


def summarize_insights(result: ComparisonResult) -> ComparisonInsights:
    """Plain-language read-out: winners per K band, flip points, warnings."""
    if not result.metrics:
        return ComparisonInsights(summary="No data to analyze.")
    n = result.total_users
    small = [k for k in result.k_values if k / n <= 0.005]
    mid = [k for k in result.k_values if 0.005 < k / n <= 0.02]
    large = [k for k in result.k_values if k / n > 0.02]
    insights = ComparisonInsights(
        summary="",
        best_at_small_k=_best_in_band(result, small),
        best_at_mid_k=_best_in_band(result, mid),
        best_at_large_k=_best_in_band(result, large),
    )
    label = lambda sid: result.labels.get(sid, sid) if sid else "-"

    prev_winner, prev_k = None, None
    for k in result.k_values:
        at_k = [m for m in result.metrics if m.k == k]
        winner = at_k[0]
        for m in at_k[1:]:
            if m.recall > winner.recall:
                winner = m
        if prev_winner is not None and winner.strategy_id != prev_winner:
            insights.flip_points.append((prev_k, k, winner.strategy_id))
        prev_winner, prev_k = winner.strategy_id, k

    bands = [
        (insights.best_at_small_k, "Best for VIP/whale targeting (small K)", "VIP / Whale Targeting",
         "Highest recall at top 0.1-0.5%"),
        (insights.best_at_mid_k, "Best at mid-range K (1-2%)", "Ad Seed Audiences",
         "Best capture rate at 1-2% selection"),
        (insights.best_at_large_k, "Best for broad targeting (5-10%)", "Broad Targeting",
         "Best recall at 5%+ selection"),
    ]
    for sid, text, use_case, reason in bands:
        if sid:
            insights.bullets.append(("good", f"{text}: {label(sid)}"))
            insights.recommendations.append({"use_case": use_case, "strategy": sid, "reason": reason})
    if insights.flip_points:
        ks = ", ".join(f"K={to_k}" for _, to_k, _ in insights.flip_points)
        insights.bullets.append(("info", f"Winner changes at {ks}; consider switching strategy by audience size"))

    small_samples = [m for m in result.metrics if m.selected_count < 30]
    if small_samples:
        insights.bullets.append(("warning", f"{len(small_samples)} evaluations have <30 users; results may be unreliable"))
    if any(m.cold_start_coverage < 0.5 for m in result.metrics if m.strategy_id.startswith("ltv")):
        insights.bullets.append(("warning", "Low cold-start coverage for early-day LTV strategies; "
                                            "many selected users have no revenue signal"))
    twins = sorted({(o.strategy_a, o.strategy_b) for o in result.overlaps if o.jaccard >= 0.9})
    if twins:
        pairs = ", ".join(f"{a}/{b}" for a, b in twins)
        insights.bullets.append(("warning", f"Near-identical selections (Jaccard ≥ 0.9): {pairs}"))

    top = insights.best_at_mid_k or insights.best_at_small_k or insights.best_at_large_k or result.strategies[0]
    mid_k = result.k_values[len(result.k_values) // 2]
    top_metric = result.metric(top, mid_k)
    insights.summary = (
        f"Across {len(result.strategies)} strategies evaluated on {n:,} users, {label(top)} achieves the best "
        f"overall recall. At K={mid_k} ({top_metric.k_pct}%), it captures {top_metric.recall * 100:.1f}% of the "
        f"true top users by {result.target} with {top_metric.lift_vs_random}x lift over random selection. "
        + (f"The winning strategy flips {len(insights.flip_points)} time(s) across the K sweep."
           if insights.flip_points else "The winner is consistent across all K values.")
    )
    return insights


# ── Offline seed quality ────────────────────────────────────────────
@dataclass(frozen=True)
class SeedQuality:
    strategy_id: str
    strategy_label: str
    k: int
    precision_at_k: float
    spearman: float
    revenue_captured: float
    seed_size: int
    eligible_seed_size: int


@dataclass
class OfflineAnalysis:
    target: str
    total_users: int
    total_value: float
    whale_threshold: float
    k: int
    k_pct: float
    avg_ltv_d30: float
    seed_quality: List[SeedQuality] = field(default_factory=list)
    lift_curves: Dict[str, List[Tuple[float, float]]] = field(default_factory=dict)

    def quality(self, strategy_id: str) -> SeedQuality:
        for q in self.seed_quality:
            if q.strategy_id == strategy_id:
                return q
        raise KeyError(strategy_id)


def compute_offline_analysis(rows: Sequence[FeatureRow], strategies: Sequence[StrategyDef],
                             top_k: KValue, target: str = "ltv_d90",
                             lift_curve_steps: int = config.LIFT_CURVE_STEPS) -> OfflineAnalysis:
    """Seed quality of each strategy's top-K and cumulative value lift curves.

    Whales are users at or above the linear 90th percentile of ``target`` (and > 0).
    """
    _check_strategies(strategies)
    if lift_curve_steps < 1:
        raise ConfigurationError("lift_curve_steps must be at least 1")
    label_of = resolve_accessor(target)
    rows = list(rows)
    n = len(rows)
    if n == 0:
        return OfflineAnalysis(target, 0, 0.0, 0.0, 0, 0.0, 0.0)

    k = resolve_k(top_k, n)
    user_ids = np.array([r.user_id for r in rows])
    y = np.array([float(label_of(r)) for r in rows], dtype=float)
    consent = np.array([bool(r.consent_tracking) for r in rows])
    total = float(y.sum())
    threshold = float(np.quantile(y, config.WHALE_QUANTILE))
    is_whale = (y >= threshold) & (y > 0)

    analysis = OfflineAnalysis(
        target=target,
        total_users=n,
        total_value=round(total, 2),
        whale_threshold=round(threshold, 4),
        k=k,
        k_pct=round(k / n * 100, 2),
        avg_ltv_d30=round(float(np.mean([r.ltv_d30 for r in rows])), 4),
    )
    for s in strategies:
        scores = np.array([float(s.score_fn(r)) for r in rows], dtype=float)
        order = rank_order(user_ids, scores)
        seed = order[:k]
        rho, _ = spearmanr(scores, y) if n > 1 else (float("nan"), None)
        analysis.seed_quality.append(SeedQuality(
            strategy_id=s.id,
            strategy_label=s.label,
            k=k,
            precision_at_k=round(float(is_whale[seed].sum() / k), 4),
            spearman=0.0 if rho is None or np.isnan(rho) else round(float(rho), 4),
            revenue_captured=_ratio(y[seed].sum(), total),
            seed_size=k,
            eligible_seed_size=int(consent[seed].sum()),
        ))
        cum = np.cumsum(y[order])
        points = []
        for step in range(1, lift_curve_steps + 1):
            cutoff = max(1, int(n * step / lift_curve_steps))
            points.append((round(cutoff / n, 4), _ratio(cum[cutoff - 1], total)))
        analysis.lift_curves[s.id] = points
    return analysis


# ── Activation simulation ───────────────────────────────────────────
@dataclass(frozen=True)
class ActivationConfig:
    budget: float = 10_000.0
    base_cpi: float = 2.5
    sensitivity: float = 0.5
    base_rpi: Optional[float] = None
    reference_strategy_id: Optional[str] = None
    horizon_days: int = 30


@dataclass(frozen=True)
class ActivationResult:
    strategy_id: str
    strategy_label: str
    seed_size: int
    eligible_seed_size: int
    value_concentration: float
    delta_vs_reference: float
    cpi: float
    installs: int
    revenue_per_install: float
    revenue: float
    roas: float
    profit: float
    revenue_curve: Tuple[float, ...]


@dataclass
class ActivationReport:
    reference_strategy_id: Optional[str]
    reference_concentration: float
    results: List[ActivationResult]

    @property
    def best(self) -> Optional[ActivationResult]:
        if not self.results:
            return None
        return sorted(self.results, key=lambda r: (-r.roas, r.strategy_id))[0]


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def revenue_curve(total: float, concentration: float, horizon_days: int) -> List[float]:
    """Cumulative revenue for day 0..horizon: saturating exponential, last point == total.

    Seeds with more concentrated value front-load revenue (steeper curve).
    """
    shape = _clamp(1.2 + 2.2 * concentration, 1.2, 3.4)
    norm = 1 - math.exp(-shape)
    curve = [round(total * (1 - math.exp(-shape * d / horizon_days)) / norm, 2) for d in range(horizon_days + 1)]
    curve[-1] = round(total, 2)
    return curve


def simulate_activation(offline: OfflineAnalysis, activation: Optional[ActivationConfig] = None) -> ActivationReport:
    """Closed-form lookalike activation response for each strategy's top-K seed.

    delta = seed value concentration − reference concentration
    cpi   = clamp(base_cpi · (1 − 0.55·s·delta), 0.55·base_cpi, 1.70·base_cpi)
    rpi   = base_rpi · clamp(1 + 1.65·s·delta, 0.4, 2.4)
    """
    activation = activation or ActivationConfig()
    if activation.budget <= 0:
        raise ConfigurationError(f"budget must be positive, got {activation.budget}")
    if activation.base_cpi <= 0:
        raise ConfigurationError(f"base_cpi must be positive, got {activation.base_cpi}")
    if not 0 <= activation.sensitivity <= 1:
        raise ConfigurationError(f"sensitivity must be in [0, 1], got {activation.sensitivity}")
    if activation.horizon_days < 1:
        raise ConfigurationError("horizon_days must be at least 1")
    if activation.base_rpi is not None and activation.base_rpi < 0:
        raise ConfigurationError("base_rpi cannot be negative")

    quality = offline.seed_quality
    if not quality:
        return ActivationReport(activation.reference_strategy_id, 0.0, [])

    ref_id = activation.reference_strategy_id or config.DEFAULT_REFERENCE_STRATEGY
    ref = next((q for q in quality if q.strategy_id == ref_id), None)
    if ref is None and activation.reference_strategy_id is not None:
        raise ConfigurationError(f"Unknown reference strategy {activation.reference_strategy_id!r}")
    if ref is not None:
        ref_conc, ref_id = ref.revenue_captured, ref.strategy_id
    else:
        ref_conc, ref_id = float(np.mean([q.revenue_captured for q in quality])), None

    base_rpi = offline.avg_ltv_d30 if activation.base_rpi is None else activation.base_rpi
    s = activation.sensitivity
    results = []
    for q in quality:
        delta = q.revenue_captured - ref_conc
        cpi = _clamp(activation.base_cpi * (1 - 0.55 * s * delta), 0.55 * activation.base_cpi, 1.70 * activation.base_cpi)
        installs = int(math.floor(activation.budget / cpi))
        rpi = base_rpi * _clamp(1 + 1.65 * s * delta, 0.4, 2.4)
        revenue = installs * rpi
        results.append(ActivationResult(
            strategy_id=q.strategy_id,
            strategy_label=q.strategy_label,
            seed_size=q.seed_size,
            eligible_seed_size=q.eligible_seed_size,
            value_concentration=q.revenue_captured,
            delta_vs_reference=round(delta, 4),
            cpi=round(cpi, 4),
            installs=installs,
            revenue_per_install=round(rpi, 4),
            revenue=round(revenue, 2),
            roas=round(revenue / activation.budget, 4),
            profit=round(revenue - activation.budget, 2),
            revenue_curve=tuple(revenue_curve(revenue, q.revenue_captured, activation.horizon_days)),
        ))
    report = ActivationReport(ref_id, round(ref_conc, 4), results)
    if report.best is not None:
        logger.info("Activation sim: best ROAS %.2f from %s (budget %.0f, base CPI %.2f)",
                    report.best.roas, report.best.strategy_id, activation.budget, activation.base_cpi)
    return report

