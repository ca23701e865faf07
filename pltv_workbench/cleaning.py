"""
cleaning.py — Six-stage cleaning pipeline for raw events and payments.

Stages run in a fixed order: dedup → normalize & quarantine → identity/consent join →
revenue standardization → schema validation → volume anomaly detection. Nothing here
raises on bad data; every problem ends up as a counter on the CleaningReport.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Tuple

import pandas as pd

from . import config
from .entities import Event, PaymentTxn, Player

logger = logging.getLogger(__name__)


@dataclass
class CleaningReport:
    raw_event_count: int = 0
    deduped_event_count: int = 0
    duplicates_removed: int = 0
    duplicate_examples: List[str] = field(default_factory=list)
    timestamps_normalized: int = 0
    late_events_quarantined: int = 0
    pre_install_quarantined: int = 0
    post_horizon_quarantined: int = 0
    late_event_examples: List[Dict[str, object]] = field(default_factory=list)
    invalid_events_dropped: int = 0
    orphan_events: int = 0
    total_players: int = 0
    players_with_consent: int = 0
    players_without_consent: int = 0
    identity_joins: int = 0
    total_txn: int = 0
    refund_count: int = 0
    gross_revenue: float = 0.0
    refund_amount: float = 0.0
    net_revenue: float = 0.0
    currency_standardized: int = 0
    unknown_currency_txns: int = 0
    null_user_ids: int = 0
    null_event_names: int = 0
    null_timestamps: int = 0
    missing_session_ids: int = 0
    events_per_day: Dict[str, int] = field(default_factory=dict)
    avg_events_per_day: float = 0.0
    std_events_per_day: float = 0.0
    volume_anomalies: List[Dict[str, object]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class CleanResult:
    events: List[Event]
    payments: List[PaymentTxn]
    report: CleaningReport
    refunded_payments: List[PaymentTxn] = field(default_factory=list)

    def __iter__(self):
        return iter((self.events, self.payments, self.report))


# ── Clock helpers ───────────────────────────────────────────────────
def to_utc(ts: datetime) -> datetime:
    """Map any timestamp onto the UTC clock; naive values are read as UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _needs_normalizing(ts: datetime) -> bool:
    return ts.tzinfo is not timezone.utc


def install_index(players: Iterable[Player]) -> Dict[str, datetime]:
    """user_id → install time on the UTC clock (first record wins)."""
    index: Dict[str, datetime] = {}
    for p in players:
        index.setdefault(p.user_id, to_utc(p.install_time))
    return index


# ── Stages ──────────────────────────────────────────────────────────
def deduplicate(events: List[Event], report: CleaningReport) -> List[Event]:
    seen = set()
    kept = []
    for e in events:
        ts = to_utc(e.event_time) if e.event_time is not None else None
        key = (e.user_id, e.session_id, ts, e.event_name)
        if key in seen:
            report.duplicates_removed += 1
            if len(report.duplicate_examples) < config.MAX_DUPLICATE_EXAMPLES:
                report.duplicate_examples.append(
                    f"{e.user_id}|{e.session_id}|{ts.isoformat() if ts else None}|{e.event_name}"
                )
            continue
        seen.add(key)
        kept.append(e)
    report.deduped_event_count = len(kept)
    return kept


def normalize_and_quarantine(events: List[Event], installs: Dict[str, datetime],
                             report: CleaningReport) -> List[Event]:
    kept = []
    for e in events:
        if e.user_id is None or e.event_time is None:
            report.invalid_events_dropped += 1
            continue
        if _needs_normalizing(e.event_time):
            report.timestamps_normalized += 1
            e = replace(e, event_time=to_utc(e.event_time))

        install = installs.get(e.user_id)
        if install is None:
            kept.append(e)
            continue

        if e.event_time < install - config.DRIFT_TOLERANCE:
            report.pre_install_quarantined += 1
            reason = "pre_install"
        elif e.event_time > install + config.QUARANTINE_HORIZON:
            report.post_horizon_quarantined += 1
            reason = "post_horizon"
        else:
            kept.append(e)
            continue

        report.late_events_quarantined += 1
        if len(report.late_event_examples) < config.MAX_LATE_EXAMPLES:
            offset_h = (e.event_time - install).total_seconds() / 3600
            report.late_event_examples.append({
                "user_id": e.user_id,
                "event_name": e.event_name,
                "offset_hours": round(offset_h, 1),
                "reason": reason,
            })
    return kept


def join_identity(players: List[Player], events: List[Event], installs: Dict[str, datetime],
                  report: CleaningReport) -> None:
    report.total_players = len(installs)
    consent = {}
    for p in players:
        consent.setdefault(p.user_id, p.consent_tracking)
    report.players_with_consent = sum(1 for v in consent.values() if v)
    report.players_without_consent = report.total_players - report.players_with_consent
    report.identity_joins = sum(1 for e in events if e.user_id in installs)
    report.orphan_events = len(events) - report.identity_joins


def standardize_revenue(payments: List[PaymentTxn],
                        report: CleaningReport) -> Tuple[List[PaymentTxn], List[PaymentTxn]]:
    """Convert to the base currency and split into (net stream, refunded audit stream)."""
    net, refunded = [], []
    gross = refund = 0.0
    for txn in payments:
        rate = config.FX_RATES_TO_USD.get(txn.currency.upper())
        if rate is None:
            report.unknown_currency_txns += 1
            continue
        txn = replace(txn, txn_time=to_utc(txn.txn_time))
        if txn.currency.upper() != config.BASE_CURRENCY:
            txn = replace(txn, amount=round(txn.amount * rate, 4), currency=config.BASE_CURRENCY)
        report.currency_standardized += 1
        gross += txn.amount
        if txn.is_refund:
            refund += txn.amount
            refunded.append(txn)
        else:
            net.append(txn)

    report.total_txn = len(net) + len(refunded)
    report.refund_count = len(refunded)
    report.gross_revenue = round(gross, 2)
    report.refund_amount = round(refund, 2)
    report.net_revenue = round(gross - refund, 2)
    return net, refunded


def validate_schema(events: List[Event], report: CleaningReport) -> None:
    for e in events:
        if not e.user_id:
            report.null_user_ids += 1
        if not e.event_name:
            report.null_event_names += 1
        if e.event_time is None:
            report.null_timestamps += 1
        if not e.session_id:
            report.missing_session_ids += 1


def detect_volume_anomalies(events: List[Event], report: CleaningReport) -> None:
    if not events:
        return
    days = pd.Series([e.event_time.date().isoformat() for e in events])
    counts = days.value_counts().sort_index()
    values = counts.values.astype(float)
    mean = float(values.mean())
    std = float(values.std(ddof=0))
    report.events_per_day = {day: int(n) for day, n in counts.items()}
    report.avg_events_per_day = round(mean, 2)
    report.std_events_per_day = round(std, 2)
    if std == 0:
        return
    z = (values - mean) / std
    for day, n, score in zip(counts.index, values, z):
        if abs(score) > config.VOLUME_Z_THRESHOLD:
            report.volume_anomalies.append({
                "date": day,
                "count": int(n),
                "z_score": round(float(score), 2),
                "direction": "spike" if score > 0 else "drop",
            })


# ── Entry point ─────────────────────────────────────────────────────
def clean(players: List[Player], events: List[Event], payments: List[PaymentTxn]) -> CleanResult:
    """Run every cleaning stage and return cleaned events/payments plus the report."""
    report = CleaningReport(raw_event_count=len(events))
    installs = install_index(players)

    deduped = deduplicate(events, report)
    kept = normalize_and_quarantine(deduped, installs, report)
    join_identity(players, kept, installs, report)
    net, refunded = standardize_revenue(payments, report)
    validate_schema(events, report)
    detect_volume_anomalies(kept, report)

    logger.info(
        "Cleaned %d raw events → %d kept (%d duplicates, %d quarantined, %d invalid); "
        "%d txns, net revenue %.2f",
        report.raw_event_count, len(kept), report.duplicates_removed,
        report.late_events_quarantined, report.invalid_events_dropped,
        report.total_txn, report.net_revenue,
    )
    if report.volume_anomalies:
        logger.info("Volume anomalies on %d day(s)", len(report.volume_anomalies))
    return CleanResult(events=kept, payments=net, report=report, refunded_payments=refunded)
