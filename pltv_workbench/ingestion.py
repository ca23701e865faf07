"""
ingestion.py — Read players / events / payments CSVs into typed entities.

Column presence is checked up front and raises InputValidationError. Cell-level
problems (bad timestamps, blank ids) are carried through as None so the cleaning
report can count them.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

import pandas as pd

from .entities import Event, PaymentTxn, Player
from .exceptions import InputValidationError

logger = logging.getLogger(__name__)

PLAYER_REQUIRED = ["user_id", "install_time", "channel", "campaign_id", "country", "os", "consent_tracking"]
EVENT_REQUIRED = ["user_id", "event_name", "event_time", "session_id"]
PAYMENT_REQUIRED = ["user_id", "txn_time", "amount"]

TRUE_VALUES = {"true", "1", "yes", "y", "t"}
DEVICE_TIERS = ("low", "mid", "high")


# ── Cell parsers ────────────────────────────────────────────────────
def _text(value) -> Optional[str]:
    if value is None or pd.isna(value):
        return None
    value = str(value).strip()
    return value or None


def _flag(value) -> bool:
    text = _text(value)
    return text is not None and text.lower() in TRUE_VALUES


def _timestamp(value):
    """Parse an ISO-ish timestamp, keeping any offset. Unparseable → None."""
    text = _text(value)
    if text is None:
        return None
    try:
        ts = pd.Timestamp(text)
    except (ValueError, TypeError):
        return None
    if pd.isna(ts):
        return None
    return ts.to_pydatetime()


def _amount(value) -> Optional[float]:
    text = _text(value)
    if text is None:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def parse_params(raw: Optional[str]) -> Dict[str, object]:
    """Parse ``"level=5;mode=ranked"`` into ``{"level": 5.0, "mode": "ranked"}``."""
    params: Dict[str, object] = {}
    if not raw:
        return params
    for pair in str(raw).split(";"):
        if "=" not in pair:
            continue
        key, value = pair.split("=", 1)
        key, value = key.strip(), value.strip()
        if not key:
            continue
        try:
            params[key] = float(value)
        except ValueError:
            params[key] = value
    return params


# ── Frame validation ────────────────────────────────────────────────
def _read_frame(source, kind: str) -> pd.DataFrame:
    try:
        df = pd.read_csv(source, dtype=str, keep_default_na=False, low_memory=False)
    except pd.errors.EmptyDataError as exc:
        raise InputValidationError(f"{kind} file is empty", {"kind": kind}) from exc
    df.columns = [str(c).strip() for c in df.columns]
    return df


def validate_columns(df: pd.DataFrame, required: List[str], kind: str) -> None:
    """Reject a frame that is empty or misses any required column."""
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise InputValidationError(
            f"{kind} input is missing required columns: {', '.join(missing)}",
            {"kind": kind, "missing": missing},
        )
    if df.empty:
        raise InputValidationError(f"{kind} input has no rows", {"kind": kind})


# ── Frame → entities ────────────────────────────────────────────────
def players_from_frame(df: pd.DataFrame) -> List[Player]:
    validate_columns(df, PLAYER_REQUIRED, "players")
    players = []
    skipped = 0
    for rec in df.to_dict("records"):
        user_id = _text(rec.get("user_id"))
        install_time = _timestamp(rec.get("install_time"))
        if user_id is None or install_time is None:
            skipped += 1
            continue
        tier = (_text(rec.get("device_tier")) or "mid").lower()
        players.append(Player(
            user_id=user_id,
            install_time=install_time,
            channel=_text(rec.get("channel")) or "unknown",
            campaign_id=_text(rec.get("campaign_id")) or "",
            country=_text(rec.get("country")) or "",
            os=_text(rec.get("os")) or "",
            consent_tracking=_flag(rec.get("consent_tracking")),
            consent_marketing=_flag(rec.get("consent_marketing")),
            install_id=_text(rec.get("install_id")) or "",
            adset_id=_text(rec.get("adset_id")) or "",
            creative_id=_text(rec.get("creative_id")) or "",
            device_model=_text(rec.get("device_model")) or "",
            device_tier=tier if tier in DEVICE_TIERS else "mid",
        ))
    if skipped:
        logger.warning("Skipped %d player rows without user_id or install_time", skipped)
    return players


def events_from_frame(df: pd.DataFrame) -> List[Event]:
    validate_columns(df, EVENT_REQUIRED, "events")
    return [
        Event(
            user_id=_text(rec.get("user_id")),
            event_name=_text(rec.get("event_name")),
            event_time=_timestamp(rec.get("event_time")),
            session_id=_text(rec.get("session_id")),
            params=parse_params(_text(rec.get("params"))),
        )
        for rec in df.to_dict("records")
    ]


def payments_from_frame(df: pd.DataFrame) -> List[PaymentTxn]:
    if "amount" not in df.columns and "amount_usd" in df.columns:
        df = df.rename(columns={"amount_usd": "amount"})
    validate_columns(df, PAYMENT_REQUIRED, "payments")
    payments = []
    skipped = 0
    for rec in df.to_dict("records"):
        user_id = _text(rec.get("user_id"))
        txn_time = _timestamp(rec.get("txn_time"))
        amount = _amount(rec.get("amount"))
        if user_id is None or txn_time is None or amount is None:
            skipped += 1
            continue
        payments.append(PaymentTxn(
            user_id=user_id,
            amount=amount,
            txn_time=txn_time,
            currency=(_text(rec.get("currency")) or "USD").upper(),
            payment_channel=_text(rec.get("payment_channel")) or "",
            product_sku=_text(rec.get("product_sku")) or "",
            is_refund=_flag(rec.get("is_refund")),
        ))
    if skipped:
        logger.warning("Skipped %d payment rows with missing user, time or amount", skipped)
    return payments


def read_players(source) -> List[Player]:
    players = players_from_frame(_read_frame(source, "players"))
    logger.info("Loaded %d players", len(players))
    return players


def read_events(source) -> List[Event]:
    events = events_from_frame(_read_frame(source, "events"))
    logger.info("Loaded %d events", len(events))
    return events


def read_payments(source) -> List[PaymentTxn]:
    payments = payments_from_frame(_read_frame(source, "payments"))
    logger.info("Loaded %d payments", len(payments))
    return payments
