"""
feature_catalog.py — D7 feature definitions grouped into semantic blocks.

Each feature is computed from a PlayerWindow, which only holds the player's events and
net payments inside [install, install + 7d]. The catalog is validated once at import.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Sequence

from . import config
from .entities import Event, PaymentTxn, Player

BLOCKS = ("sessions", "progression", "economy", "social", "monetization", "acquisition")
LEAKAGE_RISKS = ("none", "low", "medium", "high")

BLOCK_DESCRIPTIONS = {
    "sessions": "Session frequency, length and play rhythm in the first week.",
    "progression": "Level, quest and combat depth, the core engagement signal.",
    "economy": "Soft/hard currency flows and store browsing.",
    "social": "Guild, friends and chat, a retention proxy.",
    "monetization": "Early payment activity, the strongest pLTV signal (warm track only).",
    "acquisition": "Install-time context known before any play.",
}


@dataclass(frozen=True)
class PlayerWindow:
    """Everything a feature may look at: one player's observation window."""

    player: Player
    install: datetime
    end: datetime
    events: Sequence[Event]
    payments: Sequence[PaymentTxn]

    def events_named(self, *names: str) -> List[Event]:
        return [e for e in self.events if e.event_name in names]

    def events_within(self, days: float) -> List[Event]:
        cutoff = self.install + timedelta(days=days)
        return [e for e in self.events if e.event_time <= cutoff]

    def payments_within(self, days: float) -> List[PaymentTxn]:
        cutoff = self.install + timedelta(days=days)
        return [t for t in self.payments if t.txn_time <= cutoff]

    def hours_since_install(self, ts: datetime) -> float:
        return (ts - self.install).total_seconds() / 3600


@dataclass(frozen=True)
class FeatureSpec:
    name: str
    block: str
    leakage_risk: str
    description: str
    compute: Callable[[PlayerWindow], float]


# ── Sessions ────────────────────────────────────────────────────────
def _sessions_within(days: float) -> Callable[[PlayerWindow], float]:
    def compute(w: PlayerWindow) -> float:
        return float(len({e.session_id for e in w.events_within(days) if e.session_id}))
    return compute


def _session_minutes(w: PlayerWindow) -> float:
    seconds = sum(e.param("duration_seconds") for e in w.events_named("session_end"))
    return round(seconds / 60, 2)


def _avg_session_length(w: PlayerWindow) -> float:
    sessions = _sessions_within(config.FEATURE_WINDOW_DAYS)(w)
    return round(_session_minutes(w) / sessions, 2) if sessions else 0.0


def _active_days(w: PlayerWindow) -> float:
    return float(len({e.event_time.date() for e in w.events}))


def _night_play_ratio(w: PlayerWindow) -> float:
    if not w.events:
        return 0.0
    night = sum(1 for e in w.events if e.event_time.hour >= 22 or e.event_time.hour < 6)
    return round(night / len(w.events), 4)


# ── Progression ─────────────────────────────────────────────────────
def _max_level(w: PlayerWindow) -> float:
    levels = [e.param("level", 1.0) for e in w.events_named("level_up")]
    return max(levels + [1.0])


def _level_gain_rate(w: PlayerWindow) -> float:
    return round((_max_level(w) - 1) / config.FEATURE_WINDOW_DAYS, 4)


def _main_quest_steps(w: PlayerWindow) -> float:
    return float(sum(1 for e in w.events_named("quest_complete")
                     if e.params.get("quest_type", "main") == "main"))


def _count(*names: str) -> Callable[[PlayerWindow], float]:
    def compute(w: PlayerWindow) -> float:
        return float(len(w.events_named(*names)))
    return compute


def _hours_to_first(*names: str) -> Callable[[PlayerWindow], float]:
    def compute(w: PlayerWindow) -> float:
        hits = w.events_named(*names)
        if not hits:
            return config.TIME_SENTINEL_HOURS
        return round(max(0.0, w.hours_since_install(hits[0].event_time)), 2)
    return compute


# ── Economy ─────────────────────────────────────────────────────────
def _amount_sum(name: str) -> Callable[[PlayerWindow], float]:
    def compute(w: PlayerWindow) -> float:
        return round(sum(e.param("amount") for e in w.events_named(name)), 2)
    return compute


# ── Social ──────────────────────────────────────────────────────────
def _joined_guild_by(days: float) -> Callable[[PlayerWindow], float]:
    def compute(w: PlayerWindow) -> float:
        return float(any(e.event_name == "guild_join" for e in w.events_within(days)))
    return compute


# ── Monetization ────────────────────────────────────────────────────
def _is_payer_by(days: float) -> Callable[[PlayerWindow], float]:
    def compute(w: PlayerWindow) -> float:
        return float(len(w.payments_within(days)) > 0)
    return compute


def _revenue_by(days: float) -> Callable[[PlayerWindow], float]:
    def compute(w: PlayerWindow) -> float:
        return round(sum(t.amount for t in w.payments_within(days)), 2)
    return compute


def _num_txn(w: PlayerWindow) -> float:
    return float(len(w.payments))


def _first_purchase_hours(w: PlayerWindow) -> float:
    if not w.payments:
        return config.TIME_SENTINEL_HOURS
    return round(max(0.0, w.hours_since_install(w.payments[0].txn_time)), 2)


# ── Catalog ─────────────────────────────────────────────────────────
_SPECS = [
    FeatureSpec("sessions_cnt_w1d", "sessions", "none", "Distinct sessions in the first 24h", _sessions_within(1)),
    FeatureSpec("sessions_cnt_w3d", "sessions", "none", "Distinct sessions in D0-D3", _sessions_within(3)),
    FeatureSpec("sessions_cnt_w7d", "sessions", "none", "Distinct sessions in D0-D7", _sessions_within(7)),
    FeatureSpec("total_session_time_w7d", "sessions", "none", "Minutes played (session_end durations)", _session_minutes),
    FeatureSpec("avg_session_length_w7d", "sessions", "none", "Average minutes per session", _avg_session_length),
    FeatureSpec("active_days_w7d", "sessions", "none", "Distinct UTC days with any event", _active_days),
    FeatureSpec("night_play_ratio", "sessions", "none", "Share of events between 22:00 and 06:00 UTC", _night_play_ratio),

    FeatureSpec("max_level_w7d", "progression", "none", "Highest level reached", _max_level),
    FeatureSpec("level_gain_rate", "progression", "none", "Levels gained per day", _level_gain_rate),
    FeatureSpec("main_quest_steps_w7d", "progression", "none", "Main-quest completions", _main_quest_steps),
    FeatureSpec("pvp_matches_w7d", "progression", "none", "PvP matches played", _count("pvp_match")),
    FeatureSpec("pve_runs_w7d", "progression", "none", "PvE runs and dungeon clears", _count("pve_run", "dungeon_clear")),
    FeatureSpec("hours_to_first_dungeon", "progression", "none", "Hours until first dungeon clear (999 = none)",
                _hours_to_first("dungeon_clear")),

    FeatureSpec("soft_currency_earned_w7d", "economy", "none", "Soft currency earned", _amount_sum("soft_earn")),
    FeatureSpec("soft_currency_spent_w7d", "economy", "none", "Soft currency spent", _amount_sum("soft_spend")),
    FeatureSpec("hard_currency_earned_w7d", "economy", "low", "Hard currency earned (can include purchases)",
                _amount_sum("hard_earn")),
    FeatureSpec("hard_currency_spent_w7d", "economy", "low", "Hard currency spent (can include purchases)",
                _amount_sum("hard_spend")),
    FeatureSpec("gacha_opens_w7d", "economy", "none", "Gacha pulls", _count("gacha_open")),
    FeatureSpec("shop_views_w7d", "economy", "none", "Shop screen views", _count("shop_view")),
    FeatureSpec("iap_offer_views_w7d", "economy", "none", "IAP offer and battle pass views",
                _count("iap_offer_view", "battle_pass_view")),

    FeatureSpec("joined_guild_by_d3", "social", "none", "Joined a guild within 3 days", _joined_guild_by(3)),
    FeatureSpec("time_to_guild_join_hours", "social", "none", "Hours until guild join inside D0-D7 (999 = none)",
                _hours_to_first("guild_join")),
    FeatureSpec("guild_activity_events_w7d", "social", "none", "Guild activity events", _count("guild_activity")),
    FeatureSpec("friends_added_w7d", "social", "none", "Friends added", _count("friend_add")),
    FeatureSpec("chat_messages_w7d", "social", "none", "Chat messages sent", _count("chat_message")),

    FeatureSpec("is_payer_by_d3", "monetization", "medium", "Any net purchase in D0-D3", _is_payer_by(3)),
    FeatureSpec("is_payer_by_d7", "monetization", "medium", "Any net purchase in D0-D7", _is_payer_by(7)),
    FeatureSpec("num_txn_d7", "monetization", "medium", "Net purchases in D0-D7", _num_txn),
    FeatureSpec("revenue_d3", "monetization", "medium", "Net revenue in D0-D3 (USD)", _revenue_by(3)),
    FeatureSpec("revenue_d7", "monetization", "medium", "Net revenue in D0-D7 (USD)", _revenue_by(7)),
    FeatureSpec("first_purchase_time_hours", "monetization", "medium", "Hours until first purchase (999 = none)",
                _first_purchase_hours),

    FeatureSpec("install_hour", "acquisition", "none", "UTC hour of install", lambda w: float(w.install.hour)),
    FeatureSpec("install_day_of_week", "acquisition", "none", "Install weekday (0 = Monday)",
                lambda w: float(w.install.weekday())),
]


def _validate(specs: List[FeatureSpec]) -> Dict[str, FeatureSpec]:
    catalog: Dict[str, FeatureSpec] = {}
    for spec in specs:
        if spec.name in catalog:
            raise ValueError(f"Duplicate feature in catalog: {spec.name}")
        if spec.block not in BLOCKS:
            raise ValueError(f"Unknown block {spec.block!r} for feature {spec.name}")
        if spec.leakage_risk not in LEAKAGE_RISKS:
            raise ValueError(f"Unknown leakage risk {spec.leakage_risk!r} for feature {spec.name}")
        if not callable(spec.compute):
            raise ValueError(f"Feature {spec.name} has no accessor")
        catalog[spec.name] = spec
    return catalog


FEATURE_CATALOG: Dict[str, FeatureSpec] = _validate(_SPECS)
ALL_FEATURES: List[str] = list(FEATURE_CATALOG)

# Features derived from D0-D7 payment activity; the cold track drops them.
PAYMENT_FEATURES: List[str] = [n for n, s in FEATURE_CATALOG.items() if s.block == "monetization"]


def features_in_block(block: str) -> List[str]:
    return [n for n, s in FEATURE_CATALOG.items() if s.block == block]


def features_for_track(track: str) -> List[str]:
    if track == "cold":
        return [n for n in ALL_FEATURES if n not in PAYMENT_FEATURES]
    return list(ALL_FEATURES)
