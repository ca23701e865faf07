"""
synthetic.py — Generate a realistic synthetic game dataset (players, events, payments)
for end-to-end demos and tests before connecting real exports.

Archetypes: free players, early payers (first purchase in D0-D7), late converters
(first purchase after D7) and whales. Engagement drives both play and spend, so
D7 behaviour is genuinely predictive of later LTV.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List

import numpy as np
import pandas as pd

from .config import SEED
from .entities import Event, PaymentTxn, Player

logger = logging.getLogger(__name__)

N_PLAYERS = 1_000

CHANNELS = ["facebook", "google", "tiktok", "unity_ads", "organic", "applovin"]
CHANNEL_P = [0.25, 0.22, 0.18, 0.10, 0.15, 0.10]
COUNTRIES = ["VN", "TH", "ID", "PH", "US", "JP"]
COUNTRY_P = [0.35, 0.20, 0.15, 0.10, 0.12, 0.08]
OS_TYPES = ["android", "ios"]
DEVICE_TIERS = ["low", "mid", "high"]
SKU_PRICES = [0.99, 1.99, 4.99, 9.99, 19.99, 49.99, 99.99]
GAMEPLAY_EVENTS = [
    "quest_complete", "pvp_match", "pve_run", "dungeon_clear", "soft_earn", "soft_spend",
    "hard_earn", "hard_spend", "gacha_open", "shop_view", "iap_offer_view", "battle_pass_view",
    "guild_activity", "friend_add", "chat_message",
]
GAMEPLAY_P = np.array([14, 10, 10, 4, 14, 8, 3, 3, 5, 8, 4, 2, 6, 3, 7], dtype=float)
GAMEPLAY_P /= GAMEPLAY_P.sum()


@dataclass
class GameData:
    players: List[Player] = field(default_factory=list)
    events: List[Event] = field(default_factory=list)
    payments: List[PaymentTxn] = field(default_factory=list)


def _install_times(rng, n: int, start: datetime, months: int) -> List[datetime]:
    span_days = int(30.4 * months)
    day_offsets = rng.integers(0, span_days, n)
    seconds = rng.integers(0, 86_400, n)
    return [start + timedelta(days=int(d), seconds=int(s)) for d, s in zip(day_offsets, seconds)]


def _play(rng, user_id: str, install: datetime, engagement: float, horizon_days: int) -> List[Event]:
    events: List[Event] = []
    level = 1
    guild_joined = False
    for day in range(horizon_days):
        p_active = 1.0 if day == 0 else engagement * (0.92 ** day)
        if rng.random() >= p_active:
            continue
        for s in range(1 + rng.poisson(2 * engagement)):
            sid = f"{user_id}_d{day}_s{s}"
            t = install + timedelta(days=day, minutes=int(rng.integers(1, 1_380)))
            duration = int(rng.integers(120, 2_400))
            events.append(Event(user_id, "session_start", t, sid))
            for _ in range(rng.poisson(3 + 8 * engagement)):
                name = str(rng.choice(GAMEPLAY_EVENTS, p=GAMEPLAY_P))
                et = t + timedelta(seconds=int(rng.integers(1, duration)))
                params = {}
                if name in ("soft_earn", "soft_spend"):
                    params["amount"] = float(rng.integers(10, 500))
                elif name in ("hard_earn", "hard_spend"):
                    params["amount"] = float(rng.integers(1, 60))
                elif name == "quest_complete":
                    params["quest_type"] = "main" if rng.random() < 0.6 else "daily"
                events.append(Event(user_id, name, et, sid, params))
            if rng.random() < 0.3 + 0.4 * engagement:
                level += 1
                events.append(Event(user_id, "level_up", t + timedelta(seconds=duration // 2), sid,
                                    {"level": float(level)}))
            if not guild_joined and rng.random() < 0.15 * engagement:
                guild_joined = True
                events.append(Event(user_id, "guild_join", t + timedelta(seconds=60), sid))
            events.append(Event(user_id, "session_end", t + timedelta(seconds=duration), sid,
                                {"duration_seconds": float(duration)}))
    return events


def _spend(rng, user_id: str, install: datetime, archetype: str, country: str) -> List[PaymentTxn]:
    if archetype == "free":
        return []
    if archetype == "late":
        first_day, n_txn, prices = int(rng.integers(10, 45)), 1 + rng.poisson(1.5), SKU_PRICES[:5]
    elif archetype == "whale":
        first_day, n_txn, prices = int(rng.integers(0, 3)), 6 + rng.poisson(8), SKU_PRICES[3:]
    else:
        first_day, n_txn, prices = int(rng.integers(0, 7)), 1 + rng.poisson(2), SKU_PRICES[:6]
    days = sorted([first_day] + [int(d) for d in rng.integers(first_day, 90, n_txn - 1)])
    currency = "VND" if country == "VN" and rng.random() < 0.5 else "USD"
    txns = []
    for i, day in enumerate(days):
        usd = float(rng.choice(prices))
        amount = round(usd * 24_000) if currency == "VND" else usd
        txns.append(PaymentTxn(
            user_id=user_id,
            amount=float(amount),
            txn_time=install + timedelta(days=day, minutes=int(rng.integers(5, 1_400))),
            currency=currency,
            payment_channel=str(rng.choice(["google_play", "app_store", "web_shop"])),
            product_sku=f"sku_{usd:.2f}",
            is_refund=bool(i > 0 and rng.random() < 0.02),
        ))
    return txns


def generate_players(n: int = N_PLAYERS, seed: int = SEED, start: str = "2024-10-01",
                     months: int = 4) -> List[Player]:
    rng = np.random.default_rng(seed)
    start_dt = datetime.fromisoformat(start).replace(tzinfo=timezone.utc)
    installs = _install_times(rng, n, start_dt, months)
    channels = rng.choice(CHANNELS, n, p=CHANNEL_P)
    countries = rng.choice(COUNTRIES, n, p=COUNTRY_P)
    os_types = rng.choice(OS_TYPES, n, p=[0.72, 0.28])
    tiers = rng.choice(DEVICE_TIERS, n, p=[0.3, 0.5, 0.2])
    consent = rng.random(n) < 0.8
    return [
        Player(
            user_id=f"u_{i:06d}",
            install_time=installs[i],
            channel=str(channels[i]),
            campaign_id=f"camp_{channels[i]}_{int(rng.integers(1, 6))}",
            country=str(countries[i]),
            os=str(os_types[i]),
            consent_tracking=bool(consent[i]),
            consent_marketing=bool(consent[i] and rng.random() < 0.6),
            install_id=f"inst_{i:06d}",
            device_tier=str(tiers[i]),
        )
        for i in range(n)
    ]


def generate_game_data(n_players: int = N_PLAYERS, seed: int = SEED, start: str = "2024-10-01",
                       months: int = 4, payer_rate: float = 0.08, late_payer_rate: float = 0.03,
                       whale_rate: float = 0.01, activity_days: int = 21,
                       add_noise: bool = False) -> GameData:
    """Players plus consistent events/payments. ``add_noise`` injects duplicates,
    out-of-window events and null fields so every cleaning counter has work to do."""
    players = generate_players(n_players, seed, start, months)
    rng = np.random.default_rng(seed + 1)
    data = GameData(players=players)
    for p in players:
        roll = rng.random()
        if roll < whale_rate:
            archetype = "whale"
        elif roll < whale_rate + payer_rate:
            archetype = "early"
        elif roll < whale_rate + payer_rate + late_payer_rate:
            archetype = "late"
        else:
            archetype = "free"
        base = {"whale": 0.9, "early": 0.7, "late": 0.55, "free": 0.35}[archetype]
        engagement = float(np.clip(base + rng.normal(0, 0.15), 0.05, 1.0))
        data.events.extend(_play(rng, p.user_id, p.install_time, engagement, activity_days))
        data.payments.extend(_spend(rng, p.user_id, p.install_time, archetype, p.country))

    if add_noise and data.events:
        n = len(data.events)
        dupes = rng.choice(n, max(1, n // 100), replace=False)
        data.events.extend(data.events[int(i)] for i in dupes)
        for p in players[: max(1, len(players) // 50)]:
            data.events.append(Event(p.user_id, "session_start", p.install_time - timedelta(hours=5), "early"))
            data.events.append(Event(p.user_id, "session_start", p.install_time + timedelta(days=70), "late"))
        data.events.append(Event(None, "session_start", players[0].install_time, "orphan"))
        data.events.append(Event(players[0].user_id, "chat_message", None, None))

    logger.info("Generated %d players, %d events, %d payments (seed=%d)",
                len(data.players), len(data.events), len(data.payments), seed)
    return data


# ── CSV export ──────────────────────────────────────────────────────
def _iso(ts):
    return ts.isoformat() if ts is not None else ""


def to_frames(data: GameData):
    """(players, events, payments) DataFrames in the ingestion CSV layout."""
    players = pd.DataFrame([{
        "user_id": p.user_id, "install_time": _iso(p.install_time), "channel": p.channel,
        "campaign_id": p.campaign_id, "country": p.country, "os": p.os,
        "consent_tracking": str(p.consent_tracking).lower(),
        "consent_marketing": str(p.consent_marketing).lower(),
        "install_id": p.install_id, "device_tier": p.device_tier,
    } for p in data.players])
    events = pd.DataFrame([{
        "user_id": e.user_id or "", "event_name": e.event_name or "", "event_time": _iso(e.event_time),
        "session_id": e.session_id or "",
        "params": ";".join(f"{k}={v}" for k, v in e.params.items()),
    } for e in data.events])
    payments = pd.DataFrame([{
        "user_id": t.user_id, "txn_time": _iso(t.txn_time), "amount": t.amount, "currency": t.currency,
        "product_sku": t.product_sku, "payment_channel": t.payment_channel,
        "is_refund": str(t.is_refund).lower(),
    } for t in data.payments])
    return players, events, payments


def save_sample(output_dir: str, data: GameData = None) -> GameData:
    """Write players.csv / events.csv / payments.csv into ``output_dir``."""
    data = data or generate_game_data()
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    for name, df in zip(("players", "events", "payments"), to_frames(data)):
        df.to_csv(out / f"{name}.csv", index=False)
    logger.info("Synthetic data saved: %s (%d players)", out, len(data.players))
    return data
