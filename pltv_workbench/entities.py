"""
entities.py — Typed records produced by ingestion and consumed by the pipeline.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Union

ParamValue = Union[float, str]


@dataclass(frozen=True)
class Player:
    """Identity and attribution record, one per installed user.

    Attributes
    ----------
    user_id : str
        Stable game user id.
    install_time : datetime
        Install timestamp; anchors every feature and label window.
    channel, campaign_id, country, os : str
        Attribution and device context.
    consent_tracking : bool
        Whether the user may be used for ad activation.
    """

    user_id: str
    install_time: datetime
    channel: str = "unknown"
    campaign_id: str = ""
    country: str = ""
    os: str = ""
    consent_tracking: bool = False
    consent_marketing: bool = False
    install_id: str = ""
    adset_id: str = ""
    creative_id: str = ""
    device_model: str = ""
    device_tier: str = "mid"


@dataclass(frozen=True)
class Event:
    """Timestamped behavioural fact. Any field may be missing in raw input."""

    user_id: Optional[str]
    event_name: Optional[str]
    event_time: Optional[datetime]
    session_id: Optional[str]
    params: Dict[str, ParamValue] = field(default_factory=dict)

    def param(self, key: str, default: float = 0.0) -> float:
        value = self.params.get(key, default)
        try:
            return float(value)
        except (TypeError, ValueError):
            return default


@dataclass(frozen=True)
class PaymentTxn:
    """Monetary transaction. ``is_refund`` marks a transaction that was refunded."""

    user_id: str
    amount: float
    txn_time: datetime
    currency: str = "USD"
    payment_channel: str = ""
    product_sku: str = ""
    is_refund: bool = False
