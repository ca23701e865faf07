"""
Pytest Configuration and Fixtures

Shared fixtures for all tests:
- FeatureRow factory and the 500-player payer scenario
- Small synthetic game dataset (players, events, payments)
- Fresh registries
"""

from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from pltv_workbench.dataset_registry import DatasetRegistry
from pltv_workbench.feature_catalog import ALL_FEATURES
from pltv_workbench.features import FeatureRow
from pltv_workbench.model_registry import ModelRegistry
from pltv_workbench.synthetic import generate_game_data

INSTALL = datetime(2024, 10, 1, tzinfo=timezone.utc)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def make_row(user_id: str, install_date: str = "2024-10-05", features=None, **fields) -> FeatureRow:
    """FeatureRow with every catalog feature at 0 unless overridden."""
    values = {name: 0.0 for name in ALL_FEATURES}
    values.update(features or {})
    install_time = datetime.fromisoformat(install_date).replace(tzinfo=timezone.utc)
    defaults = dict(
        user_id=user_id,
        install_time=install_time,
        install_date=install_date,
        channel="facebook",
        campaign_id="camp_1",
        country="VN",
        os="android",
        device_tier="mid",
        consent_tracking=True,
        features=values,
    )
    defaults.update(fields)
    return FeatureRow(**defaults)


@pytest.fixture
def row_factory():
    return make_row


@pytest.fixture
def install_time():
    return INSTALL


@pytest.fixture(scope="session")
def payer_rows():
    """500 users: 90% non-payers (ltv_d60 = 0), 10% payers with ltv_d60 in [5, 500].

    Payers show their value early (D7 revenue, more sessions), so a warm model can find them.
    Installs spread over 2024-10 .. 2025-01.
    """
    rng = np.random.default_rng(7)
    months = ["2024-10", "2024-11", "2024-12", "2025-01"]
    rows = []
    for i in range(500):
        payer = i % 10 == 0
        ltv60 = round(float(rng.uniform(5, 500)), 2) if payer else 0.0
        rev_d7 = round(ltv60 * float(rng.uniform(0.2, 0.4)), 2) if payer else 0.0
        feats = {
            "sessions_cnt_w7d": float(rng.integers(8, 20) if payer else rng.integers(1, 10)),
            "active_days_w7d": float(rng.integers(4, 8) if payer else rng.integers(1, 6)),
            "max_level_w7d": float(rng.integers(10, 30) if payer else rng.integers(1, 15)),
            "shop_views_w7d": float(rng.integers(2, 10) if payer else rng.integers(0, 4)),
            "revenue_d7": rev_d7,
            "revenue_d3": round(rev_d7 * 0.6, 2),
            "num_txn_d7": float(rng.integers(1, 5)) if payer else 0.0,
            "is_payer_by_d7": 1.0 if payer else 0.0,
            "is_payer_by_d3": 1.0 if payer else 0.0,
            "first_purchase_time_hours": float(rng.integers(1, 100)) if payer else 999.0,
        }
        month = months[i % 4]
        rows.append(make_row(
            f"u_{i:04d}",
            install_date=f"{month}-{1 + (i % 28):02d}",
            features=feats,
            ltv_d3=round(rev_d7 * 0.6, 2),
            ltv_d7=rev_d7,
            ltv_d30=round(ltv60 * 0.7, 2),
            ltv_d60=ltv60,
            ltv_d90=round(ltv60 * 1.2, 2),
            consent_tracking=bool(i % 5),
        ))
    return rows


@pytest.fixture
def dataset_registry():
    return DatasetRegistry()


@pytest.fixture
def model_registry():
    return ModelRegistry()


@pytest.fixture
def payer_dataset(payer_rows, dataset_registry):
    return dataset_registry.register(payer_rows, "train", source="payer_scenario")


@pytest.fixture(scope="session")
def small_game():
    """80 synthetic players over Oct-Nov 2024 with injected data-quality noise."""
    return generate_game_data(n_players=80, seed=3, months=2, activity_days=14,
                              payer_rate=0.15, add_noise=True)


def shift(ts: datetime, **kwargs) -> datetime:
    return ts + timedelta(**kwargs)
