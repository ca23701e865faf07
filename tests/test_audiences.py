"""
Unit Tests for Activation Audiences and Channel Roll-ups
"""

import pytest

from pltv_workbench.audiences import AUDIENCE_RULES, build_audiences, channel_value_summary
from pltv_workbench.trainer import ScoredUser
from tests.conftest import make_row


@pytest.fixture
def scored():
    return [
        ScoredUser("whale", 900.0, 10, "Whale (Top 1%)", 750.0, True),
        ScoredUser("quiet", 80.0, 9, "High Value", 0.0, False),
        ScoredUser("fading", 40.0, 7, "Mid Value", 20.0, False),
        ScoredUser("minnow", 1.0, 2, "Minimal Value", 0.0, False),
    ]


@pytest.fixture
def rows():
    return [
        make_row("whale", channel="google", features={"is_payer_by_d7": 1, "active_days_w7d": 7}),
        make_row("quiet", channel="google", consent_tracking=False,
                 features={"is_payer_by_d7": 0, "active_days_w7d": 2}),
        make_row("fading", channel="tiktok", is_churned_d14=1.0,
                 features={"is_payer_by_d7": 1, "active_days_w7d": 5}),
        make_row("minnow", channel="organic", features={"active_days_w7d": 1}),
    ]


class TestAudiences:
    """Rule-based audience cuts"""

    def test_standard_audiences(self, scored, rows):
        audiences = {a.id: a for a in build_audiences(scored, rows)}
        assert list(audiences) == [rule[0] for rule in AUDIENCE_RULES]
        assert audiences["seed_hv_top1"].user_ids == ("whale",)
        assert audiences["seed_hv_d7"].user_ids == ("whale", "quiet")
        assert audiences["seed_hv_d7"].eligible_count == 1
        assert audiences["potential_payer"].user_ids == ("quiet",)
        assert audiences["hv_churn_risk"].user_ids == ("fading",)
        assert audiences["reactivation"].user_ids == ("quiet",)

    def test_segment_averages(self, scored, rows):
        seed = build_audiences(scored, rows)[1]
        assert seed.user_count == 2
        assert seed.avg_predicted == 490.0
        assert seed.avg_actual == 375.0

    def test_users_without_rows_are_ignored(self, scored):
        audiences = build_audiences(scored, [make_row("whale")])
        assert all(a.user_count <= 1 for a in audiences)
        assert audiences[0].avg_actual == 750.0


class TestChannelSummary:
    """Per-channel value roll-up"""

    def test_grouped_by_channel(self, scored, rows):
        df = channel_value_summary(scored, rows)
        assert df["channel"].tolist() == ["google", "tiktok", "organic"]
        google = df.iloc[0]
        assert google["users"] == 2
        assert google["predicted_revenue"] == 980.0
        assert google["avg_actual"] == 375.0

    def test_empty(self):
        df = channel_value_summary([], [])
        assert df.empty
        assert "avg_predicted" in df.columns
