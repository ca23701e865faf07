"""
Unit Tests for Label-Conflict Detection

Tests:
- Clean labels produce no conflicts
- A single flipped label inside a tight cluster is reported (and nothing else)
- Boundary-zone counting, severity thresholds, configuration errors
"""

import numpy as np
import pytest

from pltv_workbench.conflicts import detect_label_conflicts, normalize_matrix, severity_for
from pltv_workbench.exceptions import ConfigurationError
from tests.conftest import make_row

FEATURES = ["sessions_cnt_w7d", "active_days_w7d"]


def _row(uid, sessions, churned):
    return make_row(uid, features={"sessions_cnt_w7d": float(sessions), "active_days_w7d": 1.0},
                    is_churned_d14=float(churned))


@pytest.fixture
def two_clusters():
    """Six near-identical low-activity users (label 0) and six high-activity users (label 1);
    ``a2`` carries the wrong label."""
    rows = [_row(f"a{i}", i, 1 if i == 2 else 0) for i in range(6)]
    rows += [_row(f"b{i}", 100 + i, 1) for i in range(6)]
    return rows


class TestConflictDetection:
    """kNN label disagreement in normalized feature space"""

    def test_flipped_label_is_the_only_conflict(self, two_clusters):
        result = detect_label_conflicts(two_clusters, FEATURES, "is_churned_d14", k=5)
        assert result.total_samples == 12
        assert result.conflicting_samples == 1
        assert result.conflict_rate == 8.3
        assert result.severity == "low"
        pair = result.conflict_pairs[0]
        assert (pair.user_id, pair.label, pair.neighbor_label) == ("a2", "1.0", "0.0")
        assert pair.neighbor_id in {"a1", "a3"}

    def test_boundary_zone_is_the_mixed_cluster(self, two_clusters):
        result = detect_label_conflicts(two_clusters, FEATURES, "is_churned_d14", k=5)
        assert result.boundary_count == 6
        assert {b.user_id for b in result.boundary_zone} == {f"a{i}" for i in range(6)}
        assert all(b.distance < 0.15 for b in result.boundary_zone)

    def test_single_label_has_no_conflicts(self):
        rows = [_row(f"u{i}", i * 3, 0) for i in range(20)]
        result = detect_label_conflicts(rows, FEATURES, "is_churned_d14")
        assert result.conflicting_samples == 0
        assert result.boundary_count == 0
        assert result.conflict_pairs == []

    def test_too_few_rows(self):
        rows = [_row(f"u{i}", i, i % 2) for i in range(5)]
        result = detect_label_conflicts(rows, FEATURES, "is_churned_d14", k=5)
        assert result.total_samples == 5
        assert result.conflict_rate == 0.0
        assert result.severity == "low"

    def test_rows_are_not_modified(self, two_clusters):
        before = [(r.user_id, dict(r.features), r.is_churned_d14) for r in two_clusters]
        detect_label_conflicts(two_clusters, FEATURES, "is_churned_d14", k=3)
        assert [(r.user_id, dict(r.features), r.is_churned_d14) for r in two_clusters] == before

    @pytest.mark.parametrize("kwargs", [
        dict(feature_ids=FEATURES, target_key="is_churned_d14", k=0),
        dict(feature_ids=FEATURES, target_key="is_churned_d14", k=True),
        dict(feature_ids=[], target_key="is_churned_d14", k=5),
        dict(feature_ids=["nope"], target_key="is_churned_d14", k=5),
        dict(feature_ids=["channel", "sessions_cnt_w7d"], target_key="ltv_d60", k=3),
        dict(feature_ids=["country", "os"], target_key="is_churned_d14", k=3),
        dict(feature_ids=FEATURES, target_key="nope", k=5),
    ])
    def test_config_errors(self, two_clusters, kwargs):
        with pytest.raises(ConfigurationError):
            detect_label_conflicts(two_clusters, **kwargs)


class TestHelpers:
    """Severity bands and scaling"""

    @pytest.mark.parametrize("rate, expected", [
        (0.0, "low"), (10.0, "low"), (10.1, "moderate"), (20.0, "moderate"), (20.1, "high"),
    ])
    def test_severity(self, rate, expected):
        assert severity_for(rate) == expected

    def test_constant_columns_map_to_zero(self):
        X = np.array([[1.0, 5.0], [3.0, 5.0], [2.0, 5.0]])
        scaled = normalize_matrix(X)
        assert scaled[:, 0].tolist() == [0.0, 1.0, 0.5]
        assert scaled[:, 1].tolist() == [0.0, 0.0, 0.0]
