"""
End-to-end Tests: synthetic export → ingestion → cleaning → features → split → model → comparison
"""

import pytest

import pltv_workbench as pw
from pltv_workbench.audiences import build_audiences
from pltv_workbench.comparator import oracle_strategy
from pltv_workbench.reporting import cleaning_report_md, model_result_md
from pltv_workbench.synthetic import generate_game_data, save_sample


@pytest.fixture(scope="module")
def cleaned(small_game):
    result = pw.clean(small_game.players, small_game.events, small_game.payments)
    rows = pw.compute_features(small_game.players, result.events, result.payments)
    return result, rows


class TestSyntheticExport:
    """CSV export read back through ingestion"""

    def test_round_trip_matches_in_memory(self, tmp_path):
        data = generate_game_data(n_players=25, seed=5, months=1, activity_days=10, add_noise=True)
        save_sample(str(tmp_path), data)
        players = pw.read_players(tmp_path / "players.csv")
        events = pw.read_events(tmp_path / "events.csv")
        payments = pw.read_payments(tmp_path / "payments.csv")
        assert len(players) == 25
        assert len(events) == len(data.events)
        assert len(payments) == len(data.payments)

        from_csv = pw.clean(players, events, payments)
        in_memory = pw.clean(data.players, data.events, data.payments)
        assert from_csv.report.duplicates_removed == in_memory.report.duplicates_removed
        assert from_csv.report.late_events_quarantined == in_memory.report.late_events_quarantined
        assert from_csv.report.net_revenue == pytest.approx(in_memory.report.net_revenue)

        a = pw.compute_features(players, from_csv.events, from_csv.payments)
        b = pw.compute_features(data.players, in_memory.events, in_memory.payments)
        assert [r.features for r in a] == [r.features for r in b]
        assert [r.ltv_d90 for r in a] == pytest.approx([r.ltv_d90 for r in b])


class TestPipeline:
    """Full workflow on the noisy synthetic game"""

    def test_cleaning_counts_injected_noise(self, cleaned):
        result, _ = cleaned
        report = result.report
        assert report.duplicates_removed > 0
        assert report.pre_install_quarantined >= 1
        assert report.post_horizon_quarantined >= 1
        assert report.null_user_ids == 1
        assert report.null_timestamps == 1
        assert report.total_players == 80
        assert "## Data Cleaning" in cleaning_report_md(report)

    def test_one_row_per_player(self, cleaned, small_game):
        _, rows = cleaned
        assert [r.user_id for r in rows] == [p.user_id for p in small_game.players]
        assert all(set(r.features) == set(pw.ALL_FEATURES) for r in rows)

    def test_split_train_score_compare(self, cleaned, dataset_registry, model_registry):
        _, rows = cleaned
        split = pw.build_dataset(rows, pw.DatasetFilters(), "temporal",
                                 pw.TemporalSplitParams(["2024-10"], [], ["2024-11"]), dataset_registry)
        assert len(split.train) + len(split.validation) + len(split.test) + split.excluded == len(rows)
        assert len(split.train) > 10 and len(split.test) > 10

        result = pw.train(split.train, pw.ALL_FEATURES,
                          pw.TrainingConfig(target="ltv_d30", track="cold", test_split=0.25))
        assert set(result.features) == set(pw.features_for_track("cold"))
        assert "## Model Evaluation" in model_result_md(result)

        version = model_registry.save(result)
        scored = pw.score(version, split.test)
        assert len(scored) == len(split.test)

        strategies = pw.standard_strategies(scored) + [oracle_strategy("ltv_d30")]
        comparison = pw.compare_strategies(split.test.rows, strategies, [0.1, 0.5], target="ltv_d30")
        assert comparison.metric("oracle", comparison.k_values[-1]).recall == 1.0

        offline = pw.compute_offline_analysis(split.test.rows, strategies, 0.2, target="ltv_d30")
        report = pw.simulate_activation(offline)
        assert report.reference_strategy_id == "ltv_d7"
        assert len(report.results) == len(strategies)

        audiences = build_audiences(scored, split.test.rows)
        assert {a.id for a in audiences} >= {"seed_hv_top1", "potential_payer"}

        conflicts = pw.detect_conflicts(split.train.rows, ["sessions_cnt_w7d", "max_level_w7d",
                                                           "active_days_w7d"], "is_churned_d14", k=3)
        assert conflicts.total_samples == len(split.train)
        assert conflicts.severity in ("low", "moderate", "high")
