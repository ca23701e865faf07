"""
Unit Tests for Dataset Splitting and the Dataset Registry

Tests:
- Temporal and random split completeness (train + validation + test + excluded = input)
- Reproducibility and the immature-install drop
- Configuration errors
- Registry immutability, monotonic ids and concurrent appends
"""

import threading

import pytest

from pltv_workbench.dataset_registry import DatasetRegistry
from pltv_workbench.exceptions import ConfigurationError, DatasetNotFoundError
from pltv_workbench.splitter import (
    DatasetFilters,
    RandomSplitParams,
    TemporalSplitParams,
    build_dataset,
)
from tests.conftest import make_row

QUARTER = TemporalSplitParams(["2024-10", "2024-11"], ["2024-12"], ["2025-01"])


def _ids(ds):
    return {r.user_id for r in ds.rows}


class TestTemporalSplit:
    """Month-bucket splits"""

    def test_four_months_fully_assigned(self, payer_rows, dataset_registry):
        train, validation, test, excluded = build_dataset(
            payer_rows, strategy="temporal", params=QUARTER, registry=dataset_registry)
        assert excluded == 0
        assert (len(train), len(validation), len(test)) == (250, 125, 125)
        assert all(r.install_month in ("2024-10", "2024-11") for r in train.rows)
        assert all(r.install_month == "2025-01" for r in test.rows)
        assert _ids(train) | _ids(validation) | _ids(test) == {r.user_id for r in payer_rows}

    def test_months_outside_buckets_are_excluded(self, payer_rows, dataset_registry):
        params = TemporalSplitParams(["2024-10"], [], ["2024-12"])
        split = build_dataset(payer_rows, strategy="temporal", params=params, registry=dataset_registry)
        assert split.excluded == 250
        assert len(split.validation) == 0
        assert len(split.train) + len(split.test) + split.excluded == 500

    def test_filtered_rows_count_as_excluded(self, payer_rows, dataset_registry):
        params = TemporalSplitParams(["2024-10", "2024-11", "2024-12", "2025-01"])
        split = build_dataset(payer_rows, DatasetFilters(payers_only=True), "temporal", params, dataset_registry)
        assert len(split.train) == 50
        assert split.excluded == 450
        assert split.train.payer_rate == 100.0
        assert "payers_only" in split.train.filters

    def test_registers_three_datasets(self, payer_rows, dataset_registry):
        split = build_dataset(payer_rows, strategy="temporal", params=QUARTER, registry=dataset_registry)
        assert [split.train.id, split.validation.id, split.test.id] == [1, 2, 3]
        assert split.train.split_role == "train"
        assert split.test.name.startswith("ds_v3 [Test]")
        assert dataset_registry.by_role("validation") == [split.validation]

    @pytest.mark.parametrize("params", [
        TemporalSplitParams([], ["2024-12"], ["2025-01"]),
        TemporalSplitParams(["2024-10"], ["2024-10"], []),
        TemporalSplitParams(["2024-13"]),
        TemporalSplitParams(["Oct 2024"]),
    ])
    def test_invalid_month_config(self, payer_rows, params):
        with pytest.raises(ConfigurationError):
            build_dataset(payer_rows, strategy="temporal", params=params)

    def test_missing_params_and_unknown_strategy(self, payer_rows):
        with pytest.raises(ConfigurationError):
            build_dataset(payer_rows, strategy="temporal")
        with pytest.raises(ConfigurationError):
            build_dataset(payer_rows, strategy="stratified", params=QUARTER)


class TestRandomSplit:
    """Seeded shuffle after dropping immature installs"""

    def test_completeness_and_immature_drop(self, payer_rows, dataset_registry):
        split = build_dataset(payer_rows, strategy="random", params=RandomSplitParams(),
                              registry=dataset_registry)
        assert (len(split.train), len(split.validation), len(split.test)) == (339, 73, 73)
        assert split.excluded == 15

        newest_first = sorted(payer_rows, key=lambda r: (r.install_time, r.user_id), reverse=True)
        immature = {r.user_id for r in newest_first[:15]}
        assigned = _ids(split.train) | _ids(split.validation) | _ids(split.test)
        assert not assigned & immature
        assert len(assigned) == 485

    def test_same_seed_same_split(self, payer_rows):
        a = build_dataset(payer_rows, strategy="random", params=RandomSplitParams(seed=11))
        b = build_dataset(payer_rows, strategy="random", params=RandomSplitParams(seed=11))
        c = build_dataset(payer_rows, strategy="random", params=RandomSplitParams(seed=12))
        assert [r.user_id for r in a.train.rows] == [r.user_id for r in b.train.rows]
        assert [r.user_id for r in a.train.rows] != [r.user_id for r in c.train.rows]

    def test_fractions_below_one_leave_remainder_excluded(self, payer_rows):
        params = RandomSplitParams(0.5, 0.25, 0.125, immature_fraction=0.0)
        split = build_dataset(payer_rows, strategy="random", params=params)
        assert (len(split.train), len(split.validation), len(split.test)) == (250, 125, 62)
        assert split.excluded == 63

    @pytest.mark.parametrize("params", [
        RandomSplitParams(0.8, 0.2, 0.2),
        RandomSplitParams(-0.1, 0.5, 0.5),
        RandomSplitParams(immature_fraction=1.0),
    ])
    def test_invalid_fraction_config(self, payer_rows, params):
        with pytest.raises(ConfigurationError):
            build_dataset(payer_rows, strategy="random", params=params)

    def test_empty_input(self):
        split = build_dataset([], strategy="random")
        assert (len(split.train), len(split.validation), len(split.test), split.excluded) == (0, 0, 0, 0)
        assert split.train.date_range == ("", "")


class TestDatasetRegistry:
    """Append-only snapshots"""

    def test_snapshot_isolated_from_caller(self, dataset_registry):
        rows = [make_row("a", ltv_d60=10.0), make_row("b")]
        ds = dataset_registry.register(rows, "train")
        rows[0].features["sessions_cnt_w7d"] = 99.0
        rows.append(make_row("c"))
        assert ds.rows[0].features["sessions_cnt_w7d"] == 0.0
        assert ds.row_count == 2
        assert dataset_registry.get_by_id(ds.id) is ds

    def test_snapshot_features_are_read_only(self, dataset_registry):
        ds = dataset_registry.register([make_row("a")], "train")
        with pytest.raises(TypeError):
            ds.rows[0].features["sessions_cnt_w7d"] = 5.0
        assert dataset_registry.get_by_id(ds.id).rows[0].features["sessions_cnt_w7d"] == 0.0

    def test_unknown_split_role(self, dataset_registry):
        with pytest.raises(ConfigurationError) as exc:
            dataset_registry.register([make_row("a")], "holdout")
        assert "custom" in exc.value.details["allowed"]
        assert len(dataset_registry) == 0

    def test_summary_stats(self, dataset_registry):
        rows = [make_row("a", "2024-10-03", ltv_d60=30.0, ltv_d90=40.0),
                make_row("b", "2024-12-20"), make_row("c", "2024-11-01"), make_row("d", "2024-11-02")]
        ds = dataset_registry.register_custom(rows, name="hand picked")
        assert ds.payer_rate == 25.0
        assert ds.avg_ltv == 7.5
        assert ds.avg_ltv_d90 == 10.0
        assert ds.date_range == ("2024-10-03", "2024-12-20")
        assert ds.name == "hand picked"
        assert ds.split_role == "custom"

    def test_unknown_id(self, dataset_registry):
        dataset_registry.register([make_row("a")], "train")
        for bad in (0, 2, -1, "1"):
            with pytest.raises(DatasetNotFoundError) as exc:
                dataset_registry.get_by_id(bad)
            assert "not found" in exc.value.message

    def test_concurrent_appends_get_unique_ids(self):
        registry = DatasetRegistry()
        rows = [make_row("a")]

        def worker():
            for _ in range(10):
                registry.register(rows, "custom")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sorted(ds.id for ds in registry.list()) == list(range(1, 81))
