"""
pltv_workbench — temporal feature/label pipeline and evaluation harness for game pLTV.

Typical flow::

    cleaned = clean(players, events, payments)
    rows = compute_features(players, cleaned.events, cleaned.payments)
    split = build_dataset(rows, DatasetFilters(), "temporal", TemporalSplitParams([...], [...], [...]), datasets)
    result = train(split.train, ALL_FEATURES, TrainingConfig(target="ltv_d60"))
    version = models.save(result)
    scored = score(version, split.test)
"""
import logging

from .audiences import AudienceSegment, build_audiences, channel_value_summary
from .cleaning import CleaningReport, CleanResult, clean
from .comparator import (
    ActivationConfig,
    StrategyDef,
    compute_offline_analysis,
    preset_k_values,
    run_comparison,
    simulate_activation,
    standard_strategies,
    summarize_insights,
)
from .conflicts import detect_label_conflicts
from .dataset_registry import Dataset, DatasetRegistry
from .entities import Event, PaymentTxn, Player
from .exceptions import (
    ConfigurationError,
    DatasetNotFoundError,
    InputValidationError,
    ModelNotFoundError,
    NotFoundError,
    PltvError,
)
from .feature_catalog import ALL_FEATURES, FEATURE_CATALOG, features_for_track
from .features import FeatureRow, compute_features
from .ingestion import read_events, read_payments, read_players
from .model_registry import ModelRegistry, ModelVersion
from .splitter import DatasetFilters, RandomSplitParams, TemporalSplitParams, build_dataset
from .synthetic import GameData, generate_game_data, save_sample
from .trainer import ModelResult, ScoredUser, TrainingConfig, evaluate_version, score, train

compare_strategies = run_comparison
detect_conflicts = detect_label_conflicts

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"
