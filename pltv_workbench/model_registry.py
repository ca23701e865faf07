"""
model_registry.py — Append-only registry of trained model versions with metadata.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Tuple

from .exceptions import ConfigurationError, ModelNotFoundError
from .registry import AppendOnlyRegistry
from .trainer import ModelResult, serialize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelVersion:
    id: int
    name: str
    model_type: str
    features: Tuple[str, ...]
    target: str
    log_transform: bool
    track: str
    metrics: Dict[str, float]
    feature_importance: Tuple[Tuple[str, float], ...]
    train_size: int
    test_size: int
    training_dataset_id: Optional[int]
    model_state: bytes
    saved_at: str

    @property
    def n_features(self) -> int:
        return len(self.features)


class ModelRegistry(AppendOnlyRegistry[ModelVersion]):
    not_found_error = ModelNotFoundError
    kind = "Model version"

    def save(self, result: ModelResult, training_dataset_id: Optional[int] = None,
             name: Optional[str] = None) -> ModelVersion:
        """Freeze a training result (features, target, transform, track, metrics, estimator)."""
        if result.estimator is None:
            raise ConfigurationError("ModelResult carries no fitted estimator to save")
        state = serialize(result.estimator)
        dataset_id = training_dataset_id if training_dataset_id is not None else result.training_dataset_id
        saved_at = datetime.now().isoformat(timespec="seconds")

        def build(version_id: int) -> ModelVersion:
            return ModelVersion(
                id=version_id,
                name=name or f"v{version_id} — {result.track} / {len(result.features)}F / R²={result.r2:.3f}",
                model_type=result.model_type,
                features=tuple(result.features),
                target=result.target,
                log_transform=result.log_transform,
                track=result.track,
                metrics=dict(result.metrics()),
                feature_importance=tuple(result.feature_importance),
                train_size=result.train_size,
                test_size=result.test_size,
                training_dataset_id=dataset_id,
                model_state=state,
                saved_at=saved_at,
            )

        version = self.append(build)
        logger.info("Model saved: %s (%.1f KB)", version.name, len(state) / 1024)
        return version
