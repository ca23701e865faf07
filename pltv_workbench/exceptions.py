"""
Exception hierarchy for the pLTV workbench.

Only configuration, input and registry problems raise. Data-quality issues are
counted in reports instead.
"""

from typing import Dict, Any, Optional


class PltvError(Exception):
    """Base exception for all workbench errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class InputValidationError(PltvError):
    """Raised when a tabular input is empty or misses required columns."""


class ConfigurationError(PltvError):
    """Raised when call parameters are invalid (features, fractions, K, ...)."""


class NotFoundError(PltvError):
    """Raised when a registry lookup misses."""


class DatasetNotFoundError(NotFoundError):
    """Raised when a dataset id is not in the registry."""


class ModelNotFoundError(NotFoundError):
    """Raised when a model version id is not in the registry."""
