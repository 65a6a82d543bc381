"""
Common utilities and configurations for the food delivery warehouse.
"""

from .config import (
    SCDConfig,
    ChangeFeedConfig,
    ValidationConfig,
    KeyResolutionConfig,
    DateDimensionConfig,
    FactConfig,
    WarehouseConfig,
    ProcessingMetrics,
    ValidationResult
)
from .exceptions import (
    DimensionalProcessingError,
    SCDValidationError,
    SCDProcessingError,
    KeyResolutionError,
    ConfigurationError,
    ConcurrencyViolation
)
from .locking import TableLock
from .utils import configure_logging

__all__ = [
    "SCDConfig",
    "ChangeFeedConfig",
    "ValidationConfig",
    "KeyResolutionConfig",
    "DateDimensionConfig",
    "FactConfig",
    "WarehouseConfig",
    "ProcessingMetrics",
    "ValidationResult",
    "DimensionalProcessingError",
    "SCDValidationError",
    "SCDProcessingError",
    "KeyResolutionError",
    "ConfigurationError",
    "ConcurrencyViolation",
    "TableLock",
    "configure_logging"
]
