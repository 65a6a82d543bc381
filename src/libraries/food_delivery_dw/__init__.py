"""
Food Delivery Warehouse

Loads landed food delivery CSV extracts into a Delta Lake star schema:
stage and clean layers, SCD Type 2 dimensions, a calendar dimension and an
order item fact table.

Main Components:
- StageLoader: Appends landed files to stage tables with load history
- ValidationTransformer / CleanLoader: Types, validates and upserts clean records
- ChangeExtractor: Reads Delta change data feeds from a durable checkpoint
- SCDProcessor: Applies change batches to SCD Type 2 dimensions in one MERGE
- DateDimensionBuilder: Generates the calendar dimension
- FactAssembler: Resolves dimension keys and merges order item facts
- WarehousePipeline: Runs the whole load cycle in dependency order

Author: Data Engineering Team
Version: 1.0.0
"""

from .scd_type2.scd_processor import SCDProcessor
from .key_resolution.key_resolver import DimensionalKeyResolver
from .cdc.change_extractor import ChangeExtractor, ChangeBatch
from .dimensions.date_dimension import DateDimensionBuilder
from .facts.fact_assembler import FactAssembler
from .pipeline.runner import WarehousePipeline
from .common.config import (
    SCDConfig,
    ChangeFeedConfig,
    ValidationConfig,
    KeyResolutionConfig,
    DateDimensionConfig,
    FactConfig,
    WarehouseConfig
)
from .common.exceptions import (
    DimensionalProcessingError,
    SCDValidationError,
    SCDProcessingError,
    KeyResolutionError,
    ConfigurationError,
    TypeCastFailure,
    ReferentialGap,
    ConcurrencyViolation,
    SchemaMismatch
)

__version__ = "1.0.0"
__author__ = "Data Engineering Team"

__all__ = [
    "SCDProcessor",
    "DimensionalKeyResolver",
    "ChangeExtractor",
    "ChangeBatch",
    "DateDimensionBuilder",
    "FactAssembler",
    "WarehousePipeline",
    "SCDConfig",
    "ChangeFeedConfig",
    "ValidationConfig",
    "KeyResolutionConfig",
    "DateDimensionConfig",
    "FactConfig",
    "WarehouseConfig",
    "DimensionalProcessingError",
    "SCDValidationError",
    "SCDProcessingError",
    "KeyResolutionError",
    "ConfigurationError",
    "TypeCastFailure",
    "ReferentialGap",
    "ConcurrencyViolation",
    "SchemaMismatch"
]
