"""
Configuration classes for the food delivery warehouse pipeline.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any
from enum import Enum


class EffectiveTimeMode(Enum):
    """Where SCD2 effective timestamps come from."""
    PROCESSING = "processing"
    SOURCE = "source"


class ResolutionMode(Enum):
    """Which dimension version a fact reference resolves to."""
    CURRENT = "current"
    AS_OF_EVENT = "as_of_event"


class OnErrorPolicy(Enum):
    """Batch behaviour when a record fails validation."""
    CONTINUE = "continue"
    ABORT = "abort"


class ChangeOperation(Enum):
    """Row-level operations emitted by the change extractor."""
    INSERT = "INSERT"
    UPDATE_BEFORE = "UPDATE_BEFORE"
    UPDATE_AFTER = "UPDATE_AFTER"
    DELETE = "DELETE"


class FailureKind(Enum):
    """Record-level failure codes written to dead-letter tables."""
    TYPE_CAST_FAILURE = "TYPE_CAST_FAILURE"
    NULL_VIOLATION = "NULL_VIOLATION"
    REFERENTIAL_GAP = "REFERENTIAL_GAP"
    SCHEMA_MISMATCH = "SCHEMA_MISMATCH"


SUPPORTED_HASH_ALGORITHMS = ("sha1", "sha256", "md5")


def _enum_values(enum_cls) -> List[str]:
    return [member.value for member in enum_cls]


@dataclass
class SCDConfig:
    """Configuration for SCD Type 2 processing."""

    # Required parameters
    target_table: str
    business_key_columns: List[str]
    scd_columns: List[str]
    surrogate_key_column: str  # e.g. customer_hk, menu_dim_hk

    # Effective time handling
    effective_time_mode: str = "processing"
    event_timestamp_column: str = "_commit_timestamp"

    # Standard column names
    scd_hash_column: str = "scd_hash"
    effective_start_column: str = "eff_start_ts"
    effective_end_column: str = "eff_end_ts"
    is_current_column: str = "is_current"
    created_ts_column: str = "created_ts"
    modified_ts_column: str = "modified_ts"

    # Change feed column names
    operation_column: str = "_operation"
    commit_version_column: str = "_commit_version"

    # Hashing
    hash_algorithm: str = "sha1"

    # Concurrency
    lock_dir: Optional[str] = None
    lock_timeout_seconds: float = 30.0

    # Performance settings
    enable_optimization: bool = False

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.target_table:
            raise ValueError("target_table is required")
        if not self.business_key_columns:
            raise ValueError("business_key_columns cannot be empty")
        if not self.scd_columns:
            raise ValueError("scd_columns cannot be empty")
        if not self.surrogate_key_column:
            raise ValueError("surrogate_key_column is required")
        if self.effective_time_mode not in _enum_values(EffectiveTimeMode):
            raise ValueError(
                f"effective_time_mode must be one of {_enum_values(EffectiveTimeMode)}"
            )
        if self.lock_timeout_seconds < 0:
            raise ValueError("lock_timeout_seconds cannot be negative")

    @property
    def tracked_columns(self) -> List[str]:
        """Tracked attributes without the business keys, duplicates removed."""
        return [c for c in dict.fromkeys(self.scd_columns)
                if c not in self.business_key_columns]

    @property
    def dimension_columns(self) -> List[str]:
        """Full column list of the dimension table, in storage order."""
        return ([self.surrogate_key_column] +
                list(self.business_key_columns) +
                self.tracked_columns +
                [self.scd_hash_column,
                 self.effective_start_column,
                 self.effective_end_column,
                 self.is_current_column,
                 self.created_ts_column,
                 self.modified_ts_column])


@dataclass
class ChangeFeedConfig:
    """Configuration for reading a Delta change data feed."""

    source_table: str
    checkpoint_dir: str
    consumer_name: str = "default"
    operation_column: str = "_operation"

    def __post_init__(self):
        if not self.source_table:
            raise ValueError("source_table is required")
        if not self.checkpoint_dir:
            raise ValueError("checkpoint_dir is required")
        if not self.consumer_name:
            raise ValueError("consumer_name is required")


@dataclass
class ValidationConfig:
    """Configuration for record validation and dead-letter capture."""

    dead_letter_table: str
    on_error: str = "continue"
    error_flag_column: str = "_error_flag"
    error_code_column: str = "_error_code"
    error_message_column: str = "_error_message"
    check_references: bool = False

    def __post_init__(self):
        if not self.dead_letter_table:
            raise ValueError("dead_letter_table is required")
        if self.on_error not in _enum_values(OnErrorPolicy):
            raise ValueError(f"on_error must be one of {_enum_values(OnErrorPolicy)}")


@dataclass
class KeyResolutionConfig:
    """Configuration for dimensional key resolution."""

    # Required parameters
    dimension_table: str
    business_key_columns: List[str]

    # Fact-side column names, positionally matched to business_key_columns
    fact_key_columns: Optional[List[str]] = None

    # Standard column names
    surrogate_key_column: str = "surrogate_key"
    output_key_column: Optional[str] = None
    effective_start_column: str = "eff_start_ts"
    effective_end_column: str = "eff_end_ts"
    is_current_column: str = "is_current"

    # Resolution behaviour
    resolution_mode: str = "current"

    # Performance settings
    enable_caching: bool = True
    cache_ttl_minutes: int = 60
    broadcast_threshold: int = 100000

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.dimension_table:
            raise ValueError("dimension_table is required")
        if not self.business_key_columns:
            raise ValueError("business_key_columns cannot be empty")
        if self.fact_key_columns is None:
            self.fact_key_columns = list(self.business_key_columns)
        if len(self.fact_key_columns) != len(self.business_key_columns):
            raise ValueError("fact_key_columns must match business_key_columns in length")
        if self.output_key_column is None:
            self.output_key_column = self.surrogate_key_column
        if self.resolution_mode not in _enum_values(ResolutionMode):
            raise ValueError(f"resolution_mode must be one of {_enum_values(ResolutionMode)}")
        if self.cache_ttl_minutes <= 0:
            raise ValueError("cache_ttl_minutes must be positive")


@dataclass
class DateDimensionConfig:
    """Configuration for the calendar dimension."""

    target_table: str
    surrogate_key_column: str = "date_dim_hk"
    calendar_date_column: str = "calendar_date"

    def __post_init__(self):
        if not self.target_table:
            raise ValueError("target_table is required")


@dataclass
class FactConfig:
    """Configuration for the order item fact load."""

    target_table: str
    pending_table: str
    resolution_mode: str = "current"
    fact_key_column: str = "order_item_fact_hk"
    pending_reason_column: str = "_missing_dimensions"
    failure_code_column: str = "_error_code"
    hash_algorithm: str = "sha1"

    def __post_init__(self):
        if not self.target_table:
            raise ValueError("target_table is required")
        if not self.pending_table:
            raise ValueError("pending_table is required")
        if self.resolution_mode not in _enum_values(ResolutionMode):
            raise ValueError(f"resolution_mode must be one of {_enum_values(ResolutionMode)}")


@dataclass
class WarehouseConfig:
    """Top-level configuration for a full warehouse load cycle."""

    landing_path: str
    checkpoint_dir: str
    lock_dir: Optional[str] = None

    # Databases for each layer
    stage_database: str = "stage_sch"
    clean_database: str = "clean_sch"
    consumption_database: str = "consumption_sch"
    common_database: str = "common"

    # Behaviour
    on_error: str = "continue"
    effective_time_mode: str = "processing"
    resolution_mode: str = "current"
    hash_algorithm: str = "sha1"
    lock_timeout_seconds: float = 30.0
    entities: List[str] = field(default_factory=list)

    # Spark settings used by the CLI
    spark_master: Optional[str] = None
    warehouse_dir: Optional[str] = None
    spark_conf: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not self.landing_path:
            raise ValueError("landing_path is required")
        if not self.checkpoint_dir:
            raise ValueError("checkpoint_dir is required")
        if self.lock_dir is None:
            self.lock_dir = self.checkpoint_dir
        if self.on_error not in _enum_values(OnErrorPolicy):
            raise ValueError(f"on_error must be one of {_enum_values(OnErrorPolicy)}")
        if self.effective_time_mode not in _enum_values(EffectiveTimeMode):
            raise ValueError(
                f"effective_time_mode must be one of {_enum_values(EffectiveTimeMode)}"
            )
        if self.resolution_mode not in _enum_values(ResolutionMode):
            raise ValueError(f"resolution_mode must be one of {_enum_values(ResolutionMode)}")
        if self.hash_algorithm not in SUPPORTED_HASH_ALGORITHMS:
            raise ValueError(f"hash_algorithm must be one of {list(SUPPORTED_HASH_ALGORITHMS)}")

    def stage_table(self, entity: str) -> str:
        return f"{self.stage_database}.{entity}"

    def clean_table(self, entity: str) -> str:
        return f"{self.clean_database}.{entity}"

    def consumption_table(self, name: str) -> str:
        return f"{self.consumption_database}.{name}"

    def common_table(self, name: str) -> str:
        return f"{self.common_database}.{name}"


@dataclass
class ProcessingMetrics:
    """Metrics for processing operations."""

    records_processed: int = 0
    new_records_created: int = 0
    existing_records_updated: int = 0
    records_expired: int = 0
    records_unchanged: int = 0
    records_with_errors: int = 0
    processing_time_seconds: float = 0.0
    failures_by_kind: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to dictionary."""
        return {
            "records_processed": self.records_processed,
            "new_records_created": self.new_records_created,
            "existing_records_updated": self.existing_records_updated,
            "records_expired": self.records_expired,
            "records_unchanged": self.records_unchanged,
            "records_with_errors": self.records_with_errors,
            "processing_time_seconds": self.processing_time_seconds,
            "failures_by_kind": dict(self.failures_by_kind)
        }


@dataclass
class ValidationResult:
    """Result of data validation."""

    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def add_error(self, error: str) -> None:
        """Add an error message."""
        self.errors.append(error)
        self.is_valid = False

    def add_warning(self, warning: str) -> None:
        """Add a warning message."""
        self.warnings.append(warning)

    def to_dict(self) -> Dict[str, Any]:
        """Convert validation result to dictionary."""
        return {
            "is_valid": self.is_valid,
            "errors": self.errors,
            "warnings": self.warnings
        }
