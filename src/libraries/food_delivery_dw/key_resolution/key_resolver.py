"""
Main dimensional key resolver for fact tables.
"""

from typing import Dict, Any, Optional, Tuple
from pyspark.sql import DataFrame, SparkSession
from pyspark.sql.functions import col
import logging
import time

from ..common.config import KeyResolutionConfig, ResolutionMode
from ..common.exceptions import DimensionalProcessingError, KeyResolutionError
from .lookup_manager import LookupManager
from .cache_manager import CacheManager

logger = logging.getLogger(__name__)


class DimensionalKeyResolver:
    """Resolves dimensional keys for fact tables."""

    def __init__(self, config: KeyResolutionConfig, spark: SparkSession,
                 cache_manager: Optional[CacheManager] = None):
        """
        Initialize DimensionalKeyResolver with configuration and Spark session.

        Args:
            config: Key resolution configuration
            spark: Spark session
            cache_manager: Shared lookup cache (one per resolver when None)
        """
        self.config = config
        self.spark = spark

        self.lookup_manager = LookupManager(config, spark)
        self.cache_manager = cache_manager or CacheManager(config)

        logger.info(f"Initialized DimensionalKeyResolver for dimension: {config.dimension_table}")

    @property
    def cache_key(self) -> str:
        return f"{self.config.dimension_table}:current"

    def resolve_keys(self, fact_df: DataFrame,
                     business_date_column: Optional[str] = None) -> DataFrame:
        """
        Add the dimension's surrogate key to every fact record.

        Unresolved references keep the fact row with a null key; use
        ``split_resolved`` to separate them.

        Args:
            fact_df: Fact table DataFrame
            business_date_column: Business timestamp, required in ``as_of_event`` mode

        Returns:
            DataFrame with the output key column added
        """
        logger.info(f"🚀 ENTER: resolve_keys ({self.config.dimension_table})")
        start_time = time.time()

        try:
            self._validate_input(fact_df, business_date_column)

            if self.config.resolution_mode == ResolutionMode.AS_OF_EVENT.value:
                resolved_df = self.lookup_manager.resolve_historical_keys(fact_df, business_date_column)
            else:
                resolved_df = self._resolve_current(fact_df)

            processing_time = time.time() - start_time
            logger.info(f"Key resolution completed in {processing_time:.2f} seconds")
            logger.info(f"🏁 EXIT: resolve_keys ({self.config.dimension_table})")
            return resolved_df

        except DimensionalProcessingError:
            raise
        except Exception as e:
            logger.error(f"Key resolution failed: {str(e)}")
            raise KeyResolutionError(f"Key resolution failed: {str(e)}", "resolve_keys") from e

    def split_resolved(self, resolved_df: DataFrame) -> Tuple[DataFrame, DataFrame]:
        """
        Split resolved facts into (resolved, unresolved).

        Args:
            resolved_df: Output of resolve_keys

        Returns:
            Tuple of DataFrames with and without a surrogate key
        """
        key = col(self.config.output_key_column)
        return resolved_df.filter(key.isNotNull()), resolved_df.filter(key.isNull())

    def _validate_input(self, fact_df: DataFrame, business_date_column: Optional[str]) -> None:
        missing_columns = set(self.config.fact_key_columns) - set(fact_df.columns)
        if missing_columns:
            raise KeyResolutionError(f"Business key columns not found in fact table: {sorted(missing_columns)}",
                                     "validate_input")

        if self.config.output_key_column in fact_df.columns:
            raise KeyResolutionError(f"Fact table already has column {self.config.output_key_column}",
                                     "validate_input")

        if self.config.resolution_mode == ResolutionMode.AS_OF_EVENT.value:
            if not business_date_column or business_date_column not in fact_df.columns:
                raise KeyResolutionError(
                    f"Business date column '{business_date_column}' not found in fact table",
                    "validate_input"
                )

    def _resolve_current(self, fact_df: DataFrame) -> DataFrame:
        current_dimension = self.cache_manager.get_cached_records(self.cache_key)
        if current_dimension is None:
            current_dimension = self.lookup_manager.get_current_dimension_records()
            self.cache_manager.cache_records(current_dimension, self.cache_key)

        return self.lookup_manager.resolve_current_keys(fact_df, current_dimension)

    def get_resolution_stats(self, fact_df: DataFrame,
                             resolved_df: DataFrame) -> Dict[str, Any]:
        """
        Get key resolution statistics.

        Args:
            fact_df: Original fact DataFrame
            resolved_df: Resolved DataFrame

        Returns:
            Dictionary with resolution statistics
        """
        return {
            "resolution_stats": self.lookup_manager.validate_resolution_results(fact_df, resolved_df),
            "cache_stats": self.cache_manager.get_cache_stats(),
            "dimension_info": self.lookup_manager.get_dimension_info()
        }

    def clear_cache(self) -> None:
        """Clear all cached data."""
        self.cache_manager.clear_cache()
        logger.info("Cleared key resolution cache")
