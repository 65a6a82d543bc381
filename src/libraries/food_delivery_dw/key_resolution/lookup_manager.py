"""
Lookup management for dimensional key resolution.
"""

from typing import List, Dict, Any
from pyspark.sql import DataFrame, SparkSession
from pyspark.sql.functions import broadcast, col, lit, min as spark_min
from pyspark.sql.window import Window
from functools import reduce
import logging

from ..common.config import KeyResolutionConfig
from ..common.exceptions import KeyResolutionError

logger = logging.getLogger(__name__)

DIM_KEY_PREFIX = "_dim_"
FIRST_START_COLUMN = "_first_start"


class LookupManager:
    """Manages dimension lookups for key resolution."""

    def __init__(self, config: KeyResolutionConfig, spark: SparkSession):
        """
        Initialize LookupManager with configuration and Spark session.

        Args:
            config: Key resolution configuration
            spark: Spark session
        """
        self.config = config
        self.spark = spark

        logger.info(f"Initialized LookupManager for dimension: {config.dimension_table}")

    @property
    def dimension_key_aliases(self) -> List[str]:
        return [f"{DIM_KEY_PREFIX}{c}" for c in self.config.business_key_columns]

    def _key_projection(self) -> list:
        return [col(c).alias(a) for c, a in zip(self.config.business_key_columns,
                                                self.dimension_key_aliases)]

    def get_current_dimension_records(self) -> DataFrame:
        """
        Get current dimension records.

        Returns:
            DataFrame with aliased natural key columns and the output key column
        """
        current_records = (self.spark.table(self.config.dimension_table)
                           .filter(col(self.config.is_current_column) == lit(True))
                           .select(*self._key_projection(),
                                   col(self.config.surrogate_key_column)
                                   .alias(self.config.output_key_column)))

        logger.info(f"Loaded current records lookup from {self.config.dimension_table}")
        return current_records

    def get_historical_dimension_records(self) -> DataFrame:
        """
        Get every version of the dimension for as-of lookups.

        The earliest version of each key also answers for events before it
        started, so facts older than the first dimension load still resolve.

        Returns:
            DataFrame with aliased natural key, output key and validity interval
        """
        start = self.config.effective_start_column
        key_window = Window.partitionBy(*self.config.business_key_columns)

        return (self.spark.table(self.config.dimension_table)
                .withColumn(FIRST_START_COLUMN, spark_min(start).over(key_window))
                .select(*self._key_projection(),
                        col(self.config.surrogate_key_column).alias(self.config.output_key_column),
                        col(start).alias("_valid_from"),
                        col(self.config.effective_end_column).alias("_valid_to"),
                        (col(start) == col(FIRST_START_COLUMN)).alias("_is_first")))

    def _key_condition(self, fact_df: DataFrame, dimension_df: DataFrame):
        conditions = [
            fact_df[fact_col] == dimension_df[dim_col]
            for fact_col, dim_col in zip(self.config.fact_key_columns, self.dimension_key_aliases)
        ]
        return reduce(lambda a, b: a & b, conditions)

    def _maybe_broadcast(self, dimension_df: DataFrame) -> DataFrame:
        if dimension_df.count() <= self.config.broadcast_threshold:
            logger.info("Using broadcast join for dimension lookup")
            return broadcast(dimension_df)
        return dimension_df

    def resolve_current_keys(self, fact_df: DataFrame,
                             dimension_df: DataFrame) -> DataFrame:
        """
        Resolve keys against the current version of each dimension record.

        Args:
            fact_df: Fact table DataFrame
            dimension_df: Current dimension DataFrame

        Returns:
            Fact DataFrame with the output key column (null when unresolved)
        """
        logger.info("Resolving keys for current records")
        dimension_df = self._maybe_broadcast(dimension_df)

        resolved_df = fact_df.join(dimension_df, self._key_condition(fact_df, dimension_df), "left")
        return resolved_df.drop(*self.dimension_key_aliases)

    def resolve_historical_keys(self, fact_df: DataFrame,
                                business_date_column: str) -> DataFrame:
        """
        Resolve keys against the version valid at the fact's business timestamp.

        Args:
            fact_df: Fact table DataFrame
            business_date_column: Column containing business date

        Returns:
            Fact DataFrame with the output key column (null when unresolved)
        """
        logger.info(f"Resolving keys for historical records using {business_date_column}")

        historical_dimension = self._maybe_broadcast(self.get_historical_dimension_records())
        event_ts = fact_df[business_date_column]

        join_condition = (
            self._key_condition(fact_df, historical_dimension) &
            ((event_ts >= historical_dimension["_valid_from"]) | historical_dimension["_is_first"]) &
            (historical_dimension["_valid_to"].isNull() | (event_ts < historical_dimension["_valid_to"]))
        )

        resolved_df = fact_df.join(historical_dimension, join_condition, "left")
        return resolved_df.drop(*self.dimension_key_aliases, "_valid_from", "_valid_to", "_is_first")

    def validate_resolution_results(self, fact_df: DataFrame,
                                    resolved_df: DataFrame) -> Dict[str, Any]:
        """
        Validate key resolution results.

        Args:
            fact_df: Original fact DataFrame
            resolved_df: Resolved DataFrame

        Returns:
            Dictionary with validation results

        Raises:
            KeyResolutionError: If a lookup duplicated or lost fact rows
        """
        original_count = fact_df.count()
        resolved_count = resolved_df.count()

        if resolved_count != original_count:
            raise KeyResolutionError(
                f"Row count changed during key resolution: {original_count} -> {resolved_count}",
                "validate_resolution_results"
            )

        unresolved_count = resolved_df.filter(col(self.config.output_key_column).isNull()).count()
        resolution_rate = (original_count - unresolved_count) / original_count if original_count > 0 else 1.0

        validation_results = {
            "original_records": original_count,
            "resolved_records": original_count - unresolved_count,
            "unresolved_records": unresolved_count,
            "resolution_rate": resolution_rate,
        }

        if unresolved_count > 0:
            logger.warning(f"Found {unresolved_count} unresolved keys against {self.config.dimension_table}")
        logger.info(f"Key resolution validation: {validation_results}")
        return validation_results

    def get_dimension_info(self) -> Dict[str, Any]:
        """
        Get information about the dimension table.

        Returns:
            Dictionary with dimension information
        """
        try:
            dimension_df = self.spark.table(self.config.dimension_table)
            total_count = dimension_df.count()
            current_count = dimension_df.filter(col(self.config.is_current_column) == lit(True)).count()

            return {
                "dimension_table": self.config.dimension_table,
                "total_records": total_count,
                "current_records": current_count,
                "historical_records": total_count - current_count,
                "business_key_columns": self.config.business_key_columns,
                "surrogate_key_column": self.config.surrogate_key_column
            }

        except Exception as e:
            logger.error(f"Failed to get dimension info: {str(e)}")
            return {"error": str(e)}
