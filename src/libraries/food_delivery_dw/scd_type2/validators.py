"""
Data validation utilities for SCD processing.
"""

from pyspark.sql import DataFrame
from pyspark.sql.functions import col, lead, lit, sum as spark_sum, when
from pyspark.sql.window import Window
import logging

from ..common.config import SCDConfig, ValidationResult

logger = logging.getLogger(__name__)


class SCDValidator:
    """Validates data for SCD processing."""

    def __init__(self, config: SCDConfig):
        """
        Initialize SCDValidator with configuration.

        Args:
            config: SCD configuration
        """
        self.config = config

    def validate_source_data(self, df: DataFrame) -> ValidationResult:
        """
        Validate source data before SCD processing.

        Args:
            df: Input DataFrame

        Returns:
            ValidationResult with validation status and errors
        """
        result = ValidationResult(is_valid=True)

        self._validate_required_columns(df, result)
        self._validate_business_keys(df, result)
        self._validate_operations(df, result)

        logger.info(f"Validation completed. Valid: {result.is_valid}, Errors: {len(result.errors)}")
        return result

    def _validate_required_columns(self, df: DataFrame, result: ValidationResult) -> None:
        """Validate that all required columns exist."""
        required_columns = self.config.business_key_columns + self.config.tracked_columns

        missing_columns = set(required_columns) - set(df.columns)
        if missing_columns:
            result.add_error(f"Missing required columns: {sorted(missing_columns)}")

    def _validate_business_keys(self, df: DataFrame, result: ValidationResult) -> None:
        """Validate business key columns."""
        for col_name in self.config.business_key_columns:
            if col_name in df.columns:
                null_count = df.filter(col(col_name).isNull()).count()
                if null_count > 0:
                    result.add_error(f"Found {null_count} null values in business key column: {col_name}")

    def _validate_operations(self, df: DataFrame, result: ValidationResult) -> None:
        op_column = self.config.operation_column
        if op_column not in df.columns:
            return
        unknown = df.filter(
            col(op_column).isNull() |
            ~col(op_column).isin("INSERT", "UPDATE_BEFORE", "UPDATE_AFTER", "DELETE")
        ).count()
        if unknown > 0:
            result.add_error(f"Found {unknown} change records with unknown operation")

    def validate_unique_business_keys(self, df: DataFrame) -> ValidationResult:
        """
        Check that a snapshot holds at most one row per business key.

        Snapshot rows carry no change order, so duplicates cannot be sequenced.

        Args:
            df: Snapshot DataFrame

        Returns:
            ValidationResult with validation status and errors
        """
        result = ValidationResult(is_valid=True)
        duplicate_keys = (df.groupBy(*self.config.business_key_columns)
                          .count()
                          .filter(col("count") > 1)
                          .count())
        if duplicate_keys > 0:
            result.add_error(f"Found {duplicate_keys} business keys with more than one snapshot row")
        return result

    def validate_dimension_integrity(self, df: DataFrame) -> ValidationResult:
        """
        Check the history invariants of a dimension table.

        - at most one current row per natural key
        - current rows have no effective end
        - no version overlaps its successor
        - gaps between versions (after a tombstone) are reported as warnings

        Args:
            df: Full dimension table

        Returns:
            ValidationResult with one error per violated invariant
        """
        result = ValidationResult(is_valid=True)
        keys = self.config.business_key_columns
        start = self.config.effective_start_column
        end = self.config.effective_end_column
        current = self.config.is_current_column

        multiple_current = (df.groupBy(*keys)
                            .agg(spark_sum(when(col(current) == lit(True), 1).otherwise(0))
                                 .alias("_current_count"))
                            .filter(col("_current_count") > 1)
                            .count())
        if multiple_current > 0:
            result.add_error(f"Found {multiple_current} keys with more than one current record")

        open_mismatch = df.filter(
            (col(current) == lit(True)) != col(end).isNull()
        ).count()
        if open_mismatch > 0:
            result.add_error(f"Found {open_mismatch} records where is_current disagrees with effective end")

        history_order = Window.partitionBy(*keys).orderBy(col(start).asc())
        successors = df.withColumn("_next_start", lead(start).over(history_order))
        counts = (successors
                  .filter(col("_next_start").isNotNull())
                  .agg(spark_sum(when(col(end).isNull() | (col(end) > col("_next_start")), 1)
                                 .otherwise(0)).alias("overlaps"),
                       spark_sum(when(col(end) < col("_next_start"), 1)
                                 .otherwise(0)).alias("gaps"))
                  .collect()[0])
        overlaps, gaps = counts["overlaps"] or 0, counts["gaps"] or 0
        if overlaps > 0:
            result.add_error(f"Found {overlaps} versions overlapping their successor")
        # a tombstone leaves a gap until the key is inserted again
        if gaps > 0:
            result.add_warning(f"Found {gaps} versions not contiguous with their successor")

        inverted = df.filter(col(end).isNotNull() & (col(start) > col(end))).count()
        if inverted > 0:
            result.add_error(f"Found {inverted} records with effective_start > effective_end")

        logger.info(f"Integrity check on {self.config.target_table}: valid={result.is_valid}")
        return result

    def validate_scd_metadata(self, df: DataFrame) -> ValidationResult:
        """
        Validate SCD metadata columns.

        Args:
            df: Input DataFrame with SCD metadata

        Returns:
            ValidationResult with validation status
        """
        result = ValidationResult(is_valid=True)

        for column_name in (self.config.surrogate_key_column,
                            self.config.scd_hash_column,
                            self.config.effective_start_column,
                            self.config.effective_end_column,
                            self.config.is_current_column):
            if column_name not in df.columns:
                result.add_error(f"Missing SCD column: {column_name}")

        if self.config.is_current_column in df.columns:
            current_type = dict(df.dtypes)[self.config.is_current_column]
            if current_type != "boolean":
                result.add_error(f"is_current column has type {current_type}, expected boolean")

        return result
