"""
Utility functions for the food delivery warehouse pipeline.
"""

from functools import reduce
from typing import List, Optional
from pyspark.sql import DataFrame, SparkSession, Column
from pyspark.sql.functions import col, concat_ws, lit, when
import logging

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(levelname)s:%(name)s:%(message)s'


def configure_logging(level: int = logging.INFO) -> None:
    """
    Install a console handler on the package logger.

    Args:
        level: Logging level for the package
    """
    package_logger = logging.getLogger("libraries.food_delivery_dw")
    package_logger.setLevel(level)

    if not package_logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        package_logger.addHandler(console_handler)


def add_error_columns(df: DataFrame, error_flag_column: str = "_error_flag",
                      error_code_column: str = "_error_code",
                      error_message_column: str = "_error_message") -> DataFrame:
    """
    Add error tracking columns to DataFrame.

    Args:
        df: Input DataFrame
        error_flag_column: Name of error flag column
        error_code_column: Name of error code column
        error_message_column: Name of error message column

    Returns:
        DataFrame with error tracking columns
    """
    return (df
            .withColumn(error_flag_column, lit("N"))
            .withColumn(error_code_column, lit(None).cast("string"))
            .withColumn(error_message_column, lit(None).cast("string")))


def flag_error_records(df: DataFrame, condition: Column, error_code: str,
                       error_message: str,
                       error_flag_column: str = "_error_flag",
                       error_code_column: str = "_error_code",
                       error_message_column: str = "_error_message") -> DataFrame:
    """
    Flag records that meet an error condition.

    The first failure code is kept; messages accumulate with "; ".

    Args:
        df: Input DataFrame
        condition: Condition to identify error records
        error_code: Failure code to set
        error_message: Error message to append
        error_flag_column: Name of error flag column
        error_code_column: Name of error code column
        error_message_column: Name of error message column

    Returns:
        DataFrame with error flags updated
    """
    appended_message = when(
        col(error_message_column).isNull(), lit(error_message)
    ).otherwise(concat_ws("; ", col(error_message_column), lit(error_message)))

    return (df
            .withColumn(error_code_column,
                        when(condition & col(error_code_column).isNull(), lit(error_code))
                        .otherwise(col(error_code_column)))
            .withColumn(error_message_column,
                        when(condition, appended_message).otherwise(col(error_message_column)))
            .withColumn(error_flag_column,
                        when(condition, lit("Y")).otherwise(col(error_flag_column))))


def build_key_condition(left_alias: str, right_alias: str,
                        left_columns: List[str],
                        right_columns: Optional[List[str]] = None) -> Column:
    """
    Build an AND-ed equality condition between two aliased DataFrames.

    Args:
        left_alias: Alias of the left side (e.g. "target")
        right_alias: Alias of the right side (e.g. "source")
        left_columns: Key columns on the left side
        right_columns: Key columns on the right side (defaults to left_columns)

    Returns:
        Join / merge condition as Column expression
    """
    right_columns = right_columns or left_columns
    conditions = [
        col(f"{left_alias}.{left_col}") == col(f"{right_alias}.{right_col}")
        for left_col, right_col in zip(left_columns, right_columns)
    ]
    return reduce(lambda a, b: a & b, conditions)


def table_exists(spark: SparkSession, table_name: str) -> bool:
    """Return True when the catalog knows the given table."""
    return spark.catalog.tableExists(table_name)
