"""
Calendar dimension generation.
"""

from datetime import date, datetime, timezone
from typing import Optional, Tuple, Union
from pyspark.sql import DataFrame, SparkSession
from pyspark.sql.functions import (
    col, date_format, dayofmonth, dayofweek, dayofyear, explode, expr,
    lit, min as spark_min, month, quarter, sequence, to_date, weekofyear, year
)
from pyspark.sql.types import DateType, StructField, StructType
from delta.tables import DeltaTable
import logging

from ..common.config import DateDimensionConfig
from ..common.utils import table_exists
from ..scd_type2.hash_manager import hash_key

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime, str]


def _as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


class DateDimensionBuilder:
    """Builds and extends the calendar dimension one row per day."""

    def __init__(self, config: DateDimensionConfig, spark: SparkSession,
                 hash_algorithm: str = "sha1"):
        self.config = config
        self.spark = spark
        self.hash_algorithm = hash_algorithm

    def create_table(self) -> None:
        self.spark.sql(f"""
            CREATE TABLE IF NOT EXISTS {self.config.target_table} (
                {self.config.surrogate_key_column} BIGINT,
                {self.config.calendar_date_column} DATE,
                year INT,
                quarter INT,
                month INT,
                week INT,
                day_of_year INT,
                day_of_week INT,
                day_of_the_month INT,
                day_name STRING
            ) USING DELTA
        """)

    def build(self, min_date: DateLike, max_date: DateLike) -> DataFrame:
        """
        Generate one row per day in [min_date, max_date].

        Args:
            min_date: First calendar date (inclusive)
            max_date: Last calendar date (inclusive)

        Returns:
            DataFrame of calendar rows; empty when min_date > max_date
        """
        start, end = _as_date(min_date), _as_date(max_date)
        date_column = self.config.calendar_date_column

        if start > end:
            logger.warning(f"Empty date range {start} > {end}")
            dates = self.spark.createDataFrame([], StructType([StructField(date_column, DateType())]))
        else:
            dates = self.spark.range(1).select(
                explode(sequence(lit(start), lit(end), expr("interval 1 day"))).alias(date_column)
            )

        return dates.select(
            hash_key([date_column], self.hash_algorithm).alias(self.config.surrogate_key_column),
            col(date_column),
            year(date_column).alias("year"),
            quarter(date_column).alias("quarter"),
            month(date_column).alias("month"),
            weekofyear(date_column).alias("week"),
            dayofyear(date_column).alias("day_of_year"),
            dayofweek(date_column).alias("day_of_week"),
            dayofmonth(date_column).alias("day_of_the_month"),
            date_format(date_column, "EEEE").alias("day_name"),
        )

    def extend(self, min_date: DateLike, max_date: DateLike) -> int:
        """
        Add the dates of the range that the dimension does not have yet.

        Args:
            min_date: First calendar date (inclusive)
            max_date: Last calendar date (inclusive)

        Returns:
            Number of dates inserted
        """
        logger.info(f"🚀 ENTER: extend date dimension {min_date}..{max_date}")
        self.create_table()
        date_column = self.config.calendar_date_column

        if _as_date(min_date) > _as_date(max_date):
            logger.info("🏁 EXIT: extend date dimension (empty range)")
            return 0

        calendar_df = self.build(min_date, max_date)
        (DeltaTable.forName(self.spark, self.config.target_table).alias("target")
         .merge(calendar_df.alias("source"),
                col(f"target.{date_column}") == col(f"source.{date_column}"))
         .whenNotMatchedInsertAll()
         .execute())

        metrics = (DeltaTable.forName(self.spark, self.config.target_table)
                   .history(1).select("operationMetrics").collect()[0][0]) or {}
        inserted = int(metrics.get("numTargetRowsInserted", 0))
        logger.info(f"Inserted {inserted} calendar dates")
        logger.info("🏁 EXIT: extend date dimension")
        return inserted

    def derive_bounds(self, orders_table: str,
                      order_date_column: str = "order_date",
                      today: Optional[DateLike] = None) -> Optional[Tuple[date, date]]:
        """
        Range from the first order date to today.

        Args:
            orders_table: Clean orders table
            order_date_column: Order timestamp column
            today: Last date of the range; the current UTC date when None

        Returns:
            (min_date, max_date), or None when there are no orders
        """
        if not table_exists(self.spark, orders_table):
            logger.warning(f"Orders table {orders_table} does not exist")
            return None

        min_date = (self.spark.table(orders_table)
                    .agg(spark_min(to_date(col(order_date_column))))
                    .collect()[0][0])
        if min_date is None:
            return None
        if today is None:
            today = datetime.now(timezone.utc)
        return min_date, _as_date(today)
