"""
Dead-letter sink for records rejected during ingestion or validation.
"""

from pyspark.sql import DataFrame, SparkSession
from pyspark.sql.functions import col, current_timestamp, lit, struct, to_json
import logging

logger = logging.getLogger(__name__)

class DeadLetterSink:
    """Appends rejected records, serialized as JSON, to a shared Delta table."""

    def __init__(self, spark: SparkSession, table_name: str):
        self.spark = spark
        self.table_name = table_name

    def create_table(self) -> None:
        """Create the dead-letter table if it does not exist."""
        self.spark.sql(f"""
            CREATE TABLE IF NOT EXISTS {self.table_name} (
                entity STRING,
                _error_code STRING,
                _error_message STRING,
                _stg_file_name STRING,
                _record STRING,
                _rejected_ts TIMESTAMP
            ) USING DELTA
        """)

    def write(self, entity: str, rejected_df: DataFrame,
              error_code_column: str = "_error_code",
              error_message_column: str = "_error_message") -> int:
        """
        Append rejected records.

        Every column other than the error columns is packed into ``_record``.

        Args:
            entity: Entity the records belong to
            rejected_df: Records carrying error code and message columns
            error_code_column: Name of the failure code column
            error_message_column: Name of the error message column

        Returns:
            Number of records written
        """
        control_columns = {error_code_column, error_message_column, "_error_flag"}
        payload_columns = [c for c in rejected_df.columns if c not in control_columns]
        file_name = (col("_stg_file_name") if "_stg_file_name" in rejected_df.columns
                     else lit(None).cast("string"))

        dead_letter_df = rejected_df.select(
            lit(entity).alias("entity"),
            col(error_code_column).alias("_error_code"),
            col(error_message_column).alias("_error_message"),
            file_name.alias("_stg_file_name"),
            to_json(struct(*[col(c) for c in payload_columns])).alias("_record"),
            current_timestamp().alias("_rejected_ts"),
        )

        count = dead_letter_df.count()
        if count == 0:
            return 0

        dead_letter_df.write.format("delta").mode("append").saveAsTable(self.table_name)
        logger.warning(f"Routed {count} rejected {entity} records to {self.table_name}")
        return count

    def read(self, entity: str = None) -> DataFrame:
        df = self.spark.table(self.table_name)
        if entity is not None:
            df = df.filter(col("entity") == entity)
        return df
