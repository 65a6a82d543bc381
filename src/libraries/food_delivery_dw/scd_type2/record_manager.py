"""
Record lifecycle management for SCD processing.
"""

from typing import Dict, Any, List
from pyspark.sql import DataFrame, SparkSession
from pyspark.sql.functions import coalesce, col, greatest, lead, lit, max as spark_max, min as spark_min
from pyspark.sql.types import StructType
from pyspark.sql.window import Window
from delta.tables import DeltaTable
from delta.exceptions import DeltaConcurrentModificationException
from functools import reduce
import logging
import time

from ..common.config import ChangeOperation, SCDConfig, ProcessingMetrics
from ..common.exceptions import ConcurrencyViolation, SCDProcessingError
from ..common.utils import table_exists
from .change_sequencer import DELETED_STATE, SEQUENCE_COLUMN, STATE_HASH_COLUMN, WATERMARK_COLUMN
from .date_manager import EVENT_TS_COLUMN, DateManager
from .hash_manager import HashManager

logger = logging.getLogger(__name__)

MERGE_KEY_PREFIX = "_mk_"
NEXT_TS_COLUMN = "_next_ts"


class RecordManager:
    """Manages record lifecycle operations for SCD processing."""

    def __init__(self, config: SCDConfig, spark: SparkSession,
                 date_manager: DateManager = None, hash_manager: HashManager = None):
        """
        Initialize RecordManager with configuration and Spark session.

        Args:
            config: SCD configuration
            spark: Spark session
            date_manager: Shared date manager (holds the run timestamp)
            hash_manager: Shared hash manager
        """
        self.config = config
        self.spark = spark
        self.date_manager = date_manager or DateManager(config)
        self.hash_manager = hash_manager or HashManager(config)

    @property
    def merge_key_columns(self) -> List[str]:
        return [f"{MERGE_KEY_PREFIX}{c}" for c in self.config.business_key_columns]

    def table_exists(self) -> bool:
        return table_exists(self.spark, self.config.target_table)

    def create_table(self, source_schema: StructType) -> None:
        """
        Create the dimension table if it does not exist.

        Natural key and tracked attribute types are taken from the source schema.

        Args:
            source_schema: Schema of the incoming records
        """
        types = {f.name: f.dataType.simpleString() for f in source_schema.fields}
        missing = [c for c in self.config.business_key_columns + self.config.tracked_columns
                   if c not in types]
        if missing:
            raise SCDProcessingError(f"Cannot derive types for columns {missing}", "create_table")

        columns = ([f"{self.config.surrogate_key_column} BIGINT"] +
                   [f"{c} {types[c]}" for c in self.config.business_key_columns] +
                   [f"{c} {types[c]}" for c in self.config.tracked_columns] +
                   [f"{self.config.scd_hash_column} STRING",
                    f"{self.config.effective_start_column} TIMESTAMP",
                    f"{self.config.effective_end_column} TIMESTAMP",
                    f"{self.config.is_current_column} BOOLEAN",
                    f"{self.config.created_ts_column} TIMESTAMP",
                    f"{self.config.modified_ts_column} TIMESTAMP"])
        columns_sql = ",\n                ".join(columns)

        self.spark.sql(f"""
            CREATE TABLE IF NOT EXISTS {self.config.target_table} (
                {columns_sql}
            ) USING DELTA
        """)
        logger.info(f"Ensured dimension table {self.config.target_table}")

    def get_current_records(self) -> DataFrame:
        """
        Get current records from target table.

        Returns:
            DataFrame with current records only
        """
        return (self.spark.table(self.config.target_table)
                .filter(col(self.config.is_current_column) == lit(True)))

    def get_watermarks(self) -> DataFrame:
        """
        Latest recorded effective timestamp per natural key, across all versions.

        Returns:
            DataFrame of natural key columns plus ``_watermark``
        """
        start = col(self.config.effective_start_column)
        end = col(self.config.effective_end_column)
        return (self.spark.table(self.config.target_table)
                .groupBy(*self.config.business_key_columns)
                .agg(spark_max(greatest(start, coalesce(end, start))).alias(WATERMARK_COLUMN)))

    def create_change_plan(self, sequenced_df: DataFrame, current_df: DataFrame) -> Dict[str, DataFrame]:
        """
        Create the versions to insert and the current rows to expire.

        The first transition of a key is dropped when it equals the key's
        current state (idempotent re-delivery). Every remaining upsert
        becomes a version ending where the next transition starts; the
        current row, if any, ends where the first transition starts.

        Args:
            sequenced_df: Output of ChangeSequencer.sequence
            current_df: Current dimension records

        Returns:
            Dictionary with ``versions``, ``expirations`` and ``staged`` DataFrames
        """
        logger.info("🚀 ENTER: create_change_plan")
        keys = self.config.business_key_columns

        current_state = current_df.select(
            *keys,
            col(self.config.scd_hash_column).alias("_current_hash")
        )

        joined = sequenced_df.join(current_state, keys, "left")
        redundant_first = (col(SEQUENCE_COLUMN) == 1) & (
            col(STATE_HASH_COLUMN) == coalesce(col("_current_hash"), lit(DELETED_STATE))
        )
        transitions = joined.filter(~redundant_first)

        event_order = Window.partitionBy(*keys).orderBy(col(EVENT_TS_COLUMN).asc())
        transitions = transitions.withColumn(NEXT_TS_COLUMN, lead(EVENT_TS_COLUMN).over(event_order))

        versions = self._build_versions(transitions)

        expirations = (transitions
                       .filter(col("_current_hash").isNotNull())
                       .groupBy(*keys)
                       .agg(spark_min(EVENT_TS_COLUMN).alias(self.config.effective_end_column)))

        staged = self._stage(versions, expirations)
        touched_keys = versions.select(*keys).unionByName(expirations.select(*keys)).distinct()

        logger.info("🏁 EXIT: create_change_plan")
        return {
            "versions": versions,
            "expirations": expirations,
            "staged": staged,
            "touched_keys": touched_keys,
        }

    def _build_versions(self, transitions: DataFrame) -> DataFrame:
        upserts = transitions.filter(
            col(self.config.operation_column) != ChangeOperation.DELETE.value
        )
        versions = (upserts
                    .withColumn(self.config.effective_start_column, col(EVENT_TS_COLUMN))
                    .withColumn(self.config.effective_end_column, col(NEXT_TS_COLUMN))
                    .withColumn(self.config.is_current_column, col(NEXT_TS_COLUMN).isNull()))
        versions = self.hash_manager.compute_surrogate_key(versions)
        versions = self.date_manager.set_audit_timestamps(versions)
        return versions.select(*self.config.dimension_columns)

    def _stage(self, versions: DataFrame, expirations: DataFrame) -> DataFrame:
        insert_rows = versions.select(
            *[lit(None).alias(mk) for mk in self.merge_key_columns],
            *self.config.dimension_columns
        )
        expire_rows = expirations.select(
            *[col(c).alias(mk) for c, mk in zip(self.config.business_key_columns, self.merge_key_columns)],
            *self.config.business_key_columns,
            col(self.config.effective_end_column),
            self.date_manager.processing_ts_literal().alias(self.config.modified_ts_column)
        )
        # Typed nulls so the union resolves merge key types from the expire rows
        for c, mk in zip(self.config.business_key_columns, self.merge_key_columns):
            insert_rows = insert_rows.withColumn(mk, col(mk).cast(versions.schema[c].dataType))
        return insert_rows.unionByName(expire_rows, allowMissingColumns=True)

    def execute_change_plan(self, change_plan: Dict[str, DataFrame]) -> ProcessingMetrics:
        """
        Apply the change plan as a single MERGE.

        Expirations match the current row of their key; new versions carry a
        null merge key so they never match and are inserted. Both land in one
        Delta commit.

        Args:
            change_plan: Output of create_change_plan

        Returns:
            ProcessingMetrics with execution results

        Raises:
            ConcurrencyViolation: If another writer committed to the table meanwhile
        """
        logger.info("🚀 ENTER: execute_change_plan")
        start_time = time.time()
        metrics = ProcessingMetrics()

        staged = change_plan["staged"].cache()
        try:
            versions_count = change_plan["versions"].count()
            expired_count = change_plan["expirations"].count()
            new_keys = (change_plan["versions"]
                        .join(change_plan["expirations"].select(*self.config.business_key_columns),
                              self.config.business_key_columns, "left_anti")
                        .select(*self.config.business_key_columns).distinct().count())

            if versions_count == 0 and expired_count == 0:
                logger.info("No transitions to apply")
                logger.info("🏁 EXIT: execute_change_plan (empty)")
                return metrics

            self._merge(staged)
        finally:
            staged.unpersist()

        metrics.new_records_created = new_keys
        metrics.existing_records_updated = versions_count - new_keys
        metrics.records_expired = expired_count
        metrics.processing_time_seconds = time.time() - start_time

        logger.info(f"✅ Inserted {versions_count} versions, expired {expired_count} current rows")
        logger.info("🏁 EXIT: execute_change_plan")
        return metrics

    def _merge(self, staged: DataFrame) -> None:
        match_conditions = [
            col(f"target.{c}") == col(f"source.{mk}")
            for c, mk in zip(self.config.business_key_columns, self.merge_key_columns)
        ]
        match_conditions.append(col(f"target.{self.config.is_current_column}") == lit(True))
        merge_condition = reduce(lambda a, b: a & b, match_conditions)

        insert_values = {c: col(f"source.{c}") for c in self.config.dimension_columns}
        insert_condition = col(f"source.{self.merge_key_columns[0]}").isNull()

        delta_table = DeltaTable.forName(self.spark, self.config.target_table)
        try:
            (delta_table.alias("target")
             .merge(staged.alias("source"), merge_condition)
             .whenMatchedUpdate(set={
                 self.config.effective_end_column: col(f"source.{self.config.effective_end_column}"),
                 self.config.is_current_column: lit(False),
                 self.config.modified_ts_column: col(f"source.{self.config.modified_ts_column}")
             })
             .whenNotMatchedInsert(condition=insert_condition, values=insert_values)
             .execute())
        except DeltaConcurrentModificationException as e:
            logger.error(f"Concurrent modification of {self.config.target_table}: {str(e)}")
            raise ConcurrencyViolation(
                f"Concurrent modification of {self.config.target_table}: {str(e)}",
                table_name=self.config.target_table
            )

    def optimize_table(self) -> None:
        """
        Compact the target table, clustering by natural key and effective start.
        """
        try:
            zorder_columns = (self.config.business_key_columns +
                              [self.config.effective_start_column])

            self.spark.sql(f"""
                OPTIMIZE {self.config.target_table}
                ZORDER BY ({', '.join(zorder_columns)})
            """)

            logger.info(f"Optimized table {self.config.target_table} with ZORDER")

        except Exception as e:
            logger.warning(f"Failed to optimize table: {str(e)}")

    def get_table_info(self) -> Dict[str, Any]:
        """
        Get information about the target table.

        Returns:
            Dictionary with table information
        """
        try:
            table_df = self.spark.table(self.config.target_table)
            record_count = table_df.count()
            current_count = table_df.filter(col(self.config.is_current_column) == lit(True)).count()

            return {
                "table_name": self.config.target_table,
                "total_records": record_count,
                "current_records": current_count,
                "historical_records": record_count - current_count
            }

        except Exception as e:
            logger.error(f"Failed to get table info: {str(e)}")
            return {"error": str(e)}
