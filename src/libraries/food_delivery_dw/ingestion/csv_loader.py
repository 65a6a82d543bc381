"""
Stage-layer loading of landed CSV files.
"""

import csv
import glob
import hashlib
import os
from datetime import datetime
from functools import reduce
from typing import List, Optional, Set, Tuple

from pyspark.sql import DataFrame, SparkSession
from pyspark.sql.functions import col, concat, count, current_timestamp, lit, when
from pyspark.sql.functions import sum as spark_sum
from pyspark.sql.types import StringType, StructField, StructType
import logging
import time

from ..common.config import FailureKind, OnErrorPolicy, ProcessingMetrics, WarehouseConfig
from ..common.exceptions import IngestionError, SchemaMismatch
from ..entities.catalog import EntitySpec, STAGE_AUDIT_COLUMNS, get_entity
from ..transform.dead_letter import DeadLetterSink

logger = logging.getLogger(__name__)

CORRUPT_RECORD_COLUMN = "_corrupt_record"
NULL_SENTINEL = "\\N"
LOAD_HISTORY_TABLE = "stage_load_history"
DEAD_LETTER_TABLE = "dead_letter"


def file_md5(path: str) -> str:
    """MD5 hex digest of a file's bytes."""
    digest = hashlib.md5()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def read_header(path: str) -> List[str]:
    """Return the normalized header row of a CSV file."""
    with open(path, newline="", encoding="utf-8") as fh:
        header = next(csv.reader(fh), [])
    return [h.strip().lower() for h in header]


class StageLoader:
    """Loads ``initial/<entity>/`` and ``delta/<entity>/<batch>.csv`` files into stage tables."""

    def __init__(self, config: WarehouseConfig, spark: SparkSession):
        """
        Initialize StageLoader.

        Args:
            config: Warehouse configuration
            spark: Spark session
        """
        self.config = config
        self.spark = spark
        self.history_table = config.common_table(LOAD_HISTORY_TABLE)
        self.dead_letter = DeadLetterSink(spark, config.common_table(DEAD_LETTER_TABLE))

    def create_tables(self, entity: EntitySpec) -> None:
        """Create the stage table, load history and dead-letter tables if missing."""
        columns_sql = ",\n                ".join(
            [f"{name} STRING" for name in entity.source_columns] +
            ["_stg_file_name STRING",
             "_stg_file_load_ts TIMESTAMP",
             "_stg_file_md5 STRING",
             "_copy_data_ts TIMESTAMP"]
        )
        self.spark.sql(f"""
            CREATE TABLE IF NOT EXISTS {self.config.stage_table(entity.name)} (
                {columns_sql}
            ) USING DELTA
            TBLPROPERTIES (delta.enableChangeDataFeed = true)
        """)
        self.spark.sql(f"""
            CREATE TABLE IF NOT EXISTS {self.history_table} (
                entity STRING,
                file_name STRING,
                file_md5 STRING,
                row_count BIGINT,
                rejected_count BIGINT,
                loaded_ts TIMESTAMP
            ) USING DELTA
        """)
        self.dead_letter.create_table()

    def list_files(self, entity: EntitySpec, batch: Optional[str] = None) -> List[str]:
        """
        List landed files for an entity.

        Args:
            entity: Entity to load
            batch: Delta batch name (glob allowed); None selects the initial load

        Returns:
            Sorted list of file paths
        """
        if batch is None:
            pattern = os.path.join(self.config.landing_path, "initial", entity.name, "*.csv")
        else:
            pattern = os.path.join(self.config.landing_path, "delta", entity.name, f"{batch}.csv")
        return sorted(glob.glob(pattern))

    def loaded_files(self, entity: EntitySpec) -> Set[Tuple[str, str]]:
        """(file_name, md5) pairs already recorded for the entity."""
        rows = (self.spark.table(self.history_table)
                .filter(col("entity") == entity.name)
                .select("file_name", "file_md5")
                .collect())
        return {(row["file_name"], row["file_md5"]) for row in rows}

    def load(self, entity_name: str, batch: Optional[str] = None) -> ProcessingMetrics:
        """
        Append landed files for one entity to its stage table.

        Files already recorded in the load history are skipped. Rows whose
        column count does not match the entity layout are SCHEMA_MISMATCH
        failures: dead-lettered under ``continue``, batch-fatal under ``abort``.

        Args:
            entity_name: Entity to load
            batch: Delta batch name; None loads ``initial/<entity>/``

        Returns:
            ProcessingMetrics with appended and rejected counts

        Raises:
            SchemaMismatch: Under the abort policy when any row is malformed
            IngestionError: When files cannot be read
        """
        logger.info(f"🚀 ENTER: load {entity_name} (batch={batch})")
        start_time = time.time()
        metrics = ProcessingMetrics()
        entity = get_entity(entity_name)
        self.create_tables(entity)

        files = self.list_files(entity, batch)
        if not files:
            logger.warning(f"No files found for {entity_name} (batch={batch})")
            logger.info(f"🏁 EXIT: load {entity_name} (no files)")
            return metrics

        already_loaded = self.loaded_files(entity)
        pending = []
        for path in files:
            relative_name = os.path.relpath(path, self.config.landing_path)
            checksum = file_md5(path)
            if (relative_name, checksum) in already_loaded:
                logger.info(f"Skipping already loaded file {relative_name}")
                continue
            pending.append((path, relative_name, checksum))

        if not pending:
            logger.info(f"🏁 EXIT: load {entity_name} (nothing new)")
            return metrics

        try:
            frames = [self._read_file(entity, path, name, checksum)
                      for path, name, checksum in pending]
        except Exception as e:
            logger.error(f"Failed to read files for {entity_name}: {str(e)}")
            raise IngestionError(f"Failed to read files for {entity_name}: {str(e)}", entity_name)

        combined = reduce(lambda a, b: a.unionByName(b), frames)
        # Filtering on the corrupt-record column requires a materialized input
        combined = combined.cache()

        try:
            rejected_condition = col(CORRUPT_RECORD_COLUMN).isNotNull() | ~col("_header_ok")
            rejected_df = combined.filter(rejected_condition)
            accepted_df = combined.filter(~rejected_condition)

            rejected_count = rejected_df.count()
            accepted_count = accepted_df.count()
            metrics.records_processed = rejected_count + accepted_count

            if rejected_count > 0:
                bad_files = sorted({row["_stg_file_name"] for row in
                                    rejected_df.select("_stg_file_name").distinct().collect()})
                if self.config.on_error == OnErrorPolicy.ABORT.value:
                    logger.error(f"Rejecting batch for {entity_name}: {rejected_count} malformed rows in {bad_files}")
                    raise SchemaMismatch(
                        f"{rejected_count} rows in {bad_files} do not match the {entity_name} layout",
                        file_names=bad_files,
                        failed_count=rejected_count
                    )
                self.dead_letter.write(entity_name, self._as_rejections(entity, rejected_df))

            stage_columns = entity.source_columns + STAGE_AUDIT_COLUMNS
            (accepted_df
             .withColumn("_copy_data_ts", current_timestamp())
             .select(*stage_columns)
             .write.format("delta").mode("append")
             .saveAsTable(self.config.stage_table(entity_name)))

            self._record_history(entity, pending, combined)
        finally:
            combined.unpersist()

        metrics.new_records_created = accepted_count
        metrics.records_with_errors = rejected_count
        metrics.processing_time_seconds = time.time() - start_time
        logger.info(f"Loaded {accepted_count} rows into {self.config.stage_table(entity_name)}, "
                    f"rejected {rejected_count}")
        logger.info(f"🏁 EXIT: load {entity_name}")
        return metrics

    def _read_file(self, entity: EntitySpec, path: str, relative_name: str,
                   checksum: str) -> DataFrame:
        schema = StructType(
            [StructField(name, StringType(), True) for name in entity.source_columns] +
            [StructField(CORRUPT_RECORD_COLUMN, StringType(), True)]
        )
        header_ok = read_header(path) == entity.source_columns
        if not header_ok:
            logger.warning(f"Header of {relative_name} does not match the {entity.name} layout")

        load_ts = datetime.fromtimestamp(os.path.getmtime(path))

        return (self.spark.read
                .schema(schema)
                .option("header", True)
                .option("quote", '"')
                .option("escape", '"')
                .option("nullValue", NULL_SENTINEL)
                .option("mode", "PERMISSIVE")
                .option("columnNameOfCorruptRecord", CORRUPT_RECORD_COLUMN)
                .csv(path)
                .withColumn("_stg_file_name", lit(relative_name))
                .withColumn("_stg_file_load_ts", lit(load_ts).cast("timestamp"))
                .withColumn("_stg_file_md5", lit(checksum))
                .withColumn("_header_ok", lit(header_ok)))

    def _as_rejections(self, entity: EntitySpec, rejected_df: DataFrame) -> DataFrame:
        expected = len(entity.source_columns)
        message = when(
            ~col("_header_ok"),
            lit(f"File header does not match the {entity.name} layout")
        ).otherwise(concat(lit(f"Expected {expected} columns: "), col(CORRUPT_RECORD_COLUMN)))

        return (rejected_df
                .withColumn("_error_code", lit(FailureKind.SCHEMA_MISMATCH.value))
                .withColumn("_error_message", message)
                .drop("_header_ok"))

    def _record_history(self, entity: EntitySpec, pending: list, combined: DataFrame) -> None:
        rejected_flag = when(
            col(CORRUPT_RECORD_COLUMN).isNotNull() | ~col("_header_ok"), 1
        ).otherwise(0)
        counts = {
            row["_stg_file_name"]: (row["row_count"], row["rejected_count"])
            for row in (combined
                        .groupBy("_stg_file_name")
                        .agg(count(lit(1)).alias("row_count"),
                             spark_sum(rejected_flag).alias("rejected_count"))
                        .collect())
        }
        history_rows = []
        for _, name, checksum in pending:
            row_count, rejected_count = counts.get(name, (0, 0))
            history_rows.append((entity.name, name, checksum, int(row_count), int(rejected_count or 0)))
        (self.spark.createDataFrame(
            history_rows, "entity STRING, file_name STRING, file_md5 STRING, row_count BIGINT, rejected_count BIGINT")
         .withColumn("loaded_ts", current_timestamp())
         .write.format("delta").mode("append")
         .saveAsTable(self.history_table))
