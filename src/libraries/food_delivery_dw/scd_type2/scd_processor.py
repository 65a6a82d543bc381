"""
Main SCD Type 2 processor with clean separation of concerns.
"""

from datetime import datetime
from typing import Optional
from pyspark.sql import DataFrame, SparkSession
from pyspark.sql.functions import lit
import logging
import os
import tempfile
import time

from ..common.config import ChangeOperation, SCDConfig, ProcessingMetrics
from ..common.exceptions import DimensionalProcessingError, SCDValidationError, SCDProcessingError
from ..common.locking import TableLock
from .change_sequencer import ChangeSequencer
from .date_manager import EVENT_TS_COLUMN, DateManager
from .hash_manager import HashManager
from .record_manager import RecordManager
from .validators import SCDValidator

logger = logging.getLogger(__name__)

DEFAULT_LOCK_DIR = os.path.join(tempfile.gettempdir(), "food_delivery_dw_locks")


class SCDProcessor:
    """
    SCD Type 2 merge engine for one dimension table.

    Usage:
        processor = SCDProcessor(config, spark)
        metrics = processor.process_changes(batch.changes)
        batch.commit()
    """

    def __init__(self, config: SCDConfig, spark: SparkSession,
                 processing_ts: Optional[datetime] = None):
        """
        Initialize SCDProcessor with configuration and Spark session.

        Args:
            config: SCD configuration
            spark: Spark session
            processing_ts: Timestamp shared by the run; now when None
        """
        self.config = config
        self.spark = spark

        self.hash_manager = HashManager(config)
        self.date_manager = DateManager(config, processing_ts)
        self.sequencer = ChangeSequencer(config)
        self.record_manager = RecordManager(config, spark, self.date_manager, self.hash_manager)
        self.validator = SCDValidator(config)

        logger.info(f"Initialized SCDProcessor for table: {config.target_table}")

    def process_changes(self, change_df: DataFrame) -> ProcessingMetrics:
        """
        Apply a batch of change records to the dimension.

        Args:
            change_df: Change rows with natural key, tracked attributes,
                ``_operation`` and (in source mode) the event timestamp column

        Returns:
            ProcessingMetrics: Processing metrics and status

        Raises:
            SCDValidationError: If the batch is structurally invalid
            ConcurrencyViolation: If another run holds or changed the table
        """
        logger.info("🚀 ENTER: process_changes")
        return self._process(change_df, use_source_time=self.date_manager.uses_source_time)

    def process_scd(self, source_df: DataFrame) -> ProcessingMetrics:
        """
        Apply a snapshot of records; every row is an upsert at processing time.

        Args:
            source_df: Source DataFrame with one row per business key

        Returns:
            ProcessingMetrics: Processing metrics and status

        Raises:
            SCDValidationError: If a business key appears more than once
        """
        logger.info("🚀 ENTER: process_scd")
        key_result = self.validator.validate_unique_business_keys(source_df)
        if not key_result.is_valid:
            logger.error(f"Validation failed: {key_result.errors}")
            raise SCDValidationError(f"Validation failed: {key_result.errors}", key_result.errors)

        snapshot_df = source_df.withColumn(self.config.operation_column,
                                           lit(ChangeOperation.UPDATE_AFTER.value))
        return self._process(snapshot_df, use_source_time=False)

    def _process(self, change_df: DataFrame, use_source_time: bool) -> ProcessingMetrics:
        start_time = time.time()
        lock_dir = self.config.lock_dir or DEFAULT_LOCK_DIR

        try:
            validation_result = self.validator.validate_source_data(change_df)
            if not validation_result.is_valid:
                logger.error(f"Validation failed: {validation_result.errors}")
                raise SCDValidationError(f"Validation failed: {validation_result.errors}",
                                         validation_result.errors)

            prepared_df = self._prepare_changes(change_df, use_source_time).cache()
            try:
                records_processed = prepared_df.count()
                batch_keys = prepared_df.select(*self.config.business_key_columns).distinct().count()
                logger.info(f"Starting SCD processing for {records_processed} change records")

                with TableLock(lock_dir, self.config.target_table, self.config.lock_timeout_seconds):
                    self.record_manager.create_table(prepared_df.schema)

                    watermarks = self.record_manager.get_watermarks() if use_source_time else None
                    sequenced_df = self.sequencer.sequence(prepared_df, watermarks)
                    logger.info(f"Sequenced transitions: {self.sequencer.count_by_operation(sequenced_df)}")

                    current_records = self.record_manager.get_current_records()
                    change_plan = self.record_manager.create_change_plan(sequenced_df, current_records)
                    touched_count = change_plan["touched_keys"].count()
                    metrics = self.record_manager.execute_change_plan(change_plan)

                    if self.config.enable_optimization:
                        self.record_manager.optimize_table()
            finally:
                prepared_df.unpersist()

            metrics.records_processed = records_processed
            metrics.records_unchanged = batch_keys - touched_count
            metrics.processing_time_seconds = time.time() - start_time

            logger.info(f"SCD processing completed successfully. Metrics: {metrics.to_dict()}")
            logger.info("🏁 EXIT: process_changes")
            return metrics

        except DimensionalProcessingError:
            logger.info("🏁 EXIT: process_changes (with error)")
            raise
        except Exception as e:
            logger.error(f"SCD processing failed: {str(e)}")
            logger.info("🏁 EXIT: process_changes (with error)")
            raise SCDProcessingError(f"SCD processing failed: {str(e)}", "process_changes") from e

    def _prepare_changes(self, change_df: DataFrame, use_source_time: bool) -> DataFrame:
        """
        Add fingerprint and event timestamp to the change records.

        Args:
            change_df: Change records
            use_source_time: Take effective time from the change rather than the run

        Returns:
            DataFrame with SCD hash and ``_event_ts``
        """
        df_with_hash = self.hash_manager.compute_scd_hash(change_df)
        if use_source_time:
            return self.date_manager.add_event_timestamp(df_with_hash)
        return df_with_hash.withColumn(EVENT_TS_COLUMN, self.date_manager.processing_ts_literal())

    def validate_integrity(self):
        """Run the history invariants check on the target table."""
        return self.validator.validate_dimension_integrity(self.spark.table(self.config.target_table))

    def get_table_info(self) -> dict:
        """
        Get information about the target table.

        Returns:
            Dictionary with table information
        """
        return self.record_manager.get_table_info()
