"""
Change extraction from Delta Change Data Feed.
"""

from dataclasses import dataclass
from typing import Optional
from pyspark.sql import DataFrame, SparkSession
from pyspark.sql.functions import col, lit, when
from delta.tables import DeltaTable
import logging

from ..common.config import ChangeFeedConfig, ChangeOperation
from ..common.exceptions import ChangeExtractionError
from .checkpoint_store import CheckpointStore

logger = logging.getLogger(__name__)

CHANGE_TYPE_COLUMN = "_change_type"
COMMIT_VERSION_COLUMN = "_commit_version"
COMMIT_TIMESTAMP_COLUMN = "_commit_timestamp"

CHANGE_TYPE_TO_OPERATION = {
    "insert": ChangeOperation.INSERT.value,
    "update_preimage": ChangeOperation.UPDATE_BEFORE.value,
    "update_postimage": ChangeOperation.UPDATE_AFTER.value,
    "delete": ChangeOperation.DELETE.value,
}


@dataclass
class ChangeBatch:
    """
    Changes of one source table between two committed versions.

    The checkpoint only moves when ``commit()`` is called, which must happen
    after the downstream merge succeeded.
    """

    source_table: str
    changes: DataFrame
    start_version: Optional[int]
    end_version: Optional[int]
    checkpoint_store: CheckpointStore

    @property
    def is_empty(self) -> bool:
        return self.end_version is None

    def commit(self) -> None:
        """Advance the checkpoint to the end of this batch."""
        if self.is_empty:
            return
        self.checkpoint_store.set_version(self.source_table, self.end_version)


class ChangeExtractor:
    """Reads row-level changes of a Delta table since the last checkpoint."""

    def __init__(self, config: ChangeFeedConfig, spark: SparkSession,
                 checkpoint_store: Optional[CheckpointStore] = None):
        """
        Initialize ChangeExtractor.

        Args:
            config: Change feed configuration
            spark: Spark session
            checkpoint_store: Store for consumed positions (built from config when None)
        """
        self.config = config
        self.spark = spark
        self.checkpoint_store = checkpoint_store or CheckpointStore(
            config.checkpoint_dir, config.consumer_name
        )

    def latest_version(self) -> int:
        history = DeltaTable.forName(self.spark, self.config.source_table).history(1)
        return int(history.select("version").collect()[0]["version"])

    def extract(self) -> ChangeBatch:
        """
        Extract all changes committed after the checkpoint.

        Returns:
            ChangeBatch whose ``changes`` carry the source columns plus
            ``_operation``, ``_commit_version`` and ``_commit_timestamp``

        Raises:
            ChangeExtractionError: If the change feed cannot be read
        """
        source_table = self.config.source_table
        logger.info(f"🚀 ENTER: extract {source_table}")

        try:
            checkpoint = self.checkpoint_store.get_version(source_table)
            start_version = 0 if checkpoint is None else checkpoint + 1
            end_version = self.latest_version()

            if start_version > end_version:
                logger.info(f"No new versions of {source_table} after {checkpoint}")
                logger.info(f"🏁 EXIT: extract {source_table} (empty)")
                return ChangeBatch(source_table, self._empty_changes(), None, None,
                                   self.checkpoint_store)

            raw_changes = (self.spark.read
                           .format("delta")
                           .option("readChangeFeed", "true")
                           .option("startingVersion", start_version)
                           .option("endingVersion", end_version)
                           .table(source_table))
            changes = self._normalize(raw_changes)
        except Exception as e:
            logger.error(f"Failed to read change feed of {source_table}: {str(e)}")
            raise ChangeExtractionError(
                f"Failed to read change feed of {source_table}: {str(e)}", source_table
            )

        logger.info(f"Extracted changes of {source_table} for versions {start_version}..{end_version}")
        logger.info(f"🏁 EXIT: extract {source_table}")
        return ChangeBatch(source_table, changes, start_version, end_version, self.checkpoint_store)

    def _normalize(self, raw_changes: DataFrame) -> DataFrame:
        operation = None
        for change_type, op in CHANGE_TYPE_TO_OPERATION.items():
            condition = col(CHANGE_TYPE_COLUMN) == lit(change_type)
            operation = (when(condition, lit(op)) if operation is None
                         else operation.when(condition, lit(op)))

        return (raw_changes
                .withColumn(self.config.operation_column, operation)
                .drop(CHANGE_TYPE_COLUMN))

    def _empty_changes(self) -> DataFrame:
        return (self.spark.table(self.config.source_table)
                .limit(0)
                .withColumn(self.config.operation_column, lit(None).cast("string"))
                .withColumn(COMMIT_VERSION_COLUMN, lit(None).cast("bigint"))
                .withColumn(COMMIT_TIMESTAMP_COLUMN, lit(None).cast("timestamp")))
