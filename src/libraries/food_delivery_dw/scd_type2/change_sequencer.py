"""
Ordering and de-duplication of change records before the SCD merge.
"""

from typing import Optional
from pyspark.sql import DataFrame
from pyspark.sql.functions import col, lag, lit, row_number, when
from pyspark.sql.window import Window
import logging

from ..common.config import ChangeOperation, SCDConfig
from .date_manager import EVENT_TS_COLUMN

logger = logging.getLogger(__name__)

STATE_HASH_COLUMN = "_state_hash"
SEQUENCE_COLUMN = "_seq"
WATERMARK_COLUMN = "_watermark"
DELETED_STATE = "__deleted__"


class ChangeSequencer:
    """
    Turns a raw change batch into an ordered list of state transitions per natural key.

    Expects ``_event_ts`` and the SCD hash to be present on the changes.
    """

    def __init__(self, config: SCDConfig):
        """
        Initialize ChangeSequencer.

        Args:
            config: SCD configuration
        """
        self.config = config

    def sequence(self, changes_df: DataFrame,
                 watermarks_df: Optional[DataFrame] = None) -> DataFrame:
        """
        Order and reduce changes per natural key.

        Steps:
            1. Drop UPDATE_BEFORE images (the after image carries the new state).
            2. Drop changes not newer than the key's history watermark, when given.
            3. Keep the last change per (key, event timestamp).
            4. Drop consecutive changes that do not change the state.
            5. Number the remaining changes per key in event order.

        Args:
            changes_df: Changes with ``_operation``, ``_event_ts`` and SCD hash
            watermarks_df: Natural key plus ``_watermark`` (latest recorded
                effective timestamp per key)

        Returns:
            DataFrame of transitions with ``_state_hash`` and ``_seq``
        """
        keys = self.config.business_key_columns
        op_column = self.config.operation_column
        version_column = self.config.commit_version_column

        df = changes_df
        if op_column not in df.columns:
            df = df.withColumn(op_column, lit(ChangeOperation.UPDATE_AFTER.value))
        if version_column not in df.columns:
            df = df.withColumn(version_column, lit(None).cast("bigint"))

        df = df.filter(col(op_column) != ChangeOperation.UPDATE_BEFORE.value)

        if watermarks_df is not None:
            df = (df.join(watermarks_df, keys, "left")
                  .filter(col(WATERMARK_COLUMN).isNull() |
                          (col(EVENT_TS_COLUMN) > col(WATERMARK_COLUMN)))
                  .drop(WATERMARK_COLUMN))

        latest_per_instant = Window.partitionBy(*keys, EVENT_TS_COLUMN).orderBy(
            col(version_column).desc_nulls_last()
        )
        df = (df.withColumn("_rank", row_number().over(latest_per_instant))
              .filter(col("_rank") == 1)
              .drop("_rank"))

        df = df.withColumn(
            STATE_HASH_COLUMN,
            when(col(op_column) == ChangeOperation.DELETE.value, lit(DELETED_STATE))
            .otherwise(col(self.config.scd_hash_column))
        )

        event_order = Window.partitionBy(*keys).orderBy(col(EVENT_TS_COLUMN).asc())
        df = (df.withColumn("_prev_state", lag(STATE_HASH_COLUMN).over(event_order))
              .filter(col("_prev_state").isNull() | (col("_prev_state") != col(STATE_HASH_COLUMN)))
              .drop("_prev_state"))

        return df.withColumn(SEQUENCE_COLUMN, row_number().over(event_order))

    def count_by_operation(self, sequenced_df: DataFrame) -> dict:
        """Count sequenced transitions per operation, for logging and metrics."""
        rows = sequenced_df.groupBy(self.config.operation_column).count().collect()
        return {row[self.config.operation_column]: row["count"] for row in rows}
