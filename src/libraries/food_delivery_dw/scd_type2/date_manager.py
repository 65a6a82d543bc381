"""
Date management utilities for SCD processing.
"""

from datetime import datetime, timezone
from typing import Optional
from pyspark.sql import Column, DataFrame
from pyspark.sql.functions import col, lit
import logging

from ..common.config import EffectiveTimeMode, SCDConfig

logger = logging.getLogger(__name__)

EVENT_TS_COLUMN = "_event_ts"


class DateManager:
    """Manages effective and audit timestamps for SCD processing."""

    def __init__(self, config: SCDConfig, processing_ts: Optional[datetime] = None):
        """
        Initialize DateManager with configuration.

        Args:
            config: SCD configuration
            processing_ts: Timestamp shared by the whole run (UTC); now when None
        """
        self.config = config
        if processing_ts is None:
            processing_ts = datetime.now(timezone.utc)
        if processing_ts.tzinfo is not None:
            processing_ts = processing_ts.astimezone(timezone.utc).replace(tzinfo=None)
        self.processing_ts = processing_ts

    @property
    def uses_source_time(self) -> bool:
        return self.config.effective_time_mode == EffectiveTimeMode.SOURCE.value

    def processing_ts_literal(self) -> Column:
        return lit(self.processing_ts).cast("timestamp")

    def add_event_timestamp(self, df: DataFrame) -> DataFrame:
        """
        Add the timestamp a change becomes effective at.

        In ``source`` mode this is the configured event column (the commit
        timestamp by default), otherwise the run's processing timestamp.

        Args:
            df: Change records

        Returns:
            DataFrame with ``_event_ts`` added
        """
        if self.uses_source_time:
            event_column = self.config.event_timestamp_column
            if event_column not in df.columns:
                raise ValueError(f"Event timestamp column '{event_column}' not found in changes")
            logger.info(f"Using source event time from {event_column}")
            return df.withColumn(EVENT_TS_COLUMN, col(event_column).cast("timestamp"))

        logger.info(f"Using processing time {self.processing_ts.isoformat()}")
        return df.withColumn(EVENT_TS_COLUMN, self.processing_ts_literal())

    def set_audit_timestamps(self, df: DataFrame) -> DataFrame:
        """
        Set audit timestamps for records.

        Args:
            df: Input DataFrame

        Returns:
            DataFrame with audit timestamps set
        """
        run_ts = self.processing_ts_literal()
        return (df
                .withColumn(self.config.created_ts_column, run_ts)
                .withColumn(self.config.modified_ts_column, run_ts))
