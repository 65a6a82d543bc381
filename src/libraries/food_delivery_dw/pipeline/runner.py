"""
End-to-end load cycle: stage, clean, dimensions, calendar and facts.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from pyspark.sql import SparkSession
from pyspark.sql.functions import col
import logging
import time

from ..cdc.change_extractor import ChangeExtractor
from ..common.config import (
    ChangeFeedConfig, ChangeOperation, DateDimensionConfig, FactConfig, ProcessingMetrics,
    SCDConfig, ValidationConfig, WarehouseConfig
)
from ..dimensions.date_dimension import DateDimensionBuilder
from ..entities.catalog import ENTITY_ORDER, EntitySpec, get_entity
from ..facts.fact_assembler import FactAssembler
from ..ingestion.csv_loader import DEAD_LETTER_TABLE, StageLoader
from ..scd_type2.record_manager import RecordManager
from ..scd_type2.scd_processor import SCDProcessor
from ..transform.clean_loader import CleanLoader
from ..transform.validation import ValidationTransformer

logger = logging.getLogger(__name__)

CLEAN_CONSUMER = "clean_loader"
DIMENSION_CONSUMER = "scd2"
FACT_CONSUMER = "order_item_fact"


class WarehousePipeline:
    """
    Runs the warehouse load cycle in dependency order.

    Checkpoints only advance after the downstream write of their batch
    succeeded, so a failed run is repeated from the same changes next time.
    """

    def __init__(self, config: WarehouseConfig, spark: SparkSession,
                 processing_ts: Optional[datetime] = None):
        """
        Initialize WarehousePipeline.

        Args:
            config: Warehouse configuration
            spark: Spark session
            processing_ts: Timestamp shared by every step of the run; now when None
        """
        self.config = config
        self.spark = spark
        self.processing_ts = processing_ts or datetime.now(timezone.utc)

        self.stage_loader = StageLoader(config, spark)
        self.clean_loader = CleanLoader(config, spark)
        self.date_dimension = DateDimensionBuilder(
            DateDimensionConfig(target_table=config.consumption_table("date_dim")),
            spark, config.hash_algorithm
        )
        self.fact_config = FactConfig(
            target_table=config.consumption_table("order_item_fact"),
            pending_table=config.common_table("order_item_fact_pending"),
            resolution_mode=config.resolution_mode,
            hash_algorithm=config.hash_algorithm,
        )

    @property
    def entity_names(self) -> List[str]:
        if not self.config.entities:
            return list(ENTITY_ORDER)
        unknown = set(self.config.entities) - set(ENTITY_ORDER)
        if unknown:
            raise KeyError(f"Unknown entities in configuration: {sorted(unknown)}")
        return [name for name in ENTITY_ORDER if name in self.config.entities]

    def scd_config(self, entity: EntitySpec) -> SCDConfig:
        return SCDConfig(
            target_table=self.config.consumption_table(entity.dimension_table),
            business_key_columns=entity.natural_key,
            scd_columns=entity.tracked_columns,
            surrogate_key_column=entity.surrogate_key_column,
            effective_time_mode=self.config.effective_time_mode,
            hash_algorithm=self.config.hash_algorithm,
            lock_dir=self.config.lock_dir,
            lock_timeout_seconds=self.config.lock_timeout_seconds,
        )

    def validation_config(self) -> ValidationConfig:
        return ValidationConfig(
            dead_letter_table=self.config.common_table(DEAD_LETTER_TABLE),
            on_error=self.config.on_error,
        )

    def _extractor(self, source_table: str, consumer_name: str) -> ChangeExtractor:
        return ChangeExtractor(
            ChangeFeedConfig(source_table=source_table,
                             checkpoint_dir=self.config.checkpoint_dir,
                             consumer_name=consumer_name),
            self.spark
        )

    def setup(self) -> None:
        """Create databases and every table of the warehouse."""
        logger.info("🚀 ENTER: setup")
        for database in (self.config.stage_database, self.config.clean_database,
                         self.config.consumption_database, self.config.common_database):
            self.spark.sql(f"CREATE DATABASE IF NOT EXISTS {database}")

        for name in ENTITY_ORDER:
            entity = get_entity(name)
            self.stage_loader.create_tables(entity)
            self.clean_loader.create_table(entity)
            if entity.is_dimension:
                clean_schema = self.spark.table(self.config.clean_table(name)).schema
                RecordManager(self.scd_config(entity), self.spark).create_table(clean_schema)

        self.date_dimension.create_table()
        FactAssembler(self.config, self.fact_config, self.spark).create_tables()
        logger.info("🏁 EXIT: setup")

    def load_entity(self, name: str, batch: Optional[str] = None) -> Dict[str, Any]:
        """
        Load one entity from landed files through stage, clean and (for dimensions) SCD2.

        Args:
            name: Entity name
            batch: Delta batch name; None loads the initial files

        Returns:
            Metrics per step
        """
        logger.info(f"🚀 ENTER: load_entity {name}")
        entity = get_entity(name)
        results: Dict[str, Any] = {}

        results["stage"] = self.stage_loader.load(name, batch).to_dict()
        results["clean"] = self._stage_to_clean(entity).to_dict()
        if entity.is_dimension:
            results["dimension"] = self._clean_to_dimension(entity).to_dict()

        logger.info(f"🏁 EXIT: load_entity {name}")
        return results

    def _stage_to_clean(self, entity: EntitySpec) -> ProcessingMetrics:
        self.clean_loader.create_table(entity)
        stage_batch = self._extractor(self.config.stage_table(entity.name), CLEAN_CONSUMER).extract()
        if stage_batch.is_empty:
            return ProcessingMetrics()

        inserted = stage_batch.changes.filter(col("_operation") == ChangeOperation.INSERT.value)
        transformer = ValidationTransformer(entity, self.validation_config(), self.spark)
        outcome = transformer.transform(inserted)
        try:
            metrics = self.clean_loader.upsert(entity, outcome.valid_records)
        finally:
            outcome.release()
        metrics.records_with_errors = outcome.rejected_count

        stage_batch.commit()
        return metrics

    def _clean_to_dimension(self, entity: EntitySpec) -> ProcessingMetrics:
        clean_batch = self._extractor(self.config.clean_table(entity.name), DIMENSION_CONSUMER).extract()
        if clean_batch.is_empty:
            return ProcessingMetrics()

        scd_config = self.scd_config(entity)
        change_columns = (entity.natural_key + entity.tracked_columns +
                          [scd_config.operation_column, "_commit_version", "_commit_timestamp"])
        processor = SCDProcessor(scd_config, self.spark, self.processing_ts)
        metrics = processor.process_changes(clean_batch.changes.select(*change_columns))

        clean_batch.commit()
        return metrics

    def build_date_dimension(self) -> int:
        """Extend the calendar from the first order date to today."""
        bounds = self.date_dimension.derive_bounds(self.config.clean_table("orders"),
                                                   today=self.processing_ts)
        if bounds is None:
            logger.info("No orders loaded yet; calendar left unchanged")
            return 0
        return self.date_dimension.extend(*bounds)

    def assemble_facts(self) -> ProcessingMetrics:
        """
        Build order item facts from clean order item, orders and delivery changes.

        The three checkpoints advance together after the fact and pending
        tables were written.
        """
        item_batch = self._extractor(self.config.clean_table("order_item"), FACT_CONSUMER).extract()
        order_batch = self._extractor(self.config.clean_table("orders"), FACT_CONSUMER).extract()
        delivery_batch = self._extractor(self.config.clean_table("delivery"), FACT_CONSUMER).extract()
        assembler = FactAssembler(self.config, self.fact_config, self.spark,
                                  processing_ts=self.processing_ts)
        metrics = assembler.assemble(item_batch.changes,
                                     order_changes=order_batch.changes,
                                     delivery_changes=delivery_batch.changes)
        for batch in (item_batch, order_batch, delivery_batch):
            batch.commit()
        return metrics

    def run_cycle(self, batch: Optional[str] = None) -> Dict[str, Any]:
        """
        Run every entity, then the calendar and the fact load.

        Args:
            batch: Delta batch name; None loads the initial files

        Returns:
            Metrics per entity and step
        """
        logger.info(f"🚀 ENTER: run_cycle (batch={batch})")
        start_time = time.time()
        self.setup()

        results: Dict[str, Any] = {}
        for name in self.entity_names:
            results[name] = self.load_entity(name, batch)

        results["date_dim"] = {"inserted": self.build_date_dimension()}
        if "order_item" in self.entity_names:
            results["order_item_fact"] = self.assemble_facts().to_dict()

        logger.info(f"Cycle finished in {time.time() - start_time:.2f} seconds")
        logger.info("🏁 EXIT: run_cycle")
        return results
