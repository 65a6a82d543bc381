"""
Order item fact assembly with retry of records whose dimensions are not loaded yet.
"""

from datetime import datetime, timezone
from functools import reduce
from typing import Dict, List, Optional, Tuple
from pyspark.sql import DataFrame, SparkSession
from pyspark.sql.functions import col, concat_ws, lit, row_number, to_date, when
from pyspark.sql.window import Window
from delta.tables import DeltaTable
import logging
import time

from ..common.config import (
    ChangeOperation, FactConfig, FailureKind, KeyResolutionConfig, ProcessingMetrics,
    WarehouseConfig
)
from ..entities.catalog import ORDER_ITEM, get_entity
from ..key_resolution.key_resolver import DimensionalKeyResolver
from ..scd_type2.hash_manager import hash_key

logger = logging.getLogger(__name__)

ITEM_COLUMNS = ORDER_ITEM.column_names
ORDER_FOUND_COLUMN = "_order_found"
DELIVERY_FOUND_COLUMN = "_delivery_found"
RESOLVED_COLUMN = "_resolved"

# (fact output key, dimension entity, fact-side reference column)
DIMENSION_REFERENCES: List[Tuple[str, str, str]] = [
    ("customer_dim_key", "customer", "customer_id_fk"),
    ("customer_address_dim_key", "customer_address", "customer_address_id_fk"),
    ("restaurant_dim_key", "restaurant", "restaurant_id_fk"),
    ("menu_dim_key", "menu", "menu_id_fk"),
    ("delivery_agent_dim_key", "delivery_agent", "delivery_agent_id_fk"),
    ("restaurant_location_dim_key", "location", "_restaurant_location_id"),
]

FACT_MEASURES = ["quantity", "price", "subtotal", "delivery_status", "estimated_time"]


def _upserted(changes: DataFrame) -> DataFrame:
    """Inserted and post-update rows of a change batch."""
    if "_operation" not in changes.columns:
        return changes
    return changes.filter(col("_operation").isin(
        ChangeOperation.INSERT.value, ChangeOperation.UPDATE_AFTER.value
    ))


class FactAssembler:
    """
    Builds ``order_item_fact`` rows from order item changes.

    Every reference must resolve to a dimension key. Records with a gap are
    parked in the pending table with the names of the missing dimensions
    and retried on every subsequent run.
    """

    def __init__(self, warehouse_config: WarehouseConfig, fact_config: FactConfig,
                 spark: SparkSession, date_dimension_table: Optional[str] = None,
                 processing_ts: Optional[datetime] = None):
        """
        Initialize FactAssembler.

        Args:
            warehouse_config: Warehouse layout (databases and table names)
            fact_config: Fact load configuration
            spark: Spark session
            date_dimension_table: Calendar dimension table (consumption ``date_dim`` when None)
            processing_ts: Audit timestamp of the run (UTC); now when None
        """
        self.warehouse_config = warehouse_config
        self.config = fact_config
        self.spark = spark
        self.date_dimension_table = (date_dimension_table or
                                     warehouse_config.consumption_table("date_dim"))
        if processing_ts is None:
            processing_ts = datetime.now(timezone.utc)
        if processing_ts.tzinfo is not None:
            processing_ts = processing_ts.astimezone(timezone.utc).replace(tzinfo=None)
        self.processing_ts = processing_ts

    def _run_ts(self):
        return lit(self.processing_ts).cast("timestamp")

    @property
    def fact_columns(self) -> List[str]:
        return ([self.config.fact_key_column, "order_item_id", "order_id"] +
                [output for output, _, _ in DIMENSION_REFERENCES] +
                ["order_date_dim_key"] + FACT_MEASURES + ["created_ts", "modified_ts"])

    def create_tables(self) -> None:
        """Create the fact and pending tables."""
        key_columns = ",\n                ".join(
            f"{output} BIGINT" for output, _, _ in DIMENSION_REFERENCES
        )
        self.spark.sql(f"""
            CREATE TABLE IF NOT EXISTS {self.config.target_table} (
                {self.config.fact_key_column} BIGINT,
                order_item_id BIGINT,
                order_id BIGINT,
                {key_columns},
                order_date_dim_key BIGINT,
                quantity DECIMAL(10,2),
                price DECIMAL(10,2),
                subtotal DECIMAL(10,2),
                delivery_status STRING,
                estimated_time STRING,
                created_ts TIMESTAMP,
                modified_ts TIMESTAMP
            ) USING DELTA
        """)

        item_columns = ",\n                ".join(
            f"{c.name} {c.data_type.upper()}" for c in ORDER_ITEM.columns
        )
        self.spark.sql(f"""
            CREATE TABLE IF NOT EXISTS {self.config.pending_table} (
                {item_columns},
                {self.config.failure_code_column} STRING,
                {self.config.pending_reason_column} STRING,
                _last_attempt_ts TIMESTAMP
            ) USING DELTA
        """)

    def assemble(self, order_item_changes: DataFrame,
                 order_changes: Optional[DataFrame] = None,
                 delivery_changes: Optional[DataFrame] = None) -> ProcessingMetrics:
        """
        Resolve and merge order item changes together with pending records.

        Items of orders whose order or delivery record changed are rebuilt as
        well, so delivery status and delivery references stay current.

        Args:
            order_item_changes: Clean order item change rows with ``_operation``
            order_changes: Clean orders change rows, optional
            delivery_changes: Clean delivery change rows, optional

        Returns:
            ProcessingMetrics; ``records_with_errors`` counts records left pending
        """
        logger.info("🚀 ENTER: assemble order_item_fact")
        start_time = time.time()
        metrics = ProcessingMetrics()
        self.create_tables()

        items = self._candidate_items(order_item_changes, order_changes, delivery_changes)
        resolvers = []
        assembled = self._resolve(self._enrich(items), resolvers).cache()

        try:
            metrics.records_processed = assembled.count()
            if metrics.records_processed == 0:
                logger.info("🏁 EXIT: assemble order_item_fact (nothing to do)")
                return metrics

            resolved = assembled.filter(col(RESOLVED_COLUMN))
            unresolved = assembled.filter(~col(RESOLVED_COLUMN))
            metrics.records_with_errors = unresolved.count()
            if metrics.records_with_errors > 0:
                metrics.failures_by_kind[FailureKind.REFERENTIAL_GAP.value] = metrics.records_with_errors
                logger.warning(f"{metrics.records_with_errors} order items have unresolved "
                               f"dimension references and stay pending")

            operation_metrics = self._merge_facts(resolved)
            metrics.new_records_created = int(operation_metrics.get("numTargetRowsInserted", 0))
            metrics.existing_records_updated = int(operation_metrics.get("numTargetRowsUpdated", 0))

            self._update_pending(assembled)
        finally:
            assembled.unpersist()
            for resolver in resolvers:
                resolver.clear_cache()

        metrics.processing_time_seconds = time.time() - start_time
        logger.info(f"Fact assembly metrics: {metrics.to_dict()}")
        logger.info("🏁 EXIT: assemble order_item_fact")
        return metrics

    def _candidate_items(self, order_item_changes: DataFrame,
                         order_changes: Optional[DataFrame] = None,
                         delivery_changes: Optional[DataFrame] = None) -> DataFrame:
        """
        Order items to rebuild: latest image per changed item, items of changed
        orders or deliveries, then pending items not already included.
        """
        changes = _upserted(order_item_changes)
        if "_commit_version" in changes.columns:
            latest = Window.partitionBy("order_item_id").orderBy(col("_commit_version").desc())
            changes = (changes.withColumn("_rank", row_number().over(latest))
                       .filter(col("_rank") == 1).drop("_rank"))
        candidates = changes.select(*ITEM_COLUMNS)

        touched_orders = []
        if order_changes is not None:
            touched_orders.append(
                _upserted(order_changes).select(col("order_id").alias("_touched_order_id")))
        if delivery_changes is not None:
            touched_orders.append(
                _upserted(delivery_changes).select(col("order_id_fk").alias("_touched_order_id")))
        if touched_orders:
            order_ids = reduce(lambda a, b: a.unionByName(b), touched_orders).distinct()
            refreshed = (self.spark.table(self.warehouse_config.clean_table("order_item"))
                         .join(order_ids, col("order_id_fk") == col("_touched_order_id"), "left_semi")
                         .select(*ITEM_COLUMNS)
                         .join(candidates.select("order_item_id"), "order_item_id", "left_anti"))
            candidates = candidates.unionByName(refreshed)

        pending = (self.spark.table(self.config.pending_table)
                   .select(*ITEM_COLUMNS)
                   .join(candidates.select("order_item_id"), "order_item_id", "left_anti"))
        return candidates.unionByName(pending)

    def _enrich(self, items: DataFrame) -> DataFrame:
        """Attach order and delivery attributes by order id."""
        orders = self.spark.table(self.warehouse_config.clean_table("orders")).select(
            col("order_id").alias("_order_id"),
            "customer_id_fk", "restaurant_id_fk", "order_date",
            lit(True).alias(ORDER_FOUND_COLUMN)
        )

        latest_delivery = Window.partitionBy("order_id_fk").orderBy(
            col("modified_dt").desc_nulls_last(), col("delivery_id").desc()
        )
        deliveries = (self.spark.table(self.warehouse_config.clean_table("delivery"))
                      .withColumn("_rank", row_number().over(latest_delivery))
                      .filter(col("_rank") == 1)
                      .select(col("order_id_fk").alias("_delivery_order_id"),
                              "delivery_agent_id_fk", "customer_address_id_fk",
                              "delivery_status", "estimated_time",
                              lit(True).alias(DELIVERY_FOUND_COLUMN)))

        return (items
                .join(orders, items["order_id_fk"] == orders["_order_id"], "left")
                .drop("_order_id")
                .join(deliveries, col("order_id_fk") == col("_delivery_order_id"), "left")
                .drop("_delivery_order_id"))

    def _resolver(self, entity_name: str, fact_column: str,
                  output_column: str) -> DimensionalKeyResolver:
        entity = get_entity(entity_name)
        key_config = KeyResolutionConfig(
            dimension_table=self.warehouse_config.consumption_table(entity.dimension_table),
            business_key_columns=entity.natural_key,
            fact_key_columns=[fact_column],
            surrogate_key_column=entity.surrogate_key_column,
            output_key_column=output_column,
            resolution_mode=self.config.resolution_mode,
        )
        return DimensionalKeyResolver(key_config, self.spark)

    def _resolve(self, enriched: DataFrame, resolvers: list) -> DataFrame:
        """Add every dimension key and the pending flag; used resolvers are appended to ``resolvers``."""
        df = enriched
        for output_column, entity_name, fact_column in DIMENSION_REFERENCES:
            if entity_name == "location":
                df = self._attach_restaurant_location(df)
            resolver = self._resolver(entity_name, fact_column, output_column)
            resolvers.append(resolver)
            df = resolver.resolve_keys(df, "order_date")

        date_dim = self.spark.table(self.date_dimension_table).select(
            col("calendar_date").alias("_calendar_date"),
            col("date_dim_hk").alias("order_date_dim_key")
        )
        df = (df.join(date_dim, to_date(col("order_date")) == col("_calendar_date"), "left")
              .drop("_calendar_date"))

        missing = concat_ws(
            ",",
            when(col(ORDER_FOUND_COLUMN).isNull(), lit("orders")),
            when(col(DELIVERY_FOUND_COLUMN).isNull(), lit("delivery")),
            *[when(col(output_column).isNull(), lit(get_entity(entity_name).dimension_table))
              for output_column, entity_name, _ in DIMENSION_REFERENCES],
            when(col("order_date_dim_key").isNull(), lit("date_dim")),
        )
        return (df.withColumn(self.config.pending_reason_column, missing)
                .withColumn(RESOLVED_COLUMN, col(self.config.pending_reason_column) == lit("")))

    def _attach_restaurant_location(self, df: DataFrame) -> DataFrame:
        """Location id of the restaurant version the fact resolved to."""
        restaurant = get_entity("restaurant")
        restaurant_dim = self.spark.table(
            self.warehouse_config.consumption_table(restaurant.dimension_table)
        ).select(col(restaurant.surrogate_key_column).alias("_restaurant_hk"),
                 col("location_id_fk").alias("_restaurant_location_id"))
        return (df.join(restaurant_dim, col("restaurant_dim_key") == col("_restaurant_hk"), "left")
                .drop("_restaurant_hk"))

    def _merge_facts(self, resolved: DataFrame) -> Dict[str, str]:
        fact_df = (resolved
                   .withColumn("order_id", col("order_id_fk"))
                   .withColumn(self.config.fact_key_column,
                               hash_key(["order_item_id", "order_id"], self.config.hash_algorithm))
                   .withColumn("created_ts", self._run_ts())
                   .withColumn("modified_ts", self._run_ts())
                   .select(*self.fact_columns))

        update_columns = [c for c in self.fact_columns if c != "created_ts"]
        delta_table = DeltaTable.forName(self.spark, self.config.target_table)
        (delta_table.alias("target")
         .merge(fact_df.alias("source"),
                (col("target.order_item_id") == col("source.order_item_id")) &
                (col("target.order_id") == col("source.order_id")))
         .whenMatchedUpdate(set={c: col(f"source.{c}") for c in update_columns})
         .whenNotMatchedInsert(values={c: col(f"source.{c}") for c in self.fact_columns})
         .execute())

        return delta_table.history(1).select("operationMetrics").collect()[0][0] or {}

    def _update_pending(self, assembled: DataFrame) -> None:
        """Park unresolved items and drop the ones that resolved, in one commit."""
        staged = assembled.select(
            *ITEM_COLUMNS,
            self.config.pending_reason_column,
            lit(FailureKind.REFERENTIAL_GAP.value).alias(self.config.failure_code_column),
            self._run_ts().alias("_last_attempt_ts"),
            RESOLVED_COLUMN
        )
        pending_columns = ITEM_COLUMNS + [self.config.pending_reason_column,
                                          self.config.failure_code_column, "_last_attempt_ts"]

        (DeltaTable.forName(self.spark, self.config.pending_table).alias("target")
         .merge(staged.alias("source"), col("target.order_item_id") == col("source.order_item_id"))
         .whenMatchedDelete(condition=col(f"source.{RESOLVED_COLUMN}"))
         .whenMatchedUpdate(set={c: col(f"source.{c}") for c in pending_columns})
         .whenNotMatchedInsert(condition=~col(f"source.{RESOLVED_COLUMN}"),
                               values={c: col(f"source.{c}") for c in pending_columns})
         .execute())
