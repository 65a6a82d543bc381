"""
Spark session factory with Delta Lake enabled.
"""

from typing import Dict, Optional
from pyspark.sql import SparkSession
from delta import configure_spark_with_delta_pip
import logging

logger = logging.getLogger(__name__)


def create_spark_session(app_name: str = "food-delivery-dw",
                         master: Optional[str] = None,
                         warehouse_dir: Optional[str] = None,
                         extra_config: Optional[Dict[str, str]] = None) -> SparkSession:
    """
    Create (or reuse) a Delta-enabled Spark session.

    New Delta tables get Change Data Feed enabled by default, timestamps are
    handled in UTC, and datetime patterns are parsed strictly.

    Args:
        app_name: Spark application name
        master: Spark master URL, e.g. "local[2]"; left to spark-submit when None
        warehouse_dir: Location of managed tables
        extra_config: Additional Spark configuration entries

    Returns:
        SparkSession
    """
    builder = (SparkSession.builder
               .appName(app_name)
               .config("spark.sql.extensions", "io.delta.sql.DeltaSparkSessionExtension")
               .config("spark.sql.catalog.spark_catalog",
                       "org.apache.spark.sql.delta.catalog.DeltaCatalog")
               .config("spark.databricks.delta.properties.defaults.enableChangeDataFeed", "true")
               .config("spark.sql.session.timeZone", "UTC")
               .config("spark.sql.legacy.timeParserPolicy", "CORRECTED"))

    if master:
        builder = builder.master(master)
    if warehouse_dir:
        builder = builder.config("spark.sql.warehouse.dir", warehouse_dir)
    for key, value in (extra_config or {}).items():
        builder = builder.config(key, value)

    spark = configure_spark_with_delta_pip(builder).getOrCreate()
    logger.info(f"Spark session ready: {app_name} (Spark {spark.version})")
    return spark
