"""
Shared fixtures for the warehouse tests.
"""

import os
import shutil
import sys
import uuid

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))


@pytest.fixture(scope="session")
def spark(tmp_path_factory):
    """Delta-enabled local Spark session shared by the whole test run."""
    if shutil.which("java") is None and not os.environ.get("JAVA_HOME"):
        pytest.skip("Spark tests need a Java runtime")

    from libraries.food_delivery_dw.common.spark_session import create_spark_session

    warehouse_dir = tmp_path_factory.mktemp("spark-warehouse")
    session = create_spark_session(
        app_name="food-delivery-dw-tests",
        master="local[2]",
        warehouse_dir=str(warehouse_dir),
        extra_config={
            "spark.sql.shuffle.partitions": "2",
            "spark.ui.enabled": "false",
            "spark.databricks.delta.snapshotPartitions": "2",
        },
    )
    yield session
    session.stop()


@pytest.fixture
def database(spark):
    """A fresh database per test, dropped afterwards."""
    name = f"test_{uuid.uuid4().hex[:8]}"
    spark.sql(f"CREATE DATABASE {name}")
    yield name
    spark.sql(f"DROP DATABASE IF EXISTS {name} CASCADE")
