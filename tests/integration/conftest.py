"""
Fixtures for warehouse integration tests: per-test databases and landed CSV files.
"""

import csv
import os
import sys
import uuid

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from libraries.food_delivery_dw.common.config import WarehouseConfig
from libraries.food_delivery_dw.entities.catalog import get_entity

NULL = "\\N"


@pytest.fixture
def warehouse_config(spark, tmp_path):
    """WarehouseConfig whose four layer databases are unique to the test."""
    suffix = uuid.uuid4().hex[:8]
    config = WarehouseConfig(
        landing_path=str(tmp_path / "landing"),
        checkpoint_dir=str(tmp_path / "checkpoints"),
        stage_database=f"stage_{suffix}",
        clean_database=f"clean_{suffix}",
        consumption_database=f"consumption_{suffix}",
        common_database=f"common_{suffix}",
    )
    for database in (config.stage_database, config.clean_database,
                     config.consumption_database, config.common_database):
        spark.sql(f"CREATE DATABASE IF NOT EXISTS {database}")
    yield config
    for database in (config.stage_database, config.clean_database,
                     config.consumption_database, config.common_database):
        spark.sql(f"DROP DATABASE IF EXISTS {database} CASCADE")


@pytest.fixture
def land(warehouse_config):
    """
    Write a landed CSV file for an entity.

    Rows are dicts keyed by CSV header name; missing fields are written as the
    null marker. Returns the written path.
    """
    def _land(entity_name, rows, batch=None, header=None, raw_lines=None):
        entity = get_entity(entity_name)
        if batch is None:
            directory = os.path.join(warehouse_config.landing_path, "initial", entity_name)
            file_name = f"{entity_name}_01.csv"
        else:
            directory = os.path.join(warehouse_config.landing_path, "delta", entity_name)
            file_name = f"{batch}.csv"
        os.makedirs(directory, exist_ok=True)
        path = os.path.join(directory, file_name)

        columns = header or entity.source_columns
        with open(path, "w", newline="", encoding="utf-8") as fh:
            writer = csv.writer(fh, lineterminator="\n")
            writer.writerow(columns)
            for row in rows:
                writer.writerow([row.get(c, NULL) for c in columns])
            for line in raw_lines or []:
                fh.write(line + "\n")
        return path

    return _land
