"""
Unit tests for HashManager.
"""

import hashlib
import pytest
from datetime import datetime
from pyspark.sql.types import StructType, StructField, StringType

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from libraries.food_delivery_dw.scd_type2.hash_manager import HashManager, digest, hash_key
from libraries.food_delivery_dw.common.config import SCDConfig


class TestHashManager:
    """Test cases for HashManager."""

    @pytest.fixture
    def scd_config(self):
        """Create SCD configuration for testing."""
        return SCDConfig(
            target_table="test.customer_dim",
            business_key_columns=["customer_id"],
            scd_columns=["name", "email"],
            surrogate_key_column="customer_hk"
        )

    @pytest.fixture
    def sample_data(self, spark):
        """Create sample data for testing."""
        data = [
            ("1", "John Doe", "john@example.com"),
            ("2", "Jane Smith", None),
            ("3", "Jane Smith", "")
        ]

        schema = StructType([
            StructField("customer_id", StringType(), True),
            StructField("name", StringType(), True),
            StructField("email", StringType(), True)
        ])

        return spark.createDataFrame(data, schema)

    def test_hash_columns_are_key_then_sorted_attributes(self, scd_config):
        hash_manager = HashManager(scd_config)

        assert hash_manager.get_hash_columns() == ["customer_id", "email", "name"]

    def test_unsupported_algorithm(self):
        config = SCDConfig(
            target_table="test.customer_dim",
            business_key_columns=["customer_id"],
            scd_columns=["name"],
            surrogate_key_column="customer_hk",
            hash_algorithm="crc32"
        )

        with pytest.raises(ValueError, match="Unsupported hash algorithm"):
            HashManager(config)

    def test_digest_matches_documented_layout(self, spark, sample_data):
        row = (HashManager(SCDConfig(
            target_table="test.customer_dim",
            business_key_columns=["customer_id"],
            scd_columns=["name", "email"],
            surrogate_key_column="customer_hk"
        )).compute_scd_hash(sample_data)
            .filter("customer_id = '1'")
            .collect()[0])

        expected = hashlib.sha1("1|john@example.com|John Doe".encode("utf-8")).hexdigest()
        assert row["scd_hash"] == expected

    def test_null_and_empty_string_hash_differently(self, spark, sample_data, scd_config):
        manager = HashManager(scd_config)
        null_email = spark.createDataFrame([("9", "A", None)], sample_data.schema)
        empty_email = spark.createDataFrame([("9", "A", "")], sample_data.schema)

        assert (manager.compute_scd_hash(null_email).collect()[0]["scd_hash"] !=
                manager.compute_scd_hash(empty_email).collect()[0]["scd_hash"])

    def test_digest_length_per_algorithm(self, spark, sample_data):
        row = sample_data.select(
            digest(["customer_id", "name"], "sha1").alias("sha1"),
            digest(["customer_id", "name"], "sha256").alias("sha256"),
            digest(["customer_id", "name"], "md5").alias("md5"),
        ).first()

        assert len(row["sha1"]) == 40
        assert len(row["sha256"]) == 64
        assert len(row["md5"]) == 32

    def test_digest_rejects_unknown_algorithm(self, spark):
        with pytest.raises(ValueError):
            digest(["customer_id"], "crc32")

    def test_hash_key_is_deterministic_bigint(self, spark, sample_data):
        keyed = sample_data.select("customer_id", hash_key(["customer_id"]).alias("k"))

        assert dict(keyed.dtypes)["k"] == "bigint"
        first = {row["customer_id"]: row["k"] for row in keyed.collect()}
        second = {row["customer_id"]: row["k"] for row in keyed.collect()}
        assert first == second
        assert len(set(first.values())) == 3

    def test_surrogate_key_depends_on_effective_start(self, spark, scd_config):
        df = spark.createDataFrame(
            [("abc", datetime(2024, 1, 1)), ("abc", datetime(2024, 2, 1))],
            "scd_hash STRING, eff_start_ts TIMESTAMP"
        )

        rows = HashManager(scd_config).compute_surrogate_key(df).collect()

        assert rows[0]["customer_hk"] != rows[1]["customer_hk"]
