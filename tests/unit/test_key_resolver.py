"""
Unit tests for DimensionalKeyResolver and CacheManager.
"""

import pytest
from datetime import datetime
from unittest.mock import Mock

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from libraries.food_delivery_dw.key_resolution.cache_manager import CacheManager
from libraries.food_delivery_dw.key_resolution.key_resolver import DimensionalKeyResolver
from libraries.food_delivery_dw.common.config import KeyResolutionConfig
from libraries.food_delivery_dw.common.exceptions import KeyResolutionError

DIMENSION_SCHEMA = ("customer_id STRING, customer_hk BIGINT, eff_start_ts TIMESTAMP, "
                    "eff_end_ts TIMESTAMP, is_current BOOLEAN")
FACT_SCHEMA = "order_id BIGINT, customer_id_fk STRING, order_date TIMESTAMP"


class FakeClock:
    """Manually advanced time source."""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestDimensionalKeyResolver:
    """Test cases for DimensionalKeyResolver."""

    @pytest.fixture
    def dimension_table(self, spark, database):
        """Customer C1 changed on Feb 1st; C2 has a single version."""
        data = [
            ("C1", 101, datetime(2024, 1, 1), datetime(2024, 2, 1), False),
            ("C1", 102, datetime(2024, 2, 1), None, True),
            ("C2", 201, datetime(2024, 1, 10), None, True),
        ]
        table_name = f"{database}.customer_dim"
        (spark.createDataFrame(data, DIMENSION_SCHEMA)
         .write.format("delta").saveAsTable(table_name))
        return table_name

    @pytest.fixture
    def facts(self, spark):
        data = [
            (1, "C1", datetime(2024, 1, 15)),
            (2, "C1", datetime(2024, 3, 1)),
            (3, "C2", datetime(2023, 12, 1)),
            (4, "C9", datetime(2024, 1, 15)),
        ]
        return spark.createDataFrame(data, FACT_SCHEMA)

    def _config(self, dimension_table, mode="current"):
        return KeyResolutionConfig(
            dimension_table=dimension_table,
            business_key_columns=["customer_id"],
            fact_key_columns=["customer_id_fk"],
            surrogate_key_column="customer_hk",
            output_key_column="customer_dim_key",
            resolution_mode=mode
        )

    def _keys(self, resolved_df):
        return {row["order_id"]: row["customer_dim_key"] for row in resolved_df.collect()}

    def test_current_mode_uses_current_version(self, spark, dimension_table, facts):
        resolver = DimensionalKeyResolver(self._config(dimension_table), spark)

        keys = self._keys(resolver.resolve_keys(facts))

        assert keys == {1: 102, 2: 102, 3: 201, 4: None}
        resolver.clear_cache()

    def test_as_of_event_mode_uses_version_valid_at_event(self, spark, dimension_table, facts):
        resolver = DimensionalKeyResolver(self._config(dimension_table, "as_of_event"), spark)

        keys = self._keys(resolver.resolve_keys(facts, "order_date"))

        # order 3 predates the first version of C2 and falls back to it
        assert keys == {1: 101, 2: 102, 3: 201, 4: None}

    def test_split_resolved(self, spark, dimension_table, facts):
        resolver = DimensionalKeyResolver(self._config(dimension_table), spark)

        resolved, unresolved = resolver.split_resolved(resolver.resolve_keys(facts))

        assert resolved.count() == 3
        assert [row["order_id"] for row in unresolved.collect()] == [4]
        resolver.clear_cache()

    def test_resolution_keeps_row_count(self, spark, dimension_table, facts):
        resolver = DimensionalKeyResolver(self._config(dimension_table), spark)
        resolved = resolver.resolve_keys(facts)

        stats = resolver.get_resolution_stats(facts, resolved)

        assert stats["resolution_stats"]["original_records"] == 4
        assert stats["resolution_stats"]["unresolved_records"] == 1
        assert stats["dimension_info"]["current_records"] == 2
        resolver.clear_cache()

    def test_current_lookup_is_cached(self, spark, dimension_table, facts):
        resolver = DimensionalKeyResolver(self._config(dimension_table), spark)

        resolver.resolve_keys(facts)

        assert resolver.cache_manager.get_cached_records(resolver.cache_key) is not None
        resolver.clear_cache()
        assert resolver.cache_manager.get_cache_stats()["total_entries"] == 0

    def test_missing_fact_key_column(self, spark, dimension_table):
        resolver = DimensionalKeyResolver(self._config(dimension_table), spark)
        fact_df = Mock()
        fact_df.columns = ["order_id"]

        with pytest.raises(KeyResolutionError, match="Business key columns not found"):
            resolver.resolve_keys(fact_df)

    def test_output_column_already_present(self, spark, dimension_table):
        resolver = DimensionalKeyResolver(self._config(dimension_table), spark)
        fact_df = Mock()
        fact_df.columns = ["customer_id_fk", "customer_dim_key"]

        with pytest.raises(KeyResolutionError, match="already has column"):
            resolver.resolve_keys(fact_df)

    def test_as_of_event_requires_business_date(self, spark, dimension_table):
        resolver = DimensionalKeyResolver(self._config(dimension_table, "as_of_event"), spark)
        fact_df = Mock()
        fact_df.columns = ["customer_id_fk"]

        with pytest.raises(KeyResolutionError, match="Business date column"):
            resolver.resolve_keys(fact_df, "order_date")


class TestCacheManager:
    """Test cases for CacheManager."""

    @pytest.fixture
    def config(self):
        return KeyResolutionConfig(
            dimension_table="consumption_sch.customer_dim",
            business_key_columns=["customer_id"],
            cache_ttl_minutes=10
        )

    def test_cache_hit_before_ttl(self, config):
        clock = FakeClock()
        cache_manager = CacheManager(config, clock)
        df = Mock()

        cache_manager.cache_records(df, "customer")
        clock.now = 599

        assert cache_manager.get_cached_records("customer") is df.cache.return_value

    def test_cache_expires_after_ttl(self, config):
        clock = FakeClock()
        cache_manager = CacheManager(config, clock)
        df = Mock()

        cache_manager.cache_records(df, "customer")
        clock.now = 601

        assert cache_manager.get_cached_records("customer") is None
        df.cache.return_value.unpersist.assert_called_once()

    def test_caching_disabled(self):
        config = KeyResolutionConfig(
            dimension_table="consumption_sch.customer_dim",
            business_key_columns=["customer_id"],
            enable_caching=False
        )
        cache_manager = CacheManager(config)
        df = Mock()

        cache_manager.cache_records(df, "customer")

        assert cache_manager.get_cached_records("customer") is None
        df.cache.assert_not_called()

    def test_cache_stats(self, config):
        clock = FakeClock()
        cache_manager = CacheManager(config, clock)
        cache_manager.cache_records(Mock(), "old")
        clock.now = 700
        cache_manager.cache_records(Mock(), "new")

        stats = cache_manager.get_cache_stats()

        assert stats["total_entries"] == 2
        assert stats["active_entries"] == 1
        assert stats["expired_entries"] == 1
        assert stats["ttl_minutes"] == 10
