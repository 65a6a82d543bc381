"""
Unit tests for configuration classes.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from libraries.food_delivery_dw.common.config import (
    SCDConfig,
    ChangeFeedConfig,
    ValidationConfig,
    KeyResolutionConfig,
    FactConfig,
    WarehouseConfig,
    ProcessingMetrics,
    ValidationResult
)


class TestSCDConfig:
    """Test cases for SCDConfig."""

    def test_init_success(self):
        """Test successful SCDConfig initialization."""
        config = SCDConfig(
            target_table="consumption_sch.customer_dim",
            business_key_columns=["customer_id"],
            scd_columns=["name", "email"],
            surrogate_key_column="customer_hk"
        )

        assert config.target_table == "consumption_sch.customer_dim"
        assert config.effective_time_mode == "processing"
        assert config.event_timestamp_column == "_commit_timestamp"
        assert config.scd_hash_column == "scd_hash"
        assert config.effective_start_column == "eff_start_ts"
        assert config.effective_end_column == "eff_end_ts"
        assert config.is_current_column == "is_current"
        assert config.hash_algorithm == "sha1"
        assert config.enable_optimization is False

    def test_init_empty_target_table(self):
        with pytest.raises(ValueError, match="target_table is required"):
            SCDConfig(
                target_table="",
                business_key_columns=["customer_id"],
                scd_columns=["name"],
                surrogate_key_column="customer_hk"
            )

    def test_init_empty_business_key_columns(self):
        with pytest.raises(ValueError, match="business_key_columns cannot be empty"):
            SCDConfig(
                target_table="consumption_sch.customer_dim",
                business_key_columns=[],
                scd_columns=["name"],
                surrogate_key_column="customer_hk"
            )

    def test_init_empty_scd_columns(self):
        with pytest.raises(ValueError, match="scd_columns cannot be empty"):
            SCDConfig(
                target_table="consumption_sch.customer_dim",
                business_key_columns=["customer_id"],
                scd_columns=[],
                surrogate_key_column="customer_hk"
            )

    def test_init_invalid_effective_time_mode(self):
        with pytest.raises(ValueError, match="effective_time_mode must be one of"):
            SCDConfig(
                target_table="consumption_sch.customer_dim",
                business_key_columns=["customer_id"],
                scd_columns=["name"],
                surrogate_key_column="customer_hk",
                effective_time_mode="wallclock"
            )

    def test_tracked_columns_exclude_keys_and_duplicates(self):
        config = SCDConfig(
            target_table="consumption_sch.customer_dim",
            business_key_columns=["customer_id"],
            scd_columns=["customer_id", "name", "email", "name"],
            surrogate_key_column="customer_hk"
        )

        assert config.tracked_columns == ["name", "email"]

    def test_dimension_columns_order(self):
        config = SCDConfig(
            target_table="consumption_sch.customer_dim",
            business_key_columns=["customer_id"],
            scd_columns=["name"],
            surrogate_key_column="customer_hk"
        )

        assert config.dimension_columns == [
            "customer_hk", "customer_id", "name", "scd_hash", "eff_start_ts",
            "eff_end_ts", "is_current", "created_ts", "modified_ts"
        ]


class TestKeyResolutionConfig:
    """Test cases for KeyResolutionConfig."""

    def test_defaults(self):
        config = KeyResolutionConfig(
            dimension_table="consumption_sch.customer_dim",
            business_key_columns=["customer_id"],
            surrogate_key_column="customer_hk"
        )

        assert config.fact_key_columns == ["customer_id"]
        assert config.output_key_column == "customer_hk"
        assert config.resolution_mode == "current"
        assert config.cache_ttl_minutes == 60

    def test_fact_key_columns_length_mismatch(self):
        with pytest.raises(ValueError, match="fact_key_columns must match"):
            KeyResolutionConfig(
                dimension_table="consumption_sch.customer_dim",
                business_key_columns=["customer_id"],
                fact_key_columns=["customer_id_fk", "extra"]
            )

    def test_invalid_resolution_mode(self):
        with pytest.raises(ValueError, match="resolution_mode must be one of"):
            KeyResolutionConfig(
                dimension_table="consumption_sch.customer_dim",
                business_key_columns=["customer_id"],
                resolution_mode="latest"
            )

    def test_invalid_cache_ttl(self):
        with pytest.raises(ValueError, match="cache_ttl_minutes must be positive"):
            KeyResolutionConfig(
                dimension_table="consumption_sch.customer_dim",
                business_key_columns=["customer_id"],
                cache_ttl_minutes=0
            )


class TestWarehouseConfig:
    """Test cases for WarehouseConfig."""

    def test_table_names(self):
        config = WarehouseConfig(landing_path="/data/landing", checkpoint_dir="/data/checkpoints")

        assert config.stage_table("customer") == "stage_sch.customer"
        assert config.clean_table("customer") == "clean_sch.customer"
        assert config.consumption_table("customer_dim") == "consumption_sch.customer_dim"
        assert config.common_table("dead_letter") == "common.dead_letter"

    def test_lock_dir_defaults_to_checkpoint_dir(self):
        config = WarehouseConfig(landing_path="/data/landing", checkpoint_dir="/data/checkpoints")

        assert config.lock_dir == "/data/checkpoints"

    def test_invalid_on_error(self):
        with pytest.raises(ValueError, match="on_error must be one of"):
            WarehouseConfig(landing_path="/l", checkpoint_dir="/c", on_error="ignore")

    def test_invalid_hash_algorithm(self):
        with pytest.raises(ValueError, match="hash_algorithm must be one of"):
            WarehouseConfig(landing_path="/l", checkpoint_dir="/c", hash_algorithm="crc32")

    def test_missing_landing_path(self):
        with pytest.raises(ValueError, match="landing_path is required"):
            WarehouseConfig(landing_path="", checkpoint_dir="/c")


class TestSmallConfigs:
    """Test cases for the remaining configuration classes."""

    def test_change_feed_config_requires_checkpoint_dir(self):
        with pytest.raises(ValueError, match="checkpoint_dir is required"):
            ChangeFeedConfig(source_table="stage_sch.customer", checkpoint_dir="")

    def test_validation_config_policy(self):
        assert ValidationConfig(dead_letter_table="common.dead_letter").on_error == "continue"
        with pytest.raises(ValueError, match="on_error must be one of"):
            ValidationConfig(dead_letter_table="common.dead_letter", on_error="skip")

    def test_fact_config_resolution_mode(self):
        with pytest.raises(ValueError, match="resolution_mode must be one of"):
            FactConfig(target_table="f", pending_table="p", resolution_mode="nearest")


class TestProcessingMetrics:
    """Test cases for ProcessingMetrics."""

    def test_to_dict(self):
        metrics = ProcessingMetrics(records_processed=10, new_records_created=4,
                                    records_expired=2)

        result = metrics.to_dict()

        assert result["records_processed"] == 10
        assert result["new_records_created"] == 4
        assert result["records_expired"] == 2
        assert result["records_with_errors"] == 0
        assert result["failures_by_kind"] == {}


class TestValidationResult:
    """Test cases for ValidationResult."""

    def test_add_error(self):
        result = ValidationResult(is_valid=True)
        result.add_error("Test error")

        assert result.is_valid is False
        assert result.errors == ["Test error"]

    def test_add_warning_keeps_valid(self):
        result = ValidationResult(is_valid=True)
        result.add_warning("Test warning")

        assert result.is_valid is True
        assert result.to_dict()["warnings"] == ["Test warning"]
