"""
Unit tests for the YAML configuration loader.
"""

import pytest
from pathlib import Path

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from libraries.food_delivery_dw.common.exceptions import ConfigurationError
from libraries.food_delivery_dw.common.loader import (
    build_warehouse_config,
    load_warehouse_config,
    load_yaml_document
)


class TestLoader:
    """Test cases for loading warehouse configuration."""

    def test_relative_paths_resolve_against_config_file(self, tmp_path):
        config_dir = tmp_path / "config"
        config_dir.mkdir()
        config_file = config_dir / "warehouse.yaml"
        config_file.write_text(
            "landing_path: ../landing\n"
            "checkpoint_dir: ./checkpoints\n"
            "resolution_mode: as_of_event\n"
        )

        config = load_warehouse_config(str(config_file))

        assert config.landing_path == str((tmp_path / "landing").resolve())
        assert config.checkpoint_dir == str((config_dir / "checkpoints").resolve())
        assert config.resolution_mode == "as_of_event"

    def test_absolute_paths_are_kept(self):
        config = build_warehouse_config({"landing_path": "/data/landing",
                                         "checkpoint_dir": "/data/checkpoints"})

        assert config.landing_path == "/data/landing"

    def test_environment_variables_are_expanded(self, monkeypatch):
        monkeypatch.setenv("LANDING_ROOT", "/mnt/landing")

        config = build_warehouse_config({"landing_path": "${LANDING_ROOT}/food",
                                         "checkpoint_dir": "/c"})

        assert config.landing_path == "/mnt/landing/food"

    def test_missing_environment_variable(self, monkeypatch):
        monkeypatch.delenv("NOT_SET_ANYWHERE", raising=False)

        with pytest.raises(ConfigurationError, match="NOT_SET_ANYWHERE"):
            build_warehouse_config({"landing_path": "${NOT_SET_ANYWHERE}", "checkpoint_dir": "/c"})

    def test_unknown_keys_are_rejected(self):
        with pytest.raises(ConfigurationError, match="Unknown configuration keys"):
            build_warehouse_config({"landing_path": "/l", "checkpoint_dir": "/c", "batch_size": 10})

    def test_invalid_values_become_configuration_errors(self):
        with pytest.raises(ConfigurationError, match="Invalid warehouse configuration"):
            build_warehouse_config({"landing_path": "/l", "checkpoint_dir": "/c",
                                    "on_error": "ignore"})

    def test_spark_conf_values_become_strings(self):
        config = build_warehouse_config({"landing_path": "/l", "checkpoint_dir": "/c",
                                         "spark_conf": {"spark.sql.shuffle.partitions": 4}})

        assert config.spark_conf == {"spark.sql.shuffle.partitions": "4"}

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_yaml_document(str(tmp_path / "missing.yaml"))

    def test_root_must_be_mapping(self, tmp_path):
        config_file = tmp_path / "list.yaml"
        config_file.write_text("- a\n- b\n")

        with pytest.raises(ConfigurationError, match="must be a mapping"):
            load_yaml_document(str(config_file))

    def test_example_configuration_loads(self):
        example = Path(__file__).resolve().parents[2] / "config" / "warehouse.example.yaml"

        config = load_warehouse_config(str(example))

        assert config.on_error == "continue"
        assert config.entities == []
        assert config.spark_conf["spark.sql.shuffle.partitions"] == "4"
