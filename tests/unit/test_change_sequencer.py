"""
Unit tests for ChangeSequencer.
"""

import pytest
from datetime import datetime

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from libraries.food_delivery_dw.common.config import SCDConfig
from libraries.food_delivery_dw.scd_type2.change_sequencer import (
    ChangeSequencer,
    DELETED_STATE,
    STATE_HASH_COLUMN,
    SEQUENCE_COLUMN
)

CHANGE_SCHEMA = "customer_id STRING, scd_hash STRING, _operation STRING, _commit_version BIGINT, _event_ts TIMESTAMP"

T1 = datetime(2024, 1, 1, 10, 0)
T2 = datetime(2024, 1, 2, 10, 0)
T3 = datetime(2024, 1, 3, 10, 0)


class TestChangeSequencer:
    """Test cases for ChangeSequencer."""

    @pytest.fixture
    def sequencer(self):
        return ChangeSequencer(SCDConfig(
            target_table="test.customer_dim",
            business_key_columns=["customer_id"],
            scd_columns=["name"],
            surrogate_key_column="customer_hk"
        ))

    def _sequence(self, spark, sequencer, rows, watermarks=None):
        changes = spark.createDataFrame(rows, CHANGE_SCHEMA)
        result = sequencer.sequence(changes, watermarks)
        return sorted(result.collect(), key=lambda r: (r["customer_id"], r[SEQUENCE_COLUMN]))

    def test_update_before_images_are_dropped(self, spark, sequencer):
        rows = self._sequence(spark, sequencer, [
            ("C1", "h1", "UPDATE_BEFORE", 2, T2),
            ("C1", "h2", "UPDATE_AFTER", 2, T2),
        ])

        assert [r["_operation"] for r in rows] == ["UPDATE_AFTER"]

    def test_latest_commit_wins_for_the_same_instant(self, spark, sequencer):
        rows = self._sequence(spark, sequencer, [
            ("C1", "h1", "INSERT", 1, T1),
            ("C1", "h2", "UPDATE_AFTER", 2, T1),
        ])

        assert len(rows) == 1
        assert rows[0]["scd_hash"] == "h2"

    def test_consecutive_identical_states_collapse(self, spark, sequencer):
        rows = self._sequence(spark, sequencer, [
            ("C1", "h1", "INSERT", 1, T1),
            ("C1", "h1", "UPDATE_AFTER", 2, T2),
            ("C1", "h2", "UPDATE_AFTER", 3, T3),
        ])

        assert [(r["scd_hash"], r[SEQUENCE_COLUMN]) for r in rows] == [("h1", 1), ("h2", 2)]

    def test_returning_state_is_kept(self, spark, sequencer):
        rows = self._sequence(spark, sequencer, [
            ("C1", "h1", "INSERT", 1, T1),
            ("C1", "h2", "UPDATE_AFTER", 2, T2),
            ("C1", "h1", "UPDATE_AFTER", 3, T3),
        ])

        assert [r["scd_hash"] for r in rows] == ["h1", "h2", "h1"]

    def test_delete_has_tombstone_state(self, spark, sequencer):
        rows = self._sequence(spark, sequencer, [
            ("C1", "h1", "INSERT", 1, T1),
            ("C1", "h1", "DELETE", 2, T2),
        ])

        assert [r[STATE_HASH_COLUMN] for r in rows] == ["h1", DELETED_STATE]

    def test_watermark_drops_old_changes(self, spark, sequencer):
        watermarks = spark.createDataFrame([("C1", T2)], "customer_id STRING, _watermark TIMESTAMP")

        rows = self._sequence(spark, sequencer, [
            ("C1", "h1", "UPDATE_AFTER", 5, T1),
            ("C1", "h2", "UPDATE_AFTER", 6, T2),
            ("C1", "h3", "UPDATE_AFTER", 7, T3),
            ("C2", "h9", "INSERT", 7, T1),
        ], watermarks)

        assert [(r["customer_id"], r["scd_hash"]) for r in rows] == [("C1", "h3"), ("C2", "h9")]

    def test_keys_are_sequenced_independently(self, spark, sequencer):
        rows = self._sequence(spark, sequencer, [
            ("C1", "h1", "INSERT", 1, T1),
            ("C2", "h2", "INSERT", 1, T1),
            ("C2", "h3", "UPDATE_AFTER", 2, T2),
        ])

        assert [(r["customer_id"], r[SEQUENCE_COLUMN]) for r in rows] == [("C1", 1), ("C2", 1), ("C2", 2)]

    def test_count_by_operation(self, spark, sequencer):
        changes = spark.createDataFrame([
            ("C1", "h1", "INSERT", 1, T1),
            ("C2", "h2", "INSERT", 1, T1),
            ("C2", "h2", "DELETE", 2, T2),
        ], CHANGE_SCHEMA)

        counts = sequencer.count_by_operation(sequencer.sequence(changes))

        assert counts == {"INSERT": 2, "DELETE": 1}
