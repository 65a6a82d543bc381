"""
Integration tests for landing files into the stage and clean layers.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from libraries.food_delivery_dw.cdc.change_extractor import ChangeExtractor
from libraries.food_delivery_dw.common.config import ChangeFeedConfig, ValidationConfig
from libraries.food_delivery_dw.common.exceptions import SchemaMismatch, TypeCastFailure
from libraries.food_delivery_dw.entities.catalog import get_entity
from libraries.food_delivery_dw.ingestion.csv_loader import DEAD_LETTER_TABLE, StageLoader
from libraries.food_delivery_dw.transform.clean_loader import CleanLoader
from libraries.food_delivery_dw.transform.validation import ValidationTransformer


def customer(customer_id, name="Ann", dob="1990-05-01", modified="2024-01-01 10:00:00", **extra):
    row = {
        "customerid": customer_id,
        "name": name,
        "mobile": "9000000001",
        "email": f"{customer_id.lower()}@example.com",
        "loginbyusing": "google",
        "gender": "F",
        "dob": dob,
        "anniversary": "2015-02-14",
        "preferences": "veg",
        "createddate": "2024-01-01 10:00:00",
        "modifieddate": modified,
    }
    row.update(extra)
    return row


class TestStageAndClean:
    """Stage loading, validation and the clean upsert."""

    def _stage_changes(self, spark, config, consumer="clean_loader"):
        extractor = ChangeExtractor(
            ChangeFeedConfig(source_table=config.stage_table("customer"),
                             checkpoint_dir=config.checkpoint_dir,
                             consumer_name=consumer),
            spark
        )
        return extractor.extract()

    def _validation_config(self, config, on_error="continue"):
        return ValidationConfig(dead_letter_table=config.common_table(DEAD_LETTER_TABLE),
                                on_error=on_error)

    def test_stage_load_with_malformed_row(self, spark, warehouse_config, land):
        land("customer", [customer("C1"), customer("C2")], raw_lines=["C3,Carl"])
        loader = StageLoader(warehouse_config, spark)

        metrics = loader.load("customer")

        assert metrics.new_records_created == 2
        assert metrics.records_with_errors == 1
        stage = spark.table(warehouse_config.stage_table("customer"))
        assert stage.count() == 2
        assert stage.filter("_stg_file_md5 IS NULL OR _stg_file_name IS NULL").count() == 0
        dead = loader.dead_letter.read("customer").collect()
        assert [row["_error_code"] for row in dead] == ["SCHEMA_MISMATCH"]

    def test_stage_load_skips_loaded_files(self, spark, warehouse_config, land):
        land("customer", [customer("C1")])
        loader = StageLoader(warehouse_config, spark)

        loader.load("customer")
        metrics = loader.load("customer")

        assert metrics.records_processed == 0
        assert spark.table(warehouse_config.stage_table("customer")).count() == 1

    def test_stage_load_abort_on_malformed_row(self, spark, warehouse_config, land):
        warehouse_config.on_error = "abort"
        land("customer", [customer("C1")], raw_lines=["C3,Carl"])

        with pytest.raises(SchemaMismatch) as exc_info:
            StageLoader(warehouse_config, spark).load("customer")

        assert exc_info.value.failed_count == 1
        assert spark.table(warehouse_config.stage_table("customer")).count() == 0

    def test_wrong_header_is_rejected(self, spark, warehouse_config, land):
        header = list(get_entity("customer").source_columns)
        header[1] = "full_name"
        land("customer", [customer("C1", full_name="Ann")], header=header)

        metrics = StageLoader(warehouse_config, spark).load("customer")

        assert metrics.records_with_errors == 1
        assert metrics.new_records_created == 0

    def test_delta_batch_files(self, spark, warehouse_config, land):
        land("customer", [customer("C1")])
        land("customer", [customer("C2")], batch="day-02")
        loader = StageLoader(warehouse_config, spark)

        loader.load("customer")
        loader.load("customer", "day-02")

        names = {row["_stg_file_name"] for row in
                 spark.table(warehouse_config.stage_table("customer")).select("_stg_file_name").collect()}
        assert names == {os.path.join("initial", "customer", "customer_01.csv"),
                         os.path.join("delta", "customer", "day-02.csv")}

    def test_validation_routes_failures_to_dead_letter(self, spark, warehouse_config, land):
        land("customer", [
            customer("C1", name="  Ann  "),
            customer("C2", dob="not-a-date"),
            customer("C3", name="\\N"),
        ])
        StageLoader(warehouse_config, spark).load("customer")
        batch = self._stage_changes(spark, warehouse_config)

        transformer = ValidationTransformer(get_entity("customer"),
                                            self._validation_config(warehouse_config), spark)
        outcome = transformer.transform(batch.changes)
        try:
            valid = outcome.valid_records.collect()
            assert outcome.valid_count == 1
            assert outcome.rejected_count == 2
            assert valid[0]["customer_id"] == "C1"
            assert valid[0]["name"] == "Ann"
            assert str(valid[0]["dob"]) == "1990-05-01"
        finally:
            outcome.release()

        codes = sorted(row["_error_code"] for row in
                       transformer.dead_letter.read("customer").collect())
        assert codes == ["NULL_VIOLATION", "TYPE_CAST_FAILURE"]

    def test_validation_abort_policy(self, spark, warehouse_config, land):
        land("customer", [customer("C1"), customer("C2", dob="31/12/1990")])
        StageLoader(warehouse_config, spark).load("customer")
        batch = self._stage_changes(spark, warehouse_config)

        transformer = ValidationTransformer(get_entity("customer"),
                                            self._validation_config(warehouse_config, "abort"), spark)
        with pytest.raises(TypeCastFailure) as exc_info:
            transformer.transform(batch.changes)

        assert exc_info.value.failed_count == 1
        assert exc_info.value.sample

    def test_clean_upsert_applies_waves_in_order(self, spark, warehouse_config, land):
        land("customer", [
            customer("C1", name="Ann", modified="2024-01-02 10:00:00"),
            customer("C1", name="Anne", modified="2024-01-03 10:00:00"),
        ])
        StageLoader(warehouse_config, spark).load("customer")
        batch = self._stage_changes(spark, warehouse_config)
        entity = get_entity("customer")
        outcome = ValidationTransformer(entity, self._validation_config(warehouse_config), spark).transform(
            batch.changes)

        try:
            metrics = CleanLoader(warehouse_config, spark).upsert(entity, outcome.valid_records)
        finally:
            outcome.release()
        batch.commit()

        clean = spark.table(warehouse_config.clean_table("customer")).collect()
        assert len(clean) == 1
        assert clean[0]["name"] == "Anne"
        assert metrics.new_records_created == 1
        assert metrics.existing_records_updated == 1

        clean_changes = (spark.read.format("delta").option("readChangeFeed", "true")
                         .option("startingVersion", 0)
                         .table(warehouse_config.clean_table("customer"))
                         .filter("_change_type = 'update_postimage'")
                         .collect())
        assert [row["name"] for row in clean_changes] == ["Anne"]

    def test_clean_upsert_skips_unchanged_records(self, spark, warehouse_config, land):
        entity = get_entity("customer")
        loader = CleanLoader(warehouse_config, spark)
        land("customer", [customer("C1")])
        land("customer", [customer("C1")], batch="day-02")
        stage_loader = StageLoader(warehouse_config, spark)
        validation_config = self._validation_config(warehouse_config)

        results = []
        for batch_name in (None, "day-02"):
            stage_loader.load("customer", batch_name)
            batch = self._stage_changes(spark, warehouse_config)
            outcome = ValidationTransformer(entity, validation_config, spark).transform(batch.changes)
            try:
                results.append(loader.upsert(entity, outcome.valid_records))
            finally:
                outcome.release()
            batch.commit()

        assert results[1].records_unchanged == 1
        assert spark.table(warehouse_config.clean_table("customer")).count() == 1

    def test_extractor_returns_empty_batch_after_commit(self, spark, warehouse_config, land):
        land("customer", [customer("C1")])
        StageLoader(warehouse_config, spark).load("customer")

        first = self._stage_changes(spark, warehouse_config)
        assert first.changes.count() == 1
        assert "_operation" in first.changes.columns
        first.commit()

        second = self._stage_changes(spark, warehouse_config)
        assert second.is_empty
        assert second.changes.count() == 0

    def test_reappended_file_applies_each_version_once(self, spark, warehouse_config, land):
        land("customer", [
            customer("C1", name="Ann", modified="2024-01-02 10:00:00"),
            customer("C1", name="Anne", modified="2024-01-03 10:00:00"),
        ])
        entity = get_entity("customer")
        stage_loader = StageLoader(warehouse_config, spark)
        clean_loader = CleanLoader(warehouse_config, spark)
        validation_config = self._validation_config(warehouse_config)

        def load_file_again():
            # a lost load history entry makes the next load append the file again
            spark.sql(f"DELETE FROM {stage_loader.history_table}")
            stage_loader.load("customer")

        def upsert_stage_changes():
            batch = self._stage_changes(spark, warehouse_config)
            outcome = ValidationTransformer(entity, validation_config, spark).transform(batch.changes)
            try:
                metrics = clean_loader.upsert(entity, outcome.valid_records)
            finally:
                outcome.release()
            batch.commit()
            return metrics

        stage_loader.load("customer")
        load_file_again()
        assert spark.table(warehouse_config.stage_table("customer")).count() == 4

        first = upsert_stage_changes()
        load_file_again()
        second = upsert_stage_changes()

        assert first.new_records_created == 1
        assert first.existing_records_updated == 1
        assert second.new_records_created == 0
        assert second.existing_records_updated == 0
        clean_changes = (spark.read.format("delta").option("readChangeFeed", "true")
                         .option("startingVersion", 0)
                         .table(warehouse_config.clean_table("customer"))
                         .filter("_change_type IN ('insert', 'update_postimage')")
                         .orderBy("_commit_version")
                         .collect())
        assert [(row["_change_type"], row["name"]) for row in clean_changes] == [
            ("insert", "Ann"), ("update_postimage", "Anne")
        ]
        assert spark.table(warehouse_config.clean_table("customer")).collect()[0]["name"] == "Anne"
