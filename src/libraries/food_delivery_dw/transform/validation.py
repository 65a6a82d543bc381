"""
Typing and validation of stage records for the clean layer.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional
from pyspark.sql import DataFrame, SparkSession
from pyspark.sql.functions import col, expr, lit, trim
import logging

from ..common.config import FailureKind, OnErrorPolicy, ValidationConfig
from ..common.exceptions import ReferentialGap, SCDValidationError, TypeCastFailure
from ..common.utils import add_error_columns, flag_error_records
from ..entities.catalog import EntitySpec, get_entity
from ..entities.rules import apply_business_rules
from .dead_letter import DeadLetterSink

logger = logging.getLogger(__name__)

RAW_PREFIX = "_raw_"
SAMPLE_SIZE = 5


@dataclass
class ValidationOutcome:
    """Result of validating one batch of stage records."""

    valid_records: DataFrame
    valid_count: int
    rejected_count: int
    flagged_records: DataFrame

    def release(self) -> None:
        """Drop the cached intermediate result."""
        self.flagged_records.unpersist()


class ValidationTransformer:
    """Converts untyped stage records into typed clean records or named rejections."""

    def __init__(self, entity: EntitySpec, config: ValidationConfig, spark: SparkSession,
                 reference_tables: Optional[Dict[str, str]] = None):
        """
        Initialize ValidationTransformer.

        Args:
            entity: Entity being validated
            config: Validation configuration
            spark: Spark session
            reference_tables: Clean table per referenced entity name, used when
                ``config.check_references`` is set
        """
        self.entity = entity
        self.config = config
        self.spark = spark
        self.reference_tables = reference_tables or {}
        self.dead_letter = DeadLetterSink(spark, config.dead_letter_table)

    def transform(self, stage_df: DataFrame) -> ValidationOutcome:
        """
        Type, validate and apply business rules to stage records.

        Args:
            stage_df: Stage records (text columns plus audit/change columns)

        Returns:
            ValidationOutcome with the accepted typed records

        Raises:
            TypeCastFailure, SCDValidationError, ReferentialGap: Under the abort policy
        """
        logger.info(f"🚀 ENTER: transform {self.entity.name}")

        missing = set(self.entity.source_columns) - set(stage_df.columns)
        if missing:
            raise SCDValidationError(f"Stage records for {self.entity.name} miss columns: {missing}",
                                     [f"missing:{c}" for c in sorted(missing)])

        passthrough = [c for c in stage_df.columns if c not in self.entity.source_columns]
        typed_df = self._cast(stage_df)
        flagged_df = add_error_columns(typed_df, self.config.error_flag_column,
                                       self.config.error_code_column,
                                       self.config.error_message_column)
        flagged_df = self._flag_cast_failures(flagged_df)
        flagged_df = self._flag_null_violations(flagged_df)
        if self.config.check_references:
            flagged_df = self._flag_referential_gaps(flagged_df)

        flagged_df = apply_business_rules(self.entity, flagged_df).cache()

        rejected_df = flagged_df.filter(col(self.config.error_flag_column) == "Y")
        rejected_count = rejected_df.count()
        valid_df = (flagged_df
                    .filter(col(self.config.error_flag_column) == "N")
                    .select(*(self.entity.column_names + passthrough)))

        if rejected_count > 0:
            self._handle_rejections(rejected_df, rejected_count, passthrough, flagged_df)

        valid_count = valid_df.count()
        logger.info(f"Validated {self.entity.name}: {valid_count} accepted, {rejected_count} rejected")
        logger.info(f"🏁 EXIT: transform {self.entity.name}")
        return ValidationOutcome(valid_df, valid_count, rejected_count, flagged_df)

    def _cast(self, stage_df: DataFrame) -> DataFrame:
        raw_columns = [col(c).alias(f"{RAW_PREFIX}{c}") for c in self.entity.source_columns]
        others = [col(c) for c in stage_df.columns if c not in self.entity.source_columns]
        df = stage_df.select(*(raw_columns + others))

        for column_spec in self.entity.columns:
            if column_spec.is_derived:
                continue
            raw_name = f"{RAW_PREFIX}{column_spec.source}"
            if column_spec.data_type == "string":
                df = df.withColumn(column_spec.name, col(raw_name))
            else:
                df = df.withColumn(
                    column_spec.name,
                    expr(f"try_cast(trim(`{raw_name}`) AS {column_spec.data_type})")
                )
        return df

    def _flag_cast_failures(self, df: DataFrame) -> DataFrame:
        for column_spec in self.entity.columns:
            if column_spec.is_derived or column_spec.data_type == "string":
                continue
            raw = col(f"{RAW_PREFIX}{column_spec.source}")
            condition = raw.isNotNull() & (trim(raw) != "") & col(column_spec.name).isNull()
            df = flag_error_records(
                df, condition, FailureKind.TYPE_CAST_FAILURE.value,
                f"{column_spec.source} is not a valid {column_spec.data_type}",
                self.config.error_flag_column, self.config.error_code_column,
                self.config.error_message_column
            )
        return df

    def _flag_null_violations(self, df: DataFrame) -> DataFrame:
        for column_spec in self.entity.columns:
            if column_spec.nullable or column_spec.is_derived:
                continue
            condition = col(column_spec.name).isNull()
            if column_spec.data_type == "string":
                condition = condition | (trim(col(column_spec.name)) == "")
            df = flag_error_records(
                df, condition, FailureKind.NULL_VIOLATION.value,
                f"{column_spec.name} is required",
                self.config.error_flag_column, self.config.error_code_column,
                self.config.error_message_column
            )
        return df

    def _flag_referential_gaps(self, df: DataFrame) -> DataFrame:
        for fk_column, referenced_name in self.entity.references.items():
            table_name = self.reference_tables.get(referenced_name)
            if table_name is None:
                logger.warning(f"No clean table known for {referenced_name}; skipping {fk_column} check")
                continue

            referenced = get_entity(referenced_name)
            found_column = f"_ref_found_{fk_column}"
            key_column = f"_ref_key_{fk_column}"
            keys_df = (self.spark.table(table_name)
                       .select(col(referenced.natural_key[0]).alias(key_column))
                       .distinct()
                       .withColumn(found_column, lit(True)))

            df = df.join(keys_df, df[fk_column] == keys_df[key_column], "left")
            condition = col(fk_column).isNotNull() & col(found_column).isNull()
            df = flag_error_records(
                df, condition, FailureKind.REFERENTIAL_GAP.value,
                f"{fk_column} not found in {referenced_name}",
                self.config.error_flag_column, self.config.error_code_column,
                self.config.error_message_column
            ).drop(found_column, key_column)
        return df

    def _handle_rejections(self, rejected_df: DataFrame, rejected_count: int,
                           passthrough: List[str], flagged_df: DataFrame) -> None:
        code_column = self.config.error_code_column
        codes = {row[code_column]: row["count"]
                 for row in rejected_df.groupBy(code_column).count().collect()}
        logger.warning(f"{self.entity.name}: rejected {rejected_count} records {codes}")

        if self.config.on_error == OnErrorPolicy.ABORT.value:
            sample = [row.asDict() for row in rejected_df.select(
                code_column, self.config.error_message_column, *passthrough
            ).limit(SAMPLE_SIZE).collect()]
            flagged_df.unpersist()
            if FailureKind.TYPE_CAST_FAILURE.value in codes:
                raise TypeCastFailure(
                    f"{codes[FailureKind.TYPE_CAST_FAILURE.value]} {self.entity.name} records "
                    f"have fields that cannot be typed",
                    entity=self.entity.name, failed_count=rejected_count, sample=sample
                )
            if FailureKind.REFERENTIAL_GAP.value in codes:
                missing = sorted(set(self.entity.references.values()))
                raise ReferentialGap(
                    f"{codes[FailureKind.REFERENTIAL_GAP.value]} {self.entity.name} records "
                    f"reference missing keys",
                    missing_dimensions=missing, record_count=rejected_count
                )
            raise SCDValidationError(
                f"{rejected_count} {self.entity.name} records failed validation",
                [f"{code}:{count}" for code, count in sorted(codes.items())]
            )

        raw_payload = [col(f"{RAW_PREFIX}{c}").alias(c) for c in self.entity.source_columns]
        self.dead_letter.write(
            self.entity.name,
            rejected_df.select(*(raw_payload + [col(c) for c in passthrough] +
                                 [col(code_column), col(self.config.error_message_column)])),
            code_column, self.config.error_message_column
        )
