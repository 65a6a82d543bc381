"""
Business rules applied while typing stage records into the clean layer.
"""

from typing import Callable, Dict, Iterable
from pyspark.sql import DataFrame
from pyspark.sql.functions import col, lit, trim, when
import logging

from .catalog import EntitySpec

logger = logging.getLogger(__name__)

STATE_CODES = {
    "Delhi": "DL",
    "Maharashtra": "MH",
    "Uttar Pradesh": "UP",
    "Gujarat": "GJ",
    "Rajasthan": "RJ",
    "Kerala": "KL",
    "Punjab": "PB",
    "Karnataka": "KA",
    "Madhya Pradesh": "MP",
    "Odisha": "OR",
    "Chandigarh": "CH",
    "West Bengal": "WB",
    "Sikkim": "SK",
    "Andhra Pradesh": "AP",
    "Assam": "AS",
    "Jammu and Kashmir": "JK",
    "Puducherry": "PY",
    "Uttarakhand": "UK",
    "Himachal Pradesh": "HP",
    "Tamil Nadu": "TN",
    "Goa": "GA",
    "Telangana": "TG",
    "Chhattisgarh": "CG",
    "Jharkhand": "JH",
    "Bihar": "BR",
}

UNION_TERRITORIES = ["Delhi", "Chandigarh", "Puducherry", "Jammu and Kashmir"]

# (state, city) pairs
CAPITAL_CITIES = [("Delhi", "New Delhi"), ("Maharashtra", "Mumbai")]

TIER_1_CITIES = ["Mumbai", "Delhi", "Bengaluru", "Hyderabad", "Chennai", "Kolkata",
                 "Pune", "Ahmedabad"]

TIER_2_CITIES = ["Jaipur", "Lucknow", "Kanpur", "Nagpur", "Indore", "Bhopal", "Patna",
                 "Vadodara", "Coimbatore", "Ludhiana", "Agra", "Nashik", "Ranchi", "Meerut",
                 "Raipur", "Guwahati", "Chandigarh"]

STATE_RENAMES = {"Delhi": "New Delhi"}


def trim_text_columns(df: DataFrame, columns: Iterable[str]) -> DataFrame:
    """Trim surrounding whitespace from the given string columns."""
    for column_name in columns:
        df = df.withColumn(column_name, trim(col(column_name)))
    return df


def _lookup(column_name: str, mapping: Dict[str, str]):
    expr = None
    for key, value in mapping.items():
        condition = col(column_name) == lit(key)
        expr = when(condition, lit(value)) if expr is None else expr.when(condition, lit(value))
    return expr.otherwise(lit(None).cast("string"))


def derive_location_attributes(df: DataFrame) -> DataFrame:
    """
    Derive state code, union territory flag, capital flag and city tier.

    Derivations read the state as delivered; the state rename
    (Delhi -> New Delhi) is applied last.

    Args:
        df: Location records with ``city`` and ``state``

    Returns:
        DataFrame with derived location columns
    """
    capital_condition = None
    for state, city in CAPITAL_CITIES:
        condition = (col("state") == lit(state)) & (col("city") == lit(city))
        capital_condition = condition if capital_condition is None else capital_condition | condition

    return (df
            .withColumn("state_code", _lookup("state", STATE_CODES))
            .withColumn("is_union_territory",
                        when(col("state").isin(UNION_TERRITORIES), lit("Y")).otherwise(lit("N")))
            .withColumn("capital_city_flag",
                        when(capital_condition, lit(True)).otherwise(lit(False)))
            .withColumn("city_tier",
                        when(col("city").isin(TIER_1_CITIES), lit("Tier-1"))
                        .when(col("city").isin(TIER_2_CITIES), lit("Tier-2"))
                        .otherwise(lit("Tier-3")))
            .withColumn("state", _rename_states(col("state"))))


def _rename_states(state_col):
    expr = state_col
    for old, new in STATE_RENAMES.items():
        expr = when(state_col == lit(old), lit(new)).otherwise(expr)
    return expr


ENTITY_RULES: Dict[str, Callable[[DataFrame], DataFrame]] = {
    "location": derive_location_attributes,
}


def apply_business_rules(entity: EntitySpec, typed_df: DataFrame) -> DataFrame:
    """
    Apply the entity's rules to typed records.

    Text columns are trimmed for every entity; entity-specific derivations
    run afterwards.

    Args:
        entity: Entity being loaded
        typed_df: Records already cast to clean-layer types

    Returns:
        DataFrame with business rules applied
    """
    text_columns = [c.name for c in entity.columns
                    if c.data_type == "string" and not c.is_derived]
    result_df = trim_text_columns(typed_df, text_columns)

    rule = ENTITY_RULES.get(entity.name)
    if rule is not None:
        logger.info(f"Applying business rules for {entity.name}")
        result_df = rule(result_df)
    return result_df
