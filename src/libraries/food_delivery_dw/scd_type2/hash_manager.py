"""
Hash management utilities for SCD processing.

Fingerprints are hex digests over the natural key followed by the tracked
attributes in column-name order, joined with "|" and with nulls written as
``\\N``. Row keys are 64-bit ``xxhash64`` values over a fingerprint. At 10^7
rows the birthday bound puts the chance of any key collision near 3e-6.
"""

from typing import List, Sequence
from pyspark.sql import Column, DataFrame
from pyspark.sql.functions import coalesce, col, concat_ws, lit, md5, sha1, sha2, xxhash64
import logging

from ..common.config import SCDConfig, SUPPORTED_HASH_ALGORITHMS

logger = logging.getLogger(__name__)

NULL_SENTINEL = "\\N"
SEPARATOR = "|"


def _as_text(column_name: str) -> Column:
    return coalesce(col(column_name).cast("string"), lit(NULL_SENTINEL))


def digest(columns: Sequence[str], algorithm: str = "sha1") -> Column:
    """
    Hex digest of the given columns joined with "|".

    Args:
        columns: Column names in hashing order
        algorithm: One of sha1, sha256, md5

    Returns:
        Column expression producing the hex digest
    """
    payload = concat_ws(SEPARATOR, *[_as_text(c) for c in columns])
    if algorithm == "sha1":
        return sha1(payload)
    if algorithm == "sha256":
        return sha2(payload, 256)
    if algorithm == "md5":
        return md5(payload)
    raise ValueError(f"Unsupported hash algorithm: {algorithm}")


def hash_key(columns: Sequence[str], algorithm: str = "sha1") -> Column:
    """64-bit key over the digest of the given columns, e.g. date and fact keys."""
    return xxhash64(digest(columns, algorithm))


class HashManager:
    """Manages hash computation for SCD processing."""

    def __init__(self, config: SCDConfig):
        """
        Initialize HashManager with configuration.

        Args:
            config: SCD configuration
        """
        self.config = config
        self.hash_algorithm = config.hash_algorithm.lower()

        if self.hash_algorithm not in SUPPORTED_HASH_ALGORITHMS:
            raise ValueError(f"Unsupported hash algorithm: {self.hash_algorithm}")

    def get_hash_columns(self) -> List[str]:
        """
        Get the columns that make up the fingerprint.

        Returns:
            Natural key columns followed by tracked columns sorted by name
        """
        return list(self.config.business_key_columns) + sorted(self.config.tracked_columns)

    def compute_scd_hash(self, df: DataFrame) -> DataFrame:
        """
        Compute the change-detection fingerprint.

        Args:
            df: Input DataFrame

        Returns:
            DataFrame with the SCD hash column added
        """
        hash_columns = self.get_hash_columns()
        result_df = df.withColumn(self.config.scd_hash_column,
                                  digest(hash_columns, self.hash_algorithm))
        logger.info(f"Computed {self.hash_algorithm} fingerprint over {len(hash_columns)} columns")
        return result_df

    def compute_surrogate_key(self, df: DataFrame) -> DataFrame:
        """
        Derive the dimension row key from fingerprint and effective start.

        Mixing in the effective start keeps keys unique when a natural key
        returns to an attribute set it had before.

        Args:
            df: DataFrame with SCD hash and effective start columns

        Returns:
            DataFrame with the surrogate key column added
        """
        return df.withColumn(
            self.config.surrogate_key_column,
            xxhash64(col(self.config.scd_hash_column),
                     col(self.config.effective_start_column).cast("string"))
        )
