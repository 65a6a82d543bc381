"""
Cache management for dimensional key resolution.
"""

from typing import Optional, Dict, Any
from pyspark.sql import DataFrame
import logging
import time

from ..common.config import KeyResolutionConfig

logger = logging.getLogger(__name__)


class CacheManager:
    """Keeps dimension lookups cached for a limited time."""

    def __init__(self, config: KeyResolutionConfig, clock=time.monotonic):
        """
        Initialize CacheManager with configuration.

        Args:
            config: Key resolution configuration
            clock: Time source in seconds
        """
        self.config = config
        self.clock = clock
        self.cache: Dict[str, DataFrame] = {}
        self.cache_timestamps: Dict[str, float] = {}

        logger.info(f"Initialized CacheManager with TTL: {config.cache_ttl_minutes} minutes")

    def get_cached_records(self, cache_key: str = "current_dimension") -> Optional[DataFrame]:
        """
        Get cached dimension records.

        Args:
            cache_key: Cache key for the records

        Returns:
            Cached DataFrame or None if not found/expired
        """
        if not self.config.enable_caching or cache_key not in self.cache:
            return None

        if self._is_cache_expired(cache_key):
            logger.info(f"Cache expired for key: {cache_key}")
            self._remove_from_cache(cache_key)
            return None

        logger.debug(f"Retrieved cached records for key: {cache_key}")
        return self.cache[cache_key]

    def cache_records(self, df: DataFrame, cache_key: str = "current_dimension") -> None:
        """
        Cache dimension records.

        Args:
            df: DataFrame to cache
            cache_key: Cache key for the records
        """
        if not self.config.enable_caching:
            return

        self.cache[cache_key] = df.cache()
        self.cache_timestamps[cache_key] = self.clock()
        logger.info(f"Cached lookup for key: {cache_key}")

    def _is_cache_expired(self, cache_key: str) -> bool:
        if cache_key not in self.cache_timestamps:
            return True

        ttl_seconds = self.config.cache_ttl_minutes * 60
        return (self.clock() - self.cache_timestamps[cache_key]) > ttl_seconds

    def _remove_from_cache(self, cache_key: str) -> None:
        if cache_key in self.cache:
            self.cache[cache_key].unpersist()
            del self.cache[cache_key]
            del self.cache_timestamps[cache_key]
            logger.info(f"Removed cache entry for key: {cache_key}")

    def clear_cache(self) -> None:
        """Clear all cached entries."""
        for cache_key in list(self.cache.keys()):
            self._remove_from_cache(cache_key)

        logger.info("Cleared all cache entries")

    def get_cache_stats(self) -> Dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dictionary with cache statistics
        """
        expired_entries = sum(1 for key in self.cache_timestamps if self._is_cache_expired(key))

        return {
            "total_entries": len(self.cache),
            "active_entries": len(self.cache_timestamps) - expired_entries,
            "expired_entries": expired_entries,
            "cache_enabled": self.config.enable_caching,
            "ttl_minutes": self.config.cache_ttl_minutes
        }
