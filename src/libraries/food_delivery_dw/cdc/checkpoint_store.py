"""
Durable change-feed positions, one JSON document per source table and consumer.
"""

import json
import logging
import os
import re
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..common.locking import TableLock

logger = logging.getLogger(__name__)


def _safe_name(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]", "_", value)


class CheckpointStore:
    """Stores the last consumed Delta version per (consumer, source table)."""

    def __init__(self, checkpoint_dir: str, consumer_name: str = "default",
                 lock_timeout_seconds: float = 30.0):
        self.checkpoint_dir = checkpoint_dir
        self.consumer_name = consumer_name
        self.lock_timeout_seconds = lock_timeout_seconds
        self.consumer_dir = os.path.join(checkpoint_dir, _safe_name(consumer_name))

    def path_for(self, source_table: str) -> str:
        return os.path.join(self.consumer_dir, f"{_safe_name(source_table)}.json")

    def read(self, source_table: str) -> Optional[Dict[str, Any]]:
        """Return the stored document, or None when the table was never consumed."""
        path = self.path_for(source_table)
        if not os.path.exists(path):
            return None
        with open(path, encoding="utf-8") as fh:
            return json.load(fh)

    def get_version(self, source_table: str) -> Optional[int]:
        """
        Get the last committed version for a source table.

        Args:
            source_table: Fully qualified source table name

        Returns:
            Last consumed version, or None
        """
        document = self.read(source_table)
        if document is None:
            return None
        return int(document["last_version"])

    def set_version(self, source_table: str, version: int) -> None:
        """
        Atomically persist the last consumed version.

        The document is written to a temporary file in the same directory and
        moved into place, so readers see either the old or the new position.

        Args:
            source_table: Fully qualified source table name
            version: Last version whose changes were fully applied
        """
        os.makedirs(self.consumer_dir, exist_ok=True)
        document = {
            "source_table": source_table,
            "consumer": self.consumer_name,
            "last_version": int(version),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }

        lock_name = f"checkpoint.{self.consumer_name}.{source_table}"
        with TableLock(self.consumer_dir, lock_name, self.lock_timeout_seconds):
            fd, tmp_path = tempfile.mkstemp(dir=self.consumer_dir, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(document, fh, indent=2)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp_path, self.path_for(source_table))
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise

        logger.info(f"Checkpoint {self.consumer_name}/{source_table} advanced to version {version}")

    def reset(self, source_table: str) -> None:
        """Forget the position so the next read starts from the beginning."""
        path = self.path_for(source_table)
        if os.path.exists(path):
            os.remove(path)
            logger.info(f"Checkpoint {self.consumer_name}/{source_table} reset")
