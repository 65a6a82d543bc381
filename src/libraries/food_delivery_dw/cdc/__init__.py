"""
Change data capture over Delta Change Data Feed.
"""

from .change_extractor import ChangeExtractor, ChangeBatch
from .checkpoint_store import CheckpointStore

__all__ = [
    "ChangeExtractor",
    "ChangeBatch",
    "CheckpointStore"
]
