"""
SCD Type 2 processing modules.
"""

from .scd_processor import SCDProcessor
from .change_sequencer import ChangeSequencer
from .hash_manager import HashManager
from .record_manager import RecordManager
from .date_manager import DateManager
from .validators import SCDValidator

__all__ = [
    "SCDProcessor",
    "ChangeSequencer",
    "HashManager",
    "RecordManager",
    "DateManager",
    "SCDValidator"
]
