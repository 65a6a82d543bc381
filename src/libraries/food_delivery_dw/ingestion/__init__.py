"""
Stage-layer ingestion of landed files.
"""

from .csv_loader import StageLoader

__all__ = [
    "StageLoader"
]
