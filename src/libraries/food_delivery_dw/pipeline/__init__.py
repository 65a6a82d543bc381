"""
Warehouse load orchestration.
"""

from .runner import WarehousePipeline

__all__ = [
    "WarehousePipeline"
]
