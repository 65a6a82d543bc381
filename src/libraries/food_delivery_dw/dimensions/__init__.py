"""
Conformed dimensions that are generated rather than loaded.
"""

from .date_dimension import DateDimensionBuilder

__all__ = [
    "DateDimensionBuilder"
]
