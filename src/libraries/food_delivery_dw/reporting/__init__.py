"""
Reporting over the consumption layer.
"""

from .revenue_kpis import RevenueKpis, REPORTS

__all__ = [
    "RevenueKpis",
    "REPORTS"
]
