"""
Revenue KPI aggregations over the order item fact.
"""

from typing import Dict, List, Optional
from pyspark.sql import DataFrame, SparkSession
import logging

from ..common.config import WarehouseConfig

logger = logging.getLogger(__name__)

DELIVERED = "Delivered"

METRICS_SQL = """
    SUM(fact.subtotal) AS total_revenue,
    COUNT(DISTINCT fact.order_id) AS total_orders,
    ROUND(SUM(fact.subtotal) / COUNT(DISTINCT fact.order_id), 2) AS avg_revenue_per_order,
    ROUND(SUM(fact.subtotal) / COUNT(fact.order_item_id), 2) AS avg_revenue_per_item,
    MAX(fact.subtotal) AS max_order_value"""

# report name -> (view name, grouping columns)
REPORTS: Dict[str, tuple] = {
    "yearly": ("vw_yearly_revenue_kpis", ["d.year AS year"]),
    "monthly": ("vw_monthly_revenue_kpis", ["d.year AS year", "d.month AS month"]),
    "daily": ("vw_daily_revenue_kpis",
              ["d.year AS year", "d.month AS month", "d.day_of_the_month AS day"]),
    "day_of_week": ("vw_day_revenue_kpis",
                    ["d.year AS year", "d.month AS month", "d.day_name AS day_name"]),
    "monthly_by_restaurant": ("vw_monthly_revenue_by_restaurant",
                              ["d.year AS year", "d.month AS month",
                               "fact.delivery_status AS delivery_status",
                               "r.name AS restaurant_name"]),
}


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class RevenueKpis:
    """Builds the revenue reports and registers them as views."""

    def __init__(self, config: WarehouseConfig, spark: SparkSession):
        self.config = config
        self.spark = spark
        self.fact_table = config.consumption_table("order_item_fact")
        self.date_table = config.consumption_table("date_dim")
        self.restaurant_table = config.consumption_table("restaurant_dim")

    @property
    def report_names(self) -> List[str]:
        return list(REPORTS)

    def build_query(self, report: str, delivery_status: Optional[str] = DELIVERED) -> str:
        """
        SQL of one report.

        Args:
            report: One of ``report_names``
            delivery_status: Keep only facts with this delivery status; all when None

        Returns:
            SELECT statement
        """
        if report not in REPORTS:
            raise KeyError(f"Unknown report '{report}'. Known reports: {self.report_names}")
        _, group_columns = REPORTS[report]
        group_expressions = [c.split(" AS ")[0] for c in group_columns]

        joins = f"JOIN {self.date_table} d ON fact.order_date_dim_key = d.date_dim_hk"
        if report == "monthly_by_restaurant":
            # the fact keeps the restaurant version it resolved to
            joins += f"\n            JOIN {self.restaurant_table} r ON fact.restaurant_dim_key = r.restaurant_hk"

        where = ""
        if delivery_status is not None:
            where = f"WHERE fact.delivery_status = '{_escape(delivery_status)}'"

        return f"""
            SELECT {', '.join(group_columns)},{METRICS_SQL}
            FROM {self.fact_table} fact
            {joins}
            {where}
            GROUP BY {', '.join(group_expressions)}
            ORDER BY {', '.join(group_expressions)}
        """

    def report(self, report: str, delivery_status: Optional[str] = DELIVERED) -> DataFrame:
        logger.info(f"Building {report} revenue report (delivery_status={delivery_status})")
        return self.spark.sql(self.build_query(report, delivery_status))

    def yearly(self, delivery_status: Optional[str] = DELIVERED) -> DataFrame:
        return self.report("yearly", delivery_status)

    def monthly(self, delivery_status: Optional[str] = DELIVERED) -> DataFrame:
        return self.report("monthly", delivery_status)

    def daily(self, delivery_status: Optional[str] = DELIVERED) -> DataFrame:
        return self.report("daily", delivery_status)

    def day_of_week(self, delivery_status: Optional[str] = DELIVERED) -> DataFrame:
        return self.report("day_of_week", delivery_status)

    def monthly_by_restaurant(self, delivery_status: Optional[str] = DELIVERED) -> DataFrame:
        return self.report("monthly_by_restaurant", delivery_status)

    def create_views(self, delivery_status: Optional[str] = DELIVERED) -> List[str]:
        """
        Register every report as a view in the consumption database.

        Returns:
            Fully qualified view names
        """
        views = []
        for report, (view_name, _) in REPORTS.items():
            qualified = self.config.consumption_table(view_name)
            self.spark.sql(f"CREATE OR REPLACE VIEW {qualified} AS {self.build_query(report, delivery_status)}")
            views.append(qualified)
        logger.info(f"Registered {len(views)} revenue views")
        return views
