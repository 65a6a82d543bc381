"""
Command line entry point for the food delivery warehouse.

Usage:
    food-delivery-dw --config warehouse.yaml setup
    food-delivery-dw --config warehouse.yaml load customer --batch day-02
    food-delivery-dw --config warehouse.yaml cycle
    food-delivery-dw --config warehouse.yaml report monthly --status all
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from pyspark.errors import AnalysisException

from .common.exceptions import DimensionalProcessingError
from .common.loader import load_warehouse_config
from .common.utils import configure_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="food-delivery-dw",
        description="Load landed food delivery files into the dimensional warehouse."
    )
    parser.add_argument("--config", required=True, help="Path to the warehouse YAML configuration")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("setup", help="Create databases and tables")

    load = commands.add_parser("load", help="Load one entity through stage, clean and SCD2")
    load.add_argument("entity")
    load.add_argument("--batch", help="Delta batch name; initial files when omitted")

    cycle = commands.add_parser("cycle", help="Run every entity, the calendar and the facts")
    cycle.add_argument("--batch", help="Delta batch name; initial files when omitted")

    commands.add_parser("date-dim", help="Extend the calendar dimension")
    commands.add_parser("facts", help="Assemble order item facts")
    commands.add_parser("views", help="Register the revenue views")

    report = commands.add_parser("report", help="Print a revenue report")
    report.add_argument("name")
    report.add_argument("--status", default="Delivered",
                        help="Delivery status filter; 'all' disables the filter")
    report.add_argument("--limit", type=int, default=50)
    return parser


def run(args: argparse.Namespace) -> None:
    # Spark is imported lazily so argument errors do not start a JVM
    from .common.spark_session import create_spark_session
    from .pipeline.runner import WarehousePipeline
    from .reporting.revenue_kpis import RevenueKpis

    config = load_warehouse_config(args.config)
    spark = create_spark_session(master=config.spark_master,
                                 warehouse_dir=config.warehouse_dir,
                                 extra_config=config.spark_conf)
    pipeline = WarehousePipeline(config, spark)

    if args.command == "setup":
        pipeline.setup()
    elif args.command == "load":
        pipeline.setup()
        print(json.dumps(pipeline.load_entity(args.entity, args.batch), indent=2, default=str))
    elif args.command == "cycle":
        print(json.dumps(pipeline.run_cycle(args.batch), indent=2, default=str))
    elif args.command == "date-dim":
        pipeline.setup()
        print(json.dumps({"inserted": pipeline.build_date_dimension()}))
    elif args.command == "facts":
        pipeline.setup()
        print(json.dumps(pipeline.assemble_facts().to_dict(), indent=2, default=str))
    elif args.command == "views":
        for view in RevenueKpis(config, spark).create_views():
            print(view)
    elif args.command == "report":
        status = None if args.status.lower() == "all" else args.status
        RevenueKpis(config, spark).report(args.name, status).show(args.limit, truncate=False)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Parse arguments and run one command.

    Returns:
        0 on success, 1 when a pipeline error was raised
    """
    args = build_parser().parse_args(argv)
    configure_logging(getattr(logging, args.log_level))

    try:
        run(args)
    except DimensionalProcessingError as e:
        logger.error(f"{e.error_code}: {e.message}")
        return 1
    except KeyError as e:
        logger.error(str(e))
        return 1
    except AnalysisException as e:
        logger.error(f"Spark could not run {args.command}: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
