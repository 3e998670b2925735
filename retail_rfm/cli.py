"""Command line entry point: ``retail-rfm`` / ``python -m retail_rfm``."""

import argparse
import sys

from retail_rfm.config import PipelineParams, RAW_ONLINE_RETAIL_FILE_PATH, TABLE_FORMATS
from retail_rfm.pipeline import STEPS, run_pipeline
from retail_rfm.spark_session import get_spark_session


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="retail-rfm",
        description="Clean Online Retail transactions and build RFM customer segments.",
    )
    parser.add_argument("--environment", default="dev", help="dev, test or prod (default: dev)")
    parser.add_argument("--run-id", default="local_manual_run", help="Identifier stored with every log row")
    parser.add_argument("--load-date", default=None, help="Load date 'YYYY-MM-DD' recorded in meta tables")
    parser.add_argument("--raw-file", default=RAW_ONLINE_RETAIL_FILE_PATH, help="Raw Online Retail CSV")
    parser.add_argument("--table-format", default="delta", choices=TABLE_FORMATS)
    parser.add_argument("--warehouse-dir", default=None, help="spark.sql.warehouse.dir for managed tables")
    parser.add_argument("--master", default="local[*]", help="Spark master URL")
    parser.add_argument(
        "--step",
        action="append",
        choices=STEPS,
        help="Run only this step (repeatable). Default: all steps",
    )
    parser.add_argument("--quiet", action="store_true", help="Only print [STAGE] lines")
    return parser


def params_from_args(args) -> PipelineParams:
    return PipelineParams(
        environment=args.environment,
        load_date=args.load_date,
        debug=not args.quiet,
        run_id=args.run_id,
        raw_file_path=args.raw_file,
        table_format=args.table_format,
        warehouse_dir=args.warehouse_dir,
    )


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    params = params_from_args(args)

    spark = get_spark_session(params, master=args.master)
    try:
        run_pipeline(spark, params, steps=tuple(args.step or STEPS))
    finally:
        spark.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
