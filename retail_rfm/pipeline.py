"""Medallion pipeline for the Online Retail RFM case study.

Steps, in dependency order:

1. ``bronze_online_retail_load`` - raw CSV landed as-is into Bronze.
2. ``silver_clean_online_retail`` - typed, cleaned, deduplicated transactions.
3. ``gold_transaction_metrics`` - TotalSpend / InvoiceYearMonth and monthly sales.
4. ``gold_customer_segments`` - RFM scores and segment label per customer.

Each step overwrites its target table, so reruns are idempotent, and appends
one row to the ETL step log, with status ``Failed`` when it raises.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from retail_rfm import bronze, cleaner, datatypes, metrics, quality, segmenter
from retail_rfm.config import (
    ALL_SCHEMAS,
    BRONZE_ONLINE_RETAIL,
    SILVER_ONLINE_RETAIL_CLEAN,
    GOLD_TRANSACTIONS,
    GOLD_SALES_MONTHLY,
    GOLD_CUSTOMER_SEGMENTS,
    DQ_DUPLICATES_TABLE,
    DQ_REJECTED_ROWS_TABLE,
    PipelineParams,
)
from retail_rfm.etl_logging import EtlLogger
from retail_rfm.exceptions import EmptyInputError

STEPS = ("bronze", "silver", "gold_metrics", "gold_segments")


@dataclass
class StepMetrics:
    rows_in: Optional[int] = None
    rows_out: Optional[int] = None
    rows_rejected: int = 0
    rows_duplicates: int = 0


@contextmanager
def etl_step(spark, logger: EtlLogger, step_name: str, source_table, target_table):
    """Time a step and append its metrics to the step log, also on failure."""
    started_at = datetime.now(timezone.utc)
    step_metrics = StepMetrics()

    try:
        yield step_metrics
    except Exception as e:
        logger.log_stage(f"Step '{step_name}' failed: {e}")
        logger.write_etl_step_log(
            spark,
            step_name=step_name,
            source_table=source_table,
            target_table=target_table,
            rows_in=step_metrics.rows_in,
            rows_out=step_metrics.rows_out,
            rows_rejected=step_metrics.rows_rejected,
            rows_duplicates=step_metrics.rows_duplicates,
            status="Failed",
            error_message=str(e),
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )
        raise

    logger.log_stage("Log ETL step metrics")
    logger.write_etl_step_log(
        spark,
        step_name=step_name,
        source_table=source_table,
        target_table=target_table,
        rows_in=step_metrics.rows_in,
        rows_out=step_metrics.rows_out,
        rows_rejected=step_metrics.rows_rejected,
        rows_duplicates=step_metrics.rows_duplicates,
        status="Success",
        error_message=None,
        started_at=started_at,
        finished_at=datetime.now(timezone.utc),
    )


def ensure_schemas(spark, logger: EtlLogger) -> None:
    for schema in ALL_SCHEMAS:
        spark.sql(f"CREATE SCHEMA IF NOT EXISTS {schema}")
    logger.log(f"Schemas ensured: {', '.join(ALL_SCHEMAS)}")


def write_table(df, table_name: str, params: PipelineParams) -> None:
    """Overwrite ``table_name`` with ``df`` in the configured table format."""
    (
        df
        .write
        .format(params.table_format)
        .mode("overwrite")
        .option("overwriteSchema", "true")
        .saveAsTable(table_name)
    )


def read_nonempty_table(spark, table_name: str):
    df = spark.read.table(table_name)
    rows = df.count()
    if rows == 0:
        raise EmptyInputError(f"Source table {table_name} is empty.")
    return df, rows


# ============================================================
# 1. Bronze
# ============================================================

def run_bronze_load(spark, params: PipelineParams, logger: EtlLogger) -> None:
    step_name = "bronze_online_retail_load"
    logger.log_stage("Bronze online retail load")
    logger.log(f"Raw file path       : {params.raw_file_path}")
    logger.log(f"Bronze target table : {BRONZE_ONLINE_RETAIL}")

    with etl_step(spark, logger, step_name, None, BRONZE_ONLINE_RETAIL) as step:
        df_raw = bronze.read_raw_transactions(spark, params.raw_file_path)
        step.rows_in = df_raw.count()
        logger.log(f"Raw DataFrame loaded from CSV. Row count: {step.rows_in}")

        df_bronze = bronze.add_ingestion_metadata(df_raw)

        logger.log_stage("Write Bronze table")
        write_table(df_bronze, BRONZE_ONLINE_RETAIL, params)
        step.rows_out = spark.read.table(BRONZE_ONLINE_RETAIL).count()
        logger.log(f"Rows in Bronze table '{BRONZE_ONLINE_RETAIL}': {step.rows_out}")


# ============================================================
# 2. Silver
# ============================================================

def run_silver_clean(spark, params: PipelineParams, logger: EtlLogger) -> dict:
    """Clean Bronze into Silver and return the quality profile of the result."""
    step_name = "silver_clean_online_retail"
    logger.log_stage("Silver clean online retail")
    logger.log(f"Source Bronze table     : {BRONZE_ONLINE_RETAIL}")
    logger.log(f"Target Silver table     : {SILVER_ONLINE_RETAIL_CLEAN}")
    logger.log(f"Duplicates log table    : {DQ_DUPLICATES_TABLE}")
    logger.log(f"Rejected rows log table : {DQ_REJECTED_ROWS_TABLE}")

    with etl_step(spark, logger, step_name, BRONZE_ONLINE_RETAIL, SILVER_ONLINE_RETAIL_CLEAN) as step:
        df_bronze, step.rows_in = read_nonempty_table(spark, BRONZE_ONLINE_RETAIL)
        logger.log(f"Bronze rows: {step.rows_in}")

        logger.log_stage("Trim strings, parse InvoiceDate, cast Quantity and UnitPrice")
        df_typed = datatypes.prepare_raw(df_bronze)

        logger.log_stage("Deduplicate, backfill, filter, canonicalise and aggregate")
        result = cleaner.clean_transactions(df_typed)

        step.rows_duplicates = result.duplicates.count()
        logger.log(f"Exact duplicate rows removed: {step.rows_duplicates}")
        if step.rows_duplicates > 0:
            logger.write_duplicates(
                result.duplicates, step_name, BRONZE_ONLINE_RETAIL, SILVER_ONLINE_RETAIL_CLEAN,
                rule_name="Exact_duplicate",
            )

        rows_missing = result.rejected.count()
        rows_excluded = result.excluded.count()
        rows_no_code = result.missing_stock_code.count()
        step.rows_rejected = rows_missing + rows_excluded + rows_no_code
        logger.log(f"Rows missing InvoiceNo, CustomerID or Description: {rows_missing}")
        logger.log(f"Non-product rows (postage, fees, adjustments): {rows_excluded}")
        logger.log(f"Rows without a StockCode: {rows_no_code}")
        if rows_missing > 0:
            logger.write_rejected_rows(
                result.rejected, step_name, BRONZE_ONLINE_RETAIL, SILVER_ONLINE_RETAIL_CLEAN,
                rule_name="Required_field_missing",
                error_message="InvoiceNo, CustomerID or Description is NULL after description backfill",
            )
        if rows_excluded > 0:
            logger.write_rejected_rows(
                result.excluded, step_name, BRONZE_ONLINE_RETAIL, SILVER_ONLINE_RETAIL_CLEAN,
                rule_name="Non_product_stock_code",
                error_message="StockCode is postage, carriage, a bank charge or a manual adjustment",
            )
        if rows_no_code > 0:
            logger.write_rejected_rows(
                result.missing_stock_code, step_name, BRONZE_ONLINE_RETAIL, SILVER_ONLINE_RETAIL_CLEAN,
                rule_name="StockCode_missing",
                error_message="StockCode is NULL",
            )

        logger.log_stage("Convert InvoiceNo and CustomerID to integers")
        df_silver = datatypes.enforce_datatypes(result.clean)

        logger.log_stage("Write Silver table")
        write_table(df_silver, SILVER_ONLINE_RETAIL_CLEAN, params)
        df_written = spark.read.table(SILVER_ONLINE_RETAIL_CLEAN)
        step.rows_out = df_written.count()
        logger.log(f"Silver table '{SILVER_ONLINE_RETAIL_CLEAN}' written. Rows: {step.rows_out}")

        logger.log_stage("Quality checks on final Silver table")
        cleaner.validate_unique_keys(df_written)
        profile = quality.profile_transactions(df_written)
        for name, value in profile.items():
            logger.log(f"{name}: {value}")

    return profile


# ============================================================
# 3. Gold metrics
# ============================================================

def run_gold_metrics(spark, params: PipelineParams, logger: EtlLogger) -> None:
    step_name = "gold_transaction_metrics"
    logger.log_stage("Gold transaction metrics and monthly sales")

    with etl_step(spark, logger, step_name, SILVER_ONLINE_RETAIL_CLEAN, GOLD_TRANSACTIONS) as step:
        df_clean, step.rows_in = read_nonempty_table(spark, SILVER_ONLINE_RETAIL_CLEAN)

        df_transactions = metrics.build_transaction_metrics(df_clean)
        write_table(df_transactions, GOLD_TRANSACTIONS, params)
        step.rows_out = spark.read.table(GOLD_TRANSACTIONS).count()
        logger.log(f"Rows in {GOLD_TRANSACTIONS}: {step.rows_out}")

    with etl_step(spark, logger, "gold_sales_monthly", GOLD_TRANSACTIONS, GOLD_SALES_MONTHLY) as step:
        df_transactions, step.rows_in = read_nonempty_table(spark, GOLD_TRANSACTIONS)

        df_monthly = metrics.build_monthly_sales(df_transactions)
        write_table(df_monthly, GOLD_SALES_MONTHLY, params)
        step.rows_out = spark.read.table(GOLD_SALES_MONTHLY).count()
        logger.log(f"Rows in {GOLD_SALES_MONTHLY}: {step.rows_out}")


# ============================================================
# 4. Gold segments
# ============================================================

def run_gold_segments(spark, params: PipelineParams, logger: EtlLogger) -> None:
    step_name = "gold_customer_segments"
    logger.log_stage("Gold customer RFM segments")

    with etl_step(spark, logger, step_name, SILVER_ONLINE_RETAIL_CLEAN, GOLD_CUSTOMER_SEGMENTS) as step:
        df_clean, step.rows_in = read_nonempty_table(spark, SILVER_ONLINE_RETAIL_CLEAN)

        reference_date = segmenter.latest_invoice_date(df_clean)
        logger.log(f"Reference date for Recency: {reference_date}")

        df_segments = segmenter.segment_customers(df_clean)
        write_table(df_segments, GOLD_CUSTOMER_SEGMENTS, params)

        df_written = spark.read.table(GOLD_CUSTOMER_SEGMENTS)
        step.rows_out = df_written.count()
        logger.log(f"Rows in {GOLD_CUSTOMER_SEGMENTS}: {step.rows_out}")

        for row in df_written.groupBy("Segment").count().orderBy("Segment").collect():
            logger.log(f"Segment {row['Segment']:<16}: {row['count']}")


STEP_RUNNERS = {
    "bronze": run_bronze_load,
    "silver": run_silver_clean,
    "gold_metrics": run_gold_metrics,
    "gold_segments": run_gold_segments,
}


def run_pipeline(spark, params: PipelineParams, steps=STEPS) -> None:
    """Run the requested steps in pipeline order."""
    logger = EtlLogger(params)
    logger.log_stage(f"Pipeline start - {params.pipeline_name}")
    logger.log(
        f"Environment: {params.environment}, DEBUG={params.debug}, "
        f"version={params.config_version}, run_id={params.run_id}"
    )

    ensure_schemas(spark, logger)

    for name in STEPS:
        if name in steps:
            STEP_RUNNERS[name](spark, params, logger)

    logger.log_stage("Pipeline completed successfully")
