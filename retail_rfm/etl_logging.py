# ================================================
# Logging helpers for all pipeline steps
# ================================================
# Requires a PipelineParams instance
#   (environment, run_id, debug, timezone, pipeline_name)
# ================================================

from datetime import datetime, timezone

from pyspark.sql import functions as F
from pyspark.sql.types import (
    StructType, StructField, StringType,
    LongType, TimestampType, DoubleType
)

from retail_rfm.config import (
    ETL_STEP_LOG_TABLE,
    DQ_REJECTED_ROWS_TABLE,
    DQ_DUPLICATES_TABLE,
    PipelineParams,
)

STEP_LOG_SCHEMA = StructType([
    StructField("run_id", StringType(), False),
    StructField("pipeline_name", StringType(), False),
    StructField("step_name", StringType(), False),
    StructField("environment", StringType(), False),
    StructField("source_table", StringType(), True),
    StructField("target_table", StringType(), True),
    StructField("rows_in", LongType(), True),
    StructField("rows_out", LongType(), True),
    StructField("rows_rejected", LongType(), True),
    StructField("rows_duplicates", LongType(), True),
    StructField("load_date", StringType(), True),
    StructField("status", StringType(), False),
    StructField("error_message", StringType(), True),
    StructField("started_at", TimestampType(), True),
    StructField("finished_at", TimestampType(), True),
    StructField("duration_seconds", DoubleType(), True),
])


def _optional_int(value):
    return int(value) if value is not None else None


class EtlLogger:
    """Console and meta-table logging bound to one pipeline run."""

    def __init__(self, params: PipelineParams):
        self.params = params
        self._local_tz = None
        # Try to use local timezone if provided in config
        if params.timezone:
            try:
                from zoneinfo import ZoneInfo
                self._local_tz = ZoneInfo(params.timezone)
            except (ImportError, KeyError, ValueError):
                self._local_tz = None

    def _timestamp_str(self):
        """Return formatted timestamp string(s) depending on timezone availability."""
        ts_utc = datetime.now(timezone.utc)

        if self._local_tz is not None:
            ts_local = ts_utc.astimezone(self._local_tz)
            return ts_utc.isoformat(timespec="seconds"), ts_local.isoformat(timespec="seconds")

        # No local timezone configured - return only UTC
        return ts_utc.isoformat(timespec="seconds"), None

    def _emit(self, tag: str, message: str) -> None:
        ts_utc, ts_local = self._timestamp_str()
        env, run_id = self.params.environment, self.params.run_id

        if ts_local:
            print(f"[{tag}][UTC {ts_utc}][LOCAL {ts_local}][{env}][{run_id}] {message}")
        else:
            print(f"[{tag}][UTC {ts_utc}][{env}][{run_id}] {message}")

    def log_stage(self, message: str) -> None:
        """Log high level ETL stage with UTC and optional local timestamp."""
        self._emit("STAGE", message)

    def log(self, message: str) -> None:
        """Log detailed messages when debug is enabled."""
        if self.params.debug:
            self._emit("LOG", message)

    def _append(self, df, table_name: str) -> None:
        (
            df
            .write
            .format(self.params.table_format)
            .mode("append")
            .option("mergeSchema", "true")
            .saveAsTable(table_name)
        )

    def write_etl_step_log(
        self,
        spark,
        step_name: str,
        source_table,
        target_table,
        rows_in,
        rows_out,
        rows_rejected,
        rows_duplicates,
        status: str,
        error_message,
        started_at,
        finished_at,
    ) -> None:
        """Append ETL step metrics to ETL_STEP_LOG_TABLE."""

        # Compute execution duration in seconds (float)
        duration_seconds = None
        if started_at is not None and finished_at is not None:
            duration_seconds = float((finished_at - started_at).total_seconds())

        step_log_row = [(
            self.params.run_id,
            self.params.pipeline_name,
            step_name,
            self.params.environment,
            source_table,
            target_table,
            _optional_int(rows_in),
            _optional_int(rows_out),
            _optional_int(rows_rejected),
            _optional_int(rows_duplicates),
            self.params.load_date,
            status,
            error_message,
            started_at,
            finished_at,
            duration_seconds,
        )]

        df_step_log = spark.createDataFrame(step_log_row, schema=STEP_LOG_SCHEMA)
        self._append(df_step_log, ETL_STEP_LOG_TABLE)

        # Extra log line with duration for convenience
        if duration_seconds is not None:
            self.log(f"ETL step '{step_name}' finished in {duration_seconds:.2f} seconds and appended to {ETL_STEP_LOG_TABLE}")
        else:
            self.log(f"ETL step metrics for '{step_name}' appended to {ETL_STEP_LOG_TABLE}")

    def _dq_frame(self, df, step_name, source_table, target_table, rule_name, business_key):
        row_json = F.to_json(F.struct([F.col(c) for c in df.columns]))

        return (
            df
            .withColumn("run_id", F.lit(self.params.run_id))
            .withColumn("pipeline_name", F.lit(self.params.pipeline_name))
            .withColumn("step_name", F.lit(step_name))
            .withColumn("environment", F.lit(self.params.environment))
            .withColumn("source_table", F.lit(source_table))
            .withColumn("target_table", F.lit(target_table))
            .withColumn("rule_name", F.lit(rule_name))
            .withColumn("business_key", business_key.cast("string"))
            .withColumn("row_json", row_json)
            .withColumn("load_date", F.lit(self.params.load_date).cast("string"))
            .withColumn("created_at", F.current_timestamp())
        )

    def write_rejected_rows(self, df_rejected, step_name, source_table, target_table,
                            rule_name, error_message) -> None:
        """Append rows that failed a data quality rule to DQ_REJECTED_ROWS_TABLE."""
        business_key = F.coalesce(
            F.col("InvoiceNo").cast("string"),
            F.col("CustomerID").cast("string"),
            F.col("StockCode").cast("string"),
        )

        df_rej_log = (
            self._dq_frame(df_rejected, step_name, source_table, target_table, rule_name, business_key)
            .withColumn("error_message", F.lit(error_message))
            .select(
                "run_id",
                "pipeline_name",
                "step_name",
                "environment",
                "source_table",
                "target_table",
                "rule_name",
                "business_key",
                "error_message",
                "row_json",
                "load_date",
                "created_at"
            )
        )

        self._append(df_rej_log, DQ_REJECTED_ROWS_TABLE)
        self.log(f"Rejected rows appended to {DQ_REJECTED_ROWS_TABLE}")

    def write_duplicates(self, df_duplicates, step_name, source_table, target_table,
                         rule_name) -> None:
        """Append removed duplicate rows to DQ_DUPLICATES_TABLE."""
        # Stable hash of the full business row
        business_key = F.sha2(
            F.concat_ws("|", *[F.col(c).cast("string") for c in df_duplicates.columns]),
            256
        )

        df_dup_log = (
            self._dq_frame(df_duplicates, step_name, source_table, target_table, rule_name, business_key)
            .select(
                "run_id",
                "pipeline_name",
                "step_name",
                "environment",
                "source_table",
                "target_table",
                "rule_name",
                "business_key",
                "row_json",
                "load_date",
                "created_at"
            )
        )

        self._append(df_dup_log, DQ_DUPLICATES_TABLE)
        self.log(f"Duplicate rows appended to {DQ_DUPLICATES_TABLE}")
