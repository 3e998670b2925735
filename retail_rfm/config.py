# ================================================
# Global configuration for the Online Retail RFM pipeline
# ================================================
# Contains:
# - Medallion schemas
# - Table names (bronze, silver, gold, meta)
# - Raw file path and column layout
# - Cleaning constants (excluded stock codes, keys)
# - Run parameters (PipelineParams)
# ================================================

from dataclasses import dataclass, field
from typing import Optional

# Local timezone for logging
local_timezone = "Europe/London"

# ================================================
# Schemas (medallion layers)
# ================================================

BRONZE_SCHEMA = "bronze"
SILVER_SCHEMA = "silver"
GOLD_SCHEMA   = "gold"

# Separate schema for logging and meta tables
META_SCHEMA = "silver_meta"

ALL_SCHEMAS = (BRONZE_SCHEMA, SILVER_SCHEMA, GOLD_SCHEMA, META_SCHEMA)


def tbl(schema: str, name: str) -> str:
    """Build fully qualified table name like 'schema.table'."""
    return f"{schema}.{name}"

# ================================================
# Bronze tables & raw sources
# ================================================

BRONZE_ONLINE_RETAIL = tbl(BRONZE_SCHEMA, "online_retail")

# Raw file path
RAW_ONLINE_RETAIL_FILE_PATH = "Files/raw/OnlineRetail.csv"

# ================================================
# Silver-level fact
# ================================================

SILVER_ONLINE_RETAIL_CLEAN = tbl(SILVER_SCHEMA, "online_retail_clean")

# ================================================
# Gold-level facts
# ================================================

GOLD_TRANSACTIONS       = tbl(GOLD_SCHEMA, "online_retail_transactions")
GOLD_SALES_MONTHLY      = tbl(GOLD_SCHEMA, "sales_monthly")
GOLD_CUSTOMER_SEGMENTS  = tbl(GOLD_SCHEMA, "customer_segments")

# ================================================
# Meta tables (DQ, logging)
# ================================================

ETL_STEP_LOG_TABLE       = tbl(META_SCHEMA, "etl_step_log")
DQ_REJECTED_ROWS_TABLE   = tbl(META_SCHEMA, "dq_rejected_rows")
DQ_DUPLICATES_TABLE      = tbl(META_SCHEMA, "dq_duplicates")

# ================================================
# Column layout and cleaning rules
# ================================================

RAW_COLUMNS = [
    "InvoiceNo",
    "StockCode",
    "Description",
    "Quantity",
    "InvoiceDate",
    "UnitPrice",
    "CustomerID",
    "Country",
]

# Technical columns added at Bronze, dropped before cleaning
INGESTION_COLUMNS = ["ingestion_timestamp", "source_file"]

# An order line is uniquely identified by these columns after cleaning
LINE_KEY_COLUMNS = ["InvoiceNo", "StockCode", "UnitPrice"]

# Identity-bearing fields, rows missing any of them are dropped
REQUIRED_COLUMNS = ["InvoiceNo", "CustomerID", "Description"]

# Postage, carriage, manual adjustments and bank fees - not sellable inventory
EXCLUDED_STOCK_CODES = ("C2", "POST", "DOT", "M", "BANK CHARGES")

# InvoiceDate formats tried in order (UCI export, then ISO)
INVOICE_DATE_FORMATS = (
    "M/d/yyyy H:mm",
    "yyyy-MM-dd HH:mm:ss",
    "yyyy-MM-dd HH:mm",
)

UNIT_PRICE_TYPE = "decimal(10,2)"
MONETARY_TYPE   = "decimal(18,2)"

# Number of RFM score buckets (quartiles)
RFM_BUCKETS = 4

SEGMENT_LABELS = (
    "Champions",
    "Loyal Customers",
    "Big Spenders",
    "At Risk",
    "Lost",
    "Needs Attention",
    "Others",
)

# ================================================
# Run parameters
# ================================================

TABLE_FORMATS = ("delta", "parquet")


@dataclass
class PipelineParams:
    """Run parameters - values here can be overridden from the command line."""

    environment: str = "dev"                  # dev, test, prod
    load_date: Optional[str] = None           # 'YYYY-MM-DD' or None
    debug: bool = True                        # True for verbose logging
    config_version: str = "1.0.0"
    run_id: str = "local_manual_run"          # pipeline will override this
    pipeline_name: str = "pl_online_retail_rfm"
    raw_file_path: str = RAW_ONLINE_RETAIL_FILE_PATH
    table_format: str = "delta"
    warehouse_dir: Optional[str] = None
    timezone: Optional[str] = field(default=local_timezone)

    def __post_init__(self):
        if self.table_format not in TABLE_FORMATS:
            raise ValueError(
                f"Unsupported table format '{self.table_format}', expected one of {TABLE_FORMATS}"
            )
