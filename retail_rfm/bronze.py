"""Bronze layer: land the raw Online Retail CSV as-is.

- Explicit schema with every business column as STRING, so no type
  inference surprises reach the lakehouse.
- No business transformations. Typing and cleaning happen in Silver.
- Only ingestion metadata is added: ``ingestion_timestamp`` and ``source_file``.
"""

from pyspark.sql import functions as F
from pyspark.sql.types import StructType, StructField, StringType

from retail_rfm.config import RAW_COLUMNS

# Explicit Bronze schema: all business fields as STRING
BRONZE_TABLE_SCHEMA = StructType([StructField(c, StringType()) for c in RAW_COLUMNS])


def read_raw_transactions(spark, path: str):
    """Read the raw CSV with the all-STRING Bronze schema."""
    return (
        spark.read
            .option("header", "true")
            .option("quote", '"')
            .option("escape", '"')
            .schema(BRONZE_TABLE_SCHEMA)       # enforce all columns as STRING
            .csv(path)
    )


def add_ingestion_metadata(df_raw):
    """Enrich the raw frame with lineage columns."""
    return (
        df_raw
        .withColumn("ingestion_timestamp", F.current_timestamp())
        .withColumn("source_file", F.input_file_name())
    )
