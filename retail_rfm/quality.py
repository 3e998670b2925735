"""Column consistency checks on transaction tables.

Profiling only - nothing here changes the data. The pipeline logs the
result after each Silver run so anomalies show up next to the row counts.
"""

from pyspark.sql import functions as F
from pyspark.sql.functions import col

# StockCodes of regular products are 5 digits, optionally with a letter suffix
PRODUCT_STOCK_CODE_LENGTHS = (5, 6)


def null_counts(df):
    """Number of NULLs per column."""
    row = df.select([
        F.sum(col(c).isNull().cast("int")).alias(c)
        for c in df.columns
    ]).first()
    return {c: int(row[c] or 0) for c in df.columns}


def unusual_stock_codes(df):
    """Distinct (StockCode, Description) pairs whose code length is not 5 or 6."""
    return (
        df
        .filter(~F.length(col("StockCode")).isin(*PRODUCT_STOCK_CODE_LENGTHS))
        .select("StockCode", "Description")
        .distinct()
        .orderBy("StockCode")
    )


def profile_transactions(df) -> dict:
    """Summary of the checks done by hand on the cleaned table."""
    bounds = df.select(
        F.min("InvoiceDate").alias("first_order"),
        F.max("InvoiceDate").alias("last_order"),
        F.min("UnitPrice").alias("cheapest"),
        F.max("UnitPrice").alias("most_expensive"),
        F.countDistinct("Country").alias("countries"),
        F.sum((col("Country") == "Unspecified").cast("int")).alias("unspecified_country"),
    ).first()

    return {
        "rows": df.count(),
        "null_counts": null_counts(df),
        "first_order": bounds["first_order"],
        "last_order": bounds["last_order"],
        "cheapest": bounds["cheapest"],
        "most_expensive": bounds["most_expensive"],
        "countries": int(bounds["countries"]),
        "unspecified_country": int(bounds["unspecified_country"] or 0),
        "unusual_stock_codes": unusual_stock_codes(df).count(),
    }
