"""Silver cleaning of the Online Retail transactions.

The steps run in a fixed order because later steps rely on what earlier
ones guarantee:

a. exact-duplicate removal
b. description backfill from the most frequent description per StockCode
c. rejection of rows missing InvoiceNo, CustomerID or Description
d. removal of non-product stock codes (postage, carriage, fees, adjustments)
e. one canonical, normalised description per StockCode
f. quantity aggregation of identical lines
g. final merge of repeated lines, keeping the earliest InvoiceDate

The result is keyed uniquely by (InvoiceNo, StockCode, UnitPrice). A
different UnitPrice on an otherwise identical line is a legitimate discount
and stays a separate row; different StockCodes sharing a description are
separate products and are never merged.
"""

from dataclasses import dataclass
from functools import reduce

from pyspark.sql import DataFrame, Window
from pyspark.sql import functions as F
from pyspark.sql.functions import col

from retail_rfm.config import (
    RAW_COLUMNS,
    LINE_KEY_COLUMNS,
    REQUIRED_COLUMNS,
    EXCLUDED_STOCK_CODES,
)
from retail_rfm.exceptions import DuplicateKeyError

# Columns identifying an order line before timestamps are merged
AGGREGATION_PASS1_KEYS = [
    "InvoiceNo", "StockCode", "Description", "InvoiceDate",
    "UnitPrice", "CustomerID", "Country",
]
AGGREGATION_PASS2_KEYS = [
    "InvoiceNo", "StockCode", "Description",
    "UnitPrice", "CustomerID", "Country",
]


@dataclass(frozen=True)
class CleanResult:
    """Output of :func:`clean_transactions` plus the rows it removed."""

    clean: DataFrame
    duplicates: DataFrame
    rejected: DataFrame
    excluded: DataFrame
    missing_stock_code: DataFrame


# ============================================================
# a. Exact duplicates
# ============================================================

def split_exact_duplicates(df):
    """Return ``(deduplicated, removed)``: one row per identical full row."""
    df_dedup = df.dropDuplicates()
    return df_dedup, df.exceptAll(df_dedup)


def remove_exact_duplicates(df):
    return df.dropDuplicates()


# ============================================================
# b. Description backfill
# ============================================================

def most_frequent_description(df, description_col: str = "Description"):
    """Most frequent non-NULL description per StockCode.

    Ties on frequency go to the alphabetically first description.
    """
    w_rank = Window.partitionBy("StockCode").orderBy(
        col("Count").desc(), col(description_col).asc()
    )
    return (
        df
        .filter(col(description_col).isNotNull())
        .groupBy("StockCode", description_col)
        .agg(F.count(F.lit(1)).alias("Count"))
        .withColumn("rn", F.row_number().over(w_rank))
        .filter(col("rn") == 1)
        .select("StockCode", col(description_col).alias("TopDescription"))
    )


def backfill_descriptions(df):
    """Replace NULL descriptions with the most frequent one for the StockCode."""
    top = most_frequent_description(df)
    return (
        df
        .join(top, on="StockCode", how="left")
        .withColumn("Description", F.coalesce(col("Description"), col("TopDescription")))
        .select(*df.columns)
    )


# ============================================================
# c. Hard NULL rejection
# ============================================================

def _has_required_fields():
    return reduce(lambda a, b: a & b, [col(c).isNotNull() for c in REQUIRED_COLUMNS])


def split_missing_required(df):
    """Return ``(valid, rejected)`` on InvoiceNo, CustomerID and Description presence."""
    keep_condition = _has_required_fields()
    return df.filter(keep_condition), df.filter(~keep_condition)


# ============================================================
# d. Non-product stock codes
# ============================================================

def _is_excluded_code():
    # Stock codes compare case-insensitively: the data has both "M" and "m"
    return F.upper(col("StockCode")).isin(*EXCLUDED_STOCK_CODES)


def split_non_products(df):
    """Return ``(products, excluded, missing_code)``.

    ``excluded`` holds postage, carriage, bank charges and manual
    adjustments. ``missing_code`` holds rows without a StockCode; they are
    not products either and are logged under their own rule.
    """
    has_code = col("StockCode").isNotNull()
    is_excluded = _is_excluded_code()
    return (
        df.filter(has_code & ~is_excluded),
        df.filter(has_code & is_excluded),
        df.filter(~has_code),
    )


# ============================================================
# e. Canonical description
# ============================================================

def normalize_description(column):
    """Normalise comma spacing to ', ', collapse whitespace runs and trim."""
    spaced = F.regexp_replace(column, r"\s*,\s*", ", ")
    return F.trim(F.regexp_replace(spaced, r"\s+", " "))


def canonicalize_descriptions(df):
    """Give every StockCode its single most frequent normalised description."""
    df_norm = df.withColumn("Description", normalize_description(col("Description")))
    top = most_frequent_description(df_norm)
    return (
        df_norm
        .join(top, on="StockCode", how="left")
        .withColumn("Description", F.coalesce(col("TopDescription"), col("Description")))
        .select(*df.columns)
    )


# ============================================================
# f, g. Quantity aggregation
# ============================================================

def aggregate_quantities(df):
    """Pass 1: sum Quantity over lines identical in every other column."""
    return (
        df
        .groupBy(*AGGREGATION_PASS1_KEYS)
        .agg(F.sum("Quantity").cast("int").alias("Quantity"))
        .select(*RAW_COLUMNS)
    )


def merge_repeated_lines(df):
    """Pass 2: merge lines that differ only by InvoiceDate.

    Keeps the earliest InvoiceDate and sums Quantity.
    """
    return (
        df
        .groupBy(*AGGREGATION_PASS2_KEYS)
        .agg(
            F.min("InvoiceDate").alias("InvoiceDate"),
            F.sum("Quantity").cast("int").alias("Quantity"),
        )
        .select(*RAW_COLUMNS)
    )


# ============================================================
# Validation
# ============================================================

def find_duplicate_keys(df, key_columns=LINE_KEY_COLUMNS):
    """Key groups that appear more than once, with their row count."""
    return (
        df
        .groupBy(*key_columns)
        .agg(F.count(F.lit(1)).alias("CountDuplicates"))
        .filter(col("CountDuplicates") > 1)
    )


def validate_unique_keys(df, key_columns=LINE_KEY_COLUMNS) -> None:
    """Raise DuplicateKeyError unless every order line key is unique."""
    duplicate_groups = find_duplicate_keys(df, key_columns).count()
    if duplicate_groups > 0:
        raise DuplicateKeyError(key_columns, duplicate_groups)


# ============================================================
# Full cleaning
# ============================================================

def clean_transactions(df, drop_canonical_duplicates: bool = True, validate: bool = True) -> CleanResult:
    """Run cleaning steps a-g on typed transactions.

    Args:
        df: Typed transactions with the RAW_COLUMNS layout.
        drop_canonical_duplicates: Drop rows that became exact duplicates
            once descriptions were canonicalised, before quantities are
            summed. With False they are summed like any other repeated line.
        validate: Check the (InvoiceNo, StockCode, UnitPrice) uniqueness.

    Returns:
        CleanResult with the clean frame and the removed duplicates,
        rejected rows, excluded non-product rows and rows without a StockCode.
    """
    df = df.select(*RAW_COLUMNS)

    df_dedup, df_duplicates = split_exact_duplicates(df)
    df_filled = backfill_descriptions(df_dedup)
    df_valid, df_rejected = split_missing_required(df_filled)
    df_products, df_excluded, df_missing_code = split_non_products(df_valid)
    df_described = canonicalize_descriptions(df_products)

    if drop_canonical_duplicates:
        df_described = remove_exact_duplicates(df_described)

    df_clean = merge_repeated_lines(aggregate_quantities(df_described))

    if validate:
        validate_unique_keys(df_clean)

    return CleanResult(
        clean=df_clean,
        duplicates=df_duplicates,
        rejected=df_rejected,
        excluded=df_excluded,
        missing_stock_code=df_missing_code,
    )
