"""Column typing for the Online Retail transactions.

Every cast is preceded by a check for values that would not survive it
(the ISNUMERIC-style inspection), and a failing check raises
:class:`~retail_rfm.exceptions.ConversionError` instead of letting Spark
turn the value into NULL.
"""

from functools import reduce

from pyspark.sql import functions as F
from pyspark.sql.functions import col, trim, when

from retail_rfm.config import (
    RAW_COLUMNS,
    INVOICE_DATE_FORMATS,
    UNIT_PRICE_TYPE,
)
from retail_rfm.exceptions import ConversionError

INTEGER_PATTERN = r"^-?\d+$"
UNSIGNED_INTEGER_PATTERN = r"^\d+$"
DECIMAL_PATTERN = r"^-?(\d+(\.\d*)?|\.\d+)$"

SAMPLE_SIZE = 5


def _dtype(df, cname: str) -> str:
    return dict(df.dtypes)[cname]


def find_non_numeric(df, cname: str, pattern: str = DECIMAL_PATTERN):
    """Return the rows whose non-NULL ``cname`` value does not match ``pattern``."""
    as_text = col(cname).cast("string")
    return df.filter(as_text.isNotNull() & ~as_text.rlike(pattern))


def _raise_on_bad_rows(df_bad, cname: str, target_type: str) -> None:
    bad_count = df_bad.count()
    if bad_count:
        samples = [
            row[0]
            for row in df_bad.select(col(cname).cast("string")).distinct().limit(SAMPLE_SIZE).collect()
        ]
        raise ConversionError(cname, target_type, bad_count, samples)


def checked_cast(df, cname: str, target_type: str, pattern: str):
    """Cast ``cname`` to ``target_type`` after verifying every value converts."""
    _raise_on_bad_rows(find_non_numeric(df, cname, pattern), cname, target_type)
    return df.withColumn(cname, col(cname).cast(target_type))


def clean_float_str(cname: str):
    # Remove .0 suffixes from values that came as floats
    return F.regexp_replace(col(cname).cast("string"), r"\.0+$", "")


def _parse_invoice_date(cname: str = "InvoiceDate"):
    attempts = [F.try_to_timestamp(col(cname), F.lit(fmt)) for fmt in INVOICE_DATE_FORMATS]
    return F.coalesce(*attempts)


def parse_invoice_date(df, cname: str = "InvoiceDate"):
    """Parse a string InvoiceDate into a timestamp, failing on unparsable values."""
    if _dtype(df, cname) != "string":
        return df.withColumn(cname, col(cname).cast("timestamp"))

    parsed = _parse_invoice_date(cname)
    df_bad = df.filter(col(cname).isNotNull() & parsed.isNull())
    _raise_on_bad_rows(df_bad, cname, "timestamp")
    return df.withColumn(cname, parsed)


def standardize_strings(df):
    """Trim all string columns and convert empty strings to NULL."""
    string_cols = [cname for cname, ctype in df.dtypes if ctype == "string"]
    return reduce(
        lambda acc, cname: acc.withColumn(
            cname,
            when(trim(col(cname)) == "", None).otherwise(trim(col(cname)))
        ),
        string_cols,
        df,
    )


def prepare_raw(df_bronze):
    """Turn Bronze rows (all STRING) into typed transaction rows.

    - Keeps the business columns only (ingestion metadata is dropped).
    - Trims strings and converts empty strings to NULL.
    - Strips float artefacts such as ``17850.0`` from CustomerID.
    - Parses InvoiceDate, casts Quantity to int and UnitPrice to DECIMAL(10,2).

    InvoiceNo and CustomerID stay STRING here; they are converted once the
    table is clean (see :func:`enforce_datatypes`).
    """
    df = standardize_strings(df_bronze.select(*RAW_COLUMNS))

    if _dtype(df, "CustomerID") == "string":
        df = df.withColumn("CustomerID", clean_float_str("CustomerID"))

    df = parse_invoice_date(df)
    df = checked_cast(df, "Quantity", "int", INTEGER_PATTERN)
    df = checked_cast(df, "UnitPrice", UNIT_PRICE_TYPE, DECIMAL_PATTERN)
    return df


def enforce_datatypes(df_clean):
    """Convert the cleaned table's key columns to their final numeric types.

    InvoiceNo INT, Quantity INT, UnitPrice DECIMAL(10,2), CustomerID INT.
    """
    df = checked_cast(df_clean, "InvoiceNo", "int", UNSIGNED_INTEGER_PATTERN)
    df = checked_cast(df, "Quantity", "int", INTEGER_PATTERN)
    df = checked_cast(df, "UnitPrice", UNIT_PRICE_TYPE, DECIMAL_PATTERN)
    df = checked_cast(df, "CustomerID", "int", UNSIGNED_INTEGER_PATTERN)
    return df.select(*RAW_COLUMNS)
