"""Customer RFM metrics, quartile scores and segment labels.

RFM metrics:

- **Recency**   - days between the customer's last invoice and the latest
  invoice in the whole table.
- **Frequency** - number of distinct invoices.
- **Monetary**  - sum of Quantity * UnitPrice.

Scores are NTILE(4) buckets, 4 being the best, and the segment is the
first matching rule of :data:`SEGMENT_RULES`. Both depend on the whole
customer population, so they are only comparable within one run.
"""

from pyspark.sql import Window
from pyspark.sql import functions as F
from pyspark.sql.functions import col, lit

from retail_rfm.config import MONETARY_TYPE, RFM_BUCKETS
from retail_rfm.exceptions import EmptyInputError

SEGMENT_COLUMNS = [
    "CustomerID",
    "Recency",
    "Frequency",
    "Monetary",
    "R_Score",
    "F_Score",
    "M_Score",
    "Segment",
]

# Evaluated top to bottom, first match wins. The conditions overlap
# (R=1,F=1,M=1 would also be "Needs Attention"), so order is significant.
# Each predicate works on plain ints and on Spark columns alike.
SEGMENT_RULES = [
    ("Champions",       lambda r, f, m: (r == 4) & (f == 4) & (m == 4)),
    ("Loyal Customers", lambda r, f, m: (r >= 3) & (f >= 3)),
    ("Big Spenders",    lambda r, f, m: (r >= 2) & (f >= 2) & (m == 4)),
    ("At Risk",         lambda r, f, m: (r <= 2) & (f >= 2)),
    ("Lost",            lambda r, f, m: (r == 1) & (f == 1) & (m == 1)),
    ("Needs Attention", lambda r, f, m: (r <= 2) & (f <= 2) & (m <= 2)),
]
DEFAULT_SEGMENT = "Others"


def segment_label(r_score: int, f_score: int, m_score: int) -> str:
    """Segment label for one customer's scores."""
    for label, rule in SEGMENT_RULES:
        if rule(r_score, f_score, m_score):
            return label
    return DEFAULT_SEGMENT


def segment_column(r_score="R_Score", f_score="F_Score", m_score="M_Score"):
    """Same rules as :func:`segment_label` as a Spark CASE WHEN expression."""
    r_score, f_score, m_score = (
        col(c) if isinstance(c, str) else c for c in (r_score, f_score, m_score)
    )
    (first_label, first_rule), *rest = SEGMENT_RULES
    expr = F.when(first_rule(r_score, f_score, m_score), lit(first_label))
    for label, rule in rest:
        expr = expr.when(rule(r_score, f_score, m_score), lit(label))
    return expr.otherwise(lit(DEFAULT_SEGMENT))


def latest_invoice_date(df_clean):
    """Global maximum InvoiceDate, the reference date for Recency."""
    reference_date = df_clean.select(F.max("InvoiceDate").alias("max_date")).collect()[0]["max_date"]
    if reference_date is None:
        raise EmptyInputError("InvoiceDate is NULL for all rows. Cannot compute Recency.")
    return reference_date


def compute_rfm(df_clean, reference_date=None):
    """One row per customer with Recency, Frequency and Monetary."""
    if reference_date is None:
        reference_date = latest_invoice_date(df_clean)

    return (
        df_clean
        .groupBy("CustomerID")
        .agg(
            F.max("InvoiceDate").alias("LastInvoiceDate"),
            F.countDistinct("InvoiceNo").alias("Frequency"),
            F.sum(col("Quantity") * col("UnitPrice")).alias("Monetary"),
        )
        .select(
            col("CustomerID"),
            F.datediff(F.to_date(lit(reference_date)), F.to_date("LastInvoiceDate")).cast("int").alias("Recency"),
            col("Frequency").cast("int"),
            col("Monetary").cast(MONETARY_TYPE),
        )
    )


def score_rfm(df_rfm, buckets: int = RFM_BUCKETS):
    """Add R_Score, F_Score and M_Score quartile buckets (4 = best).

    NTILE gives earlier buckets one extra member when the population does
    not divide evenly. Equal values are ordered by CustomerID so a rerun
    produces the same scores.
    """
    # Oldest purchase first, so the most recent customers land in the top bucket
    w_recency = Window.orderBy(col("Recency").desc(), col("CustomerID").asc())
    w_frequency = Window.orderBy(col("Frequency").asc(), col("CustomerID").asc())
    w_monetary = Window.orderBy(col("Monetary").asc(), col("CustomerID").asc())

    return (
        df_rfm
        .withColumn("R_Score", F.ntile(buckets).over(w_recency))
        .withColumn("F_Score", F.ntile(buckets).over(w_frequency))
        .withColumn("M_Score", F.ntile(buckets).over(w_monetary))
    )


def segment_customers(df_clean):
    """Build the customer segment table from clean transactions."""
    reference_date = latest_invoice_date(df_clean)
    df_scored = score_rfm(compute_rfm(df_clean, reference_date))

    return (
        df_scored
        .withColumn("Segment", segment_column())
        .select(
            col("CustomerID"),
            col("Recency"),
            col("Frequency"),
            col("Monetary"),
            col("R_Score").cast("int"),
            col("F_Score").cast("int"),
            col("M_Score").cast("int"),
            col("Segment"),
        )
    )
