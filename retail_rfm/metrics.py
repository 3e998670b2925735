"""Gold transaction metrics and monthly sales aggregates for the dashboard."""

from pyspark.sql import functions as F
from pyspark.sql.functions import col

from retail_rfm.config import MONETARY_TYPE


def build_transaction_metrics(df_clean):
    """Add transaction level measures: TotalSpend and InvoiceYearMonth ('yyyy-MM')."""
    return (
        df_clean
        .withColumn("TotalSpend", (col("Quantity") * col("UnitPrice")).cast(MONETARY_TYPE))
        .withColumn("InvoiceYearMonth", F.date_format(col("InvoiceDate"), "yyyy-MM"))
    )


def add_standard_measures(grouped):
    """
    Given a GroupedData object over transaction metrics, calculate:
    - TotalQuantity
    - TotalSpend
    - OrdersCount
    - CustomersCount
    - AvgOrderValue (TotalSpend per order)
    """
    df_agg = (
        grouped
        .agg(
            F.sum("Quantity").alias("TotalQuantity"),
            F.sum("TotalSpend").cast(MONETARY_TYPE).alias("TotalSpend"),
            F.countDistinct("InvoiceNo").alias("OrdersCount"),
            F.countDistinct("CustomerID").alias("CustomersCount"),
        )
    )

    return df_agg.withColumn(
        "AvgOrderValue",
        F.when(col("OrdersCount") > 0,
               (col("TotalSpend") / col("OrdersCount")).cast(MONETARY_TYPE))
         .otherwise(F.lit(0).cast(MONETARY_TYPE))
    )


def build_monthly_sales(df_transactions):
    """Monthly sales measures, one row per InvoiceYearMonth."""
    if "InvoiceYearMonth" not in df_transactions.columns:
        df_transactions = build_transaction_metrics(df_transactions)

    return (
        add_standard_measures(df_transactions.groupBy("InvoiceYearMonth"))
        .orderBy("InvoiceYearMonth")
    )
