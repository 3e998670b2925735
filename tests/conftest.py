"""Pytest fixtures for the retail RFM tests."""

import os
import time
from datetime import datetime
from decimal import Decimal

import pytest
from pyspark.sql.types import (
    StructType, StructField, StringType,
    IntegerType, TimestampType, DecimalType
)

from retail_rfm.bronze import BRONZE_TABLE_SCHEMA
from retail_rfm.config import PipelineParams
from retail_rfm.spark_session import get_spark_session

# Python side datetimes and Spark session timestamps must agree
os.environ["TZ"] = "UTC"
if hasattr(time, "tzset"):
    time.tzset()

TYPED_SCHEMA = StructType([
    StructField("InvoiceNo", StringType()),
    StructField("StockCode", StringType()),
    StructField("Description", StringType()),
    StructField("Quantity", IntegerType()),
    StructField("InvoiceDate", TimestampType()),
    StructField("UnitPrice", DecimalType(10, 2)),
    StructField("CustomerID", StringType()),
    StructField("Country", StringType()),
])


@pytest.fixture(scope="session")
def warehouse_dir(tmp_path_factory):
    return str(tmp_path_factory.mktemp("warehouse"))


@pytest.fixture(scope="session")
def spark(warehouse_dir):
    """Local single-core SparkSession shared by the whole test session."""
    params = PipelineParams(table_format="parquet", warehouse_dir=warehouse_dir)
    session = get_spark_session(params, app_name="retail-rfm-tests", master="local[1]", shuffle_partitions=1)
    yield session
    session.stop()


@pytest.fixture
def make_raw(spark):
    """Build a Bronze-like frame (all STRING columns) from tuples."""
    def _make(rows):
        return spark.createDataFrame(rows, schema=BRONZE_TABLE_SCHEMA)
    return _make


def line(invoice="536365", stock="85123A", description="WHITE HANGING HEART T-LIGHT HOLDER",
         quantity=6, invoice_date=datetime(2010, 12, 1, 8, 26), unit_price="2.55",
         customer="17850", country="United Kingdom"):
    """One typed transaction tuple, defaults taken from the first UCI row."""
    price = Decimal(unit_price) if unit_price is not None else None
    return (invoice, stock, description, quantity, invoice_date, price, customer, country)


@pytest.fixture
def make_typed(spark):
    """Build a typed transaction frame from tuples made with :func:`line`."""
    def _make(rows):
        return spark.createDataFrame(rows, schema=TYPED_SCHEMA)
    return _make


def sorted_rows(df):
    """Collected rows as tuples in a stable order."""
    return sorted((tuple(r) for r in df.collect()), key=repr)
