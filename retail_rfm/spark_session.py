"""SparkSession factory for local and command line runs."""

from pyspark.sql import SparkSession

from retail_rfm.config import PipelineParams


def get_spark_session(params: PipelineParams, app_name: str = "OnlineRetailRFM",
                      master: str = "local[*]", shuffle_partitions: int = 8) -> SparkSession:
    """Create (or reuse) a SparkSession configured for the run's table format.

    Delta tables need the Delta Lake extensions and catalog; for ``parquet``
    a plain session is enough.
    """
    builder = (
        SparkSession.builder
        .appName(app_name)
        .master(master)
        .config("spark.sql.shuffle.partitions", str(shuffle_partitions))
        .config("spark.sql.session.timeZone", "UTC")
        .config("spark.sql.legacy.timeParserPolicy", "CORRECTED")
        .config("spark.ui.showConsoleProgress", "false")
    )

    if params.warehouse_dir:
        builder = builder.config("spark.sql.warehouse.dir", params.warehouse_dir)

    if params.table_format == "delta":
        from delta import configure_spark_with_delta_pip

        builder = (
            builder
            .config("spark.sql.extensions", "io.delta.sql.DeltaSparkSessionExtension")
            .config("spark.sql.catalog.spark_catalog", "org.apache.spark.sql.delta.catalog.DeltaCatalog")
        )
        builder = configure_spark_with_delta_pip(builder)

    return builder.getOrCreate()
