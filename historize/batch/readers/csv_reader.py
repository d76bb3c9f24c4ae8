"""
CSV reader using Spark for batch processing.
"""

from typing import Any, Iterator

from pyspark.sql import DataFrame, SparkSession
from pyspark.sql.types import StringType, StructField, StructType

from historize.core.models import SourceOptions
from historize.core.validators import CORRUPT_RECORD_COLUMN


class SparkCSVReader:
    """
    Reads staged CSV files with Spark, every column as a string.

    Parsing runs in PERMISSIVE mode: rows that cannot be split into the
    declared columns are kept with the raw line in ``_corrupt_record`` so
    the record validator can reject them individually instead of failing
    the read. Type coercion happens later, per entity.
    """

    def __init__(self, spark: SparkSession):
        """
        Initialize CSV reader.

        Args:
            spark: Active Spark session
        """
        self.spark = spark

    def read(
        self,
        file_path: str,
        options: SourceOptions | None = None,
        columns: list[str] | None = None,
    ) -> DataFrame:
        """
        Read CSV file into Spark DataFrame.

        Args:
            file_path: Path to CSV file
            options: Header and delimiter options
            columns: Declared columns; without them names come from the header

        Returns:
            Spark DataFrame of string columns
        """
        options = options or SourceOptions()
        reader = self.spark.read

        if columns:
            schema = StructType(
                [StructField(column, StringType(), True) for column in columns]
                + [StructField(CORRUPT_RECORD_COLUMN, StringType(), True)]
            )
            reader = reader.schema(schema)
        else:
            reader = reader.option("inferSchema", "false")

        df = reader \
            .option("header", str(options.header).lower()) \
            .option("delimiter", options.delimiter) \
            .option("mode", "PERMISSIVE") \
            .option("columnNameOfCorruptRecord", CORRUPT_RECORD_COLUMN) \
            .csv(file_path)

        return df

    def iter_rows(
        self,
        file_path: str,
        options: SourceOptions | None = None,
        columns: list[str] | None = None,
    ) -> Iterator[dict[str, Any]]:
        """
        Stream the rows of a CSV file to the driver one partition at a time.

        Args:
            file_path: Path to CSV file
            options: Header and delimiter options
            columns: Declared columns

        Yields:
            Raw rows as dictionaries of strings
        """
        df = self.read(file_path, options=options, columns=columns)
        for row in df.toLocalIterator():
            yield row.asDict()
