"""
Staged-file reader for CSV, JSON and Parquet extracts.
"""

from typing import Any

from pyspark.sql import DataFrame, SparkSession
from pyspark.sql.types import StructType

from .csv_reader import CSVReader

SUPPORTED_FORMATS = ("csv", "json", "parquet")


class FileReader:
    """
    Reads a staged extract in any supported format.

    JSON extracts are one object per line (pass multiLine="true" for a
    single array). Parquet carries its own schema.
    """

    def __init__(self, spark: SparkSession):
        self.spark = spark
        self._readers = {
            "csv": CSVReader(spark).read,
            "json": self._read_json,
            "parquet": self._read_parquet,
        }

    def read(
        self,
        file_path: str,
        file_format: str = "csv",
        schema: StructType | None = None,
        **options
    ) -> DataFrame:
        """
        Read a staged file into a Spark DataFrame.

        Raises:
            ValueError: If file format is unsupported
        """
        read_fn = self._readers.get(file_format.lower())
        if read_fn is None:
            raise ValueError(
                f"Unsupported file format '{file_format}'; expected one of {', '.join(SUPPORTED_FORMATS)}"
            )
        return read_fn(file_path, schema=schema, **options)

    def read_records(
        self,
        file_path: str,
        file_format: str = "csv",
        **options
    ) -> list[dict[str, Any]]:
        """
        Read a staged file into plain dicts, one per row, in file order.

        Staged batches are loaded row by row, so the rows are collected to
        the driver.
        """
        df = self.read(file_path, file_format=file_format, **options)
        return [row.asDict() for row in df.toLocalIterator()]

    def _read_json(self, file_path: str, schema: StructType | None = None, **options) -> DataFrame:
        reader = self.spark.read.options(**options)
        if schema is not None:
            reader = reader.schema(schema)
        return reader.json(file_path)

    def _read_parquet(self, file_path: str, schema: StructType | None = None, **options) -> DataFrame:
        reader = self.spark.read.options(**options)
        if schema is not None:
            reader = reader.schema(schema)
        return reader.parquet(file_path)
