"""
CSV reader for staged extract files.
"""

from pyspark.sql import DataFrame, SparkSession
from pyspark.sql.types import StructType

# Source extracts are comma-separated with a header row. No inferSchema:
# every column stays a string and the rule engine coerces it, so a
# leading-zero identifier or a "Y"/"N" flag is never mangled.
STAGED_CSV_OPTIONS = {
    "header": "true",
    "delimiter": ",",
    "mode": "PERMISSIVE",
    "ignoreLeadingWhiteSpace": "true",
    "ignoreTrailingWhiteSpace": "true",
}


class CSVReader:
    """Reads staged CSV extracts with Spark."""

    def __init__(self, spark: SparkSession):
        self.spark = spark

    def read(self, file_path: str, schema: StructType | None = None, **options) -> DataFrame:
        """
        Read a staged CSV file.

        Args:
            file_path: Path to CSV file
            schema: Optional explicit schema
            **options: Spark CSV options overriding STAGED_CSV_OPTIONS,
                e.g. delimiter="|" for pipe-separated extracts

        Returns:
            Spark DataFrame with one row per staged record
        """
        reader = self.spark.read.options(**{**STAGED_CSV_OPTIONS, **options})
        if schema is not None:
            reader = reader.schema(schema)
        return reader.csv(file_path)
