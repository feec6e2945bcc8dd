"""
Batch loading: staged-file readers and the table-load pipeline.
"""

from .pipeline import EtlPipeline, create_spark_session
from .readers import CSVReader, FileReader

__all__ = [
    "EtlPipeline",
    "create_spark_session",
    "CSVReader",
    "FileReader",
]
