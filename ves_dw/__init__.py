"""
Veteran Evaluation Services warehouse ETL.

Metadata-driven SCD Type 2 dimension loading and accumulating-snapshot
fact merging on PostgreSQL.
"""

__version__ = "0.1.0"
