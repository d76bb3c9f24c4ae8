"""
Batch data source readers.
"""

from .csv_reader import SparkCSVReader
from .iterable_source import IterableSource
from .record_reader import RecordReader

__all__ = [
    "IterableSource",
    "RecordReader",
    "SparkCSVReader",
]
