"""
Batch processing module.
"""

from .pipeline import EntityPipeline
from .readers import IterableSource, RecordReader, SparkCSVReader
from .runner import RunReport, run_entities, run_entity

__all__ = [
    "EntityPipeline",
    "IterableSource",
    "RecordReader",
    "RunReport",
    "SparkCSVReader",
    "run_entities",
    "run_entity",
]
