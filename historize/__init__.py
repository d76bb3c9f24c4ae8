"""
historize - incremental ingestion and historization engine.

Loads staged records into current-state and version-history warehouse
tables, advancing a per-entity watermark atomically with the writes.
"""

__version__ = "0.1.0"
