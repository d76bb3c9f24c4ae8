"""
Incremental merge and historization planning.

Planning is pure: given incoming records and the persisted state they are
compared against, the planners return what to write. Writing is the
table store's concern.
"""

from .change_detection import content_checksum, encode_key
from .historizer import Historizer, HistoryPlan, check_partition
from .merger import CurrentStatePlan, IncrementalMerger, MergeSelection
from .projection import project

__all__ = [
    "CurrentStatePlan",
    "Historizer",
    "HistoryPlan",
    "IncrementalMerger",
    "MergeSelection",
    "check_partition",
    "content_checksum",
    "encode_key",
    "project",
]
