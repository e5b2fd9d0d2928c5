"""
Concall ingestion pipeline.

fetch (feed) -> dedup (store) -> per item: download -> enrich (Gemini) -> bulk persist.
Items are processed one at a time; a failing item never aborts the batch.
"""

from .dedup import filter_new_announcements
from .models import Announcement, DateRange, GuidanceRecord, PipelineResult
from .service import ConcallIngestor

__all__ = [
    "Announcement",
    "ConcallIngestor",
    "DateRange",
    "GuidanceRecord",
    "PipelineResult",
    "filter_new_announcements",
]
