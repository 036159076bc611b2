"""
Pydantic data models package.

Contains the stored record model and the API response models.
"""

from .record import (
    CleanupResponse,
    ErrorResponse,
    ExtractedFields,
    IngestResponse,
    MachineCount,
    MachineRecordsResponse,
    Pagination,
    Record,
    RecordListResponse,
    Statistics,
    StatsResponse,
)

__all__ = [
    # Stored record
    "Record",

    # Responses
    "ExtractedFields",
    "IngestResponse",
    "Pagination",
    "RecordListResponse",
    "MachineRecordsResponse",
    "MachineCount",
    "Statistics",
    "StatsResponse",
    "CleanupResponse",
    "ErrorResponse",
]
