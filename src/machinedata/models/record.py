"""
Machine record data models.

Response bodies are serialized with camelCase keys.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model that serializes field names as camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class Record(CamelModel):
    """
    One ingested measurement as stored.
    """

    id: int = Field(description="Store-assigned identifier")
    machine_id: Optional[str] = Field(default=None, description="Declared or extracted machine identifier")
    device_type: str = Field(default="unknown", description="Declared or extracted device type")
    event_timestamp: Optional[str] = Field(default=None, description="Measurement time declared by the machine")
    received_at: datetime = Field(description="Server ingestion time (UTC)")
    raw_payload: Dict[str, Any] = Field(description="Payload exactly as received")
    extracted_data: Dict[str, Any] = Field(description="Payload minus the fields consumed by extraction")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Server-attached request context")


class ExtractedFields(CamelModel):
    machine_id: Optional[str]
    device_type: str
    event_timestamp: Optional[str]


class IngestResponse(CamelModel):
    """
    Response from the ingestion endpoint.

    201 Created with the assigned record id.
    """

    success: bool = True
    message: str = Field(description="Response message")
    id: int = Field(description="Assigned record id")
    timestamp: datetime = Field(description="Server receive time of the record")
    extracted: ExtractedFields


class Pagination(CamelModel):
    total: int
    limit: int
    offset: int
    has_more: bool


class RecordListResponse(CamelModel):
    success: bool = True
    data: List[Record]
    pagination: Pagination


class MachineRecordsResponse(CamelModel):
    success: bool = True
    machine_id: str
    record_count: int
    data: List[Record]


class MachineCount(CamelModel):
    machine_id: str
    message_count: int


class Statistics(CamelModel):
    total_messages: int
    unique_machines: int
    device_types: List[str]
    recent_activity_24h: int = Field(alias="recentActivity24h")
    last_message: Optional[datetime]
    top_machines: List[MachineCount]


class StatsResponse(CamelModel):
    success: bool = True
    statistics: Statistics


class CleanupResponse(CamelModel):
    success: bool = True
    message: str
    deleted_records: int


class ErrorResponse(BaseModel):
    """
    Standard error envelope.

    Error-specific context (retryAfter, receivedFields, ...) is added
    alongside these keys.
    """

    model_config = ConfigDict(extra="allow")

    success: bool = Field(default=False)
    error: str = Field(description="Human-readable error message")
    code: str = Field(description="Error code")
