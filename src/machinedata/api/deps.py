"""
FastAPI dependencies resolving the components owned by the application.

Components are created in the lifespan handler and kept on app.state.
"""

from typing import Optional

from fastapi import Request

from ..config import Settings, get_settings
from ..core.admission import AdmissionGate
from ..core.metrics import MetricsCache, MetricsCollector
from ..core.pipeline import IngestionPipeline
from ..core.retention import RetentionService
from ..core.store import RecordStore


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_record_store(request: Request) -> RecordStore:
    return request.app.state.record_store


def get_pipeline(request: Request) -> IngestionPipeline:
    return request.app.state.pipeline


def get_admission_gate(request: Request) -> AdmissionGate:
    return request.app.state.admission


def get_metrics_cache(request: Request) -> MetricsCache:
    return request.app.state.metrics_cache


def get_metrics_collector(request: Request) -> Optional[MetricsCollector]:
    return getattr(request.app.state, "metrics", None)


def get_retention_service(request: Request) -> RetentionService:
    return request.app.state.retention_service
