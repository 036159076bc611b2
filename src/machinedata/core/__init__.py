"""
Core business logic components.

This package contains the ingestion components:
- Field extraction from free-form payloads
- Request admission (rate limiting)
- Record store
- Metrics cache and Prometheus collector
- Retention sweeps
"""
