"""
Machine Data API - telemetry ingestion service

A FastAPI-based service that accepts free-form JSON from machines, extracts
the machine id, device type and event time, stores the records in SQLite
and serves filtered, paginated queries and statistics over them.
"""

__version__ = "0.1.0"
