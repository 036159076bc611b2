"""
Record store backed by SQLite through SQLAlchemy's async engine.

Records are append-only. JSON columns are stored as serialized text and
decoded on read; a row that no longer decodes is reported as a storage
failure rather than a missing record.
"""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import structlog
from sqlalchemy import (
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    delete,
    desc,
    distinct,
    func,
    insert,
    select,
    text,
)
from sqlalchemy.engine import Row
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from ..config import DatabaseSettings
from ..models.record import Record
from .exceptions import NotFoundError, StorageError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

metadata = MetaData()

machine_data_table = Table(
    "machine_data",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("machine_id", String, nullable=True),
    Column("device_type", String, nullable=False, server_default="unknown"),
    Column("event_timestamp", String, nullable=True),
    Column("received_at", DateTime(timezone=True), nullable=False),
    Column("raw_payload", Text, nullable=False),
    Column("extracted_data", Text, nullable=False),
    Column("request_metadata", Text, nullable=False, server_default="{}"),
    # ids are never reused, even after the newest rows are deleted
    sqlite_autoincrement=True,
)

Index("idx_machine_data_machine_id", machine_data_table.c.machine_id)
Index("idx_machine_data_device_type", machine_data_table.c.device_type)
Index("idx_machine_data_received_at", machine_data_table.c.received_at)


@dataclass
class RecordFilter:
    """Conjunctive filters for record queries. Time bounds are inclusive."""
    machine_id: Optional[str] = None
    device_type: Optional[str] = None
    received_from: Optional[datetime] = None
    received_to: Optional[datetime] = None


@dataclass
class QueryPage:
    """One page of records plus the total number matching the filter."""
    records: List[Record]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total


@dataclass
class StoreStats:
    """Aggregate statistics over all stored records."""
    total: int
    unique_machines: int
    device_types: List[str]
    recent_24h: int
    per_machine_counts: List[tuple] = field(default_factory=list)

    def top_machines(self, n: int = 10) -> List[tuple]:
        return self.per_machine_counts[:n]


def _to_db_time(value: datetime) -> datetime:
    """SQLite keeps no zone; everything is stored as naive UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_db_time(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _dumps(value: Dict[str, Any]) -> str:
    return json.dumps(value, ensure_ascii=False)


class RecordStore:
    """
    Append-only persistence of machine records.

    Every operation is bounded by the configured timeout and surfaces
    StorageError on expiry or database failure.
    """

    def __init__(self, settings: DatabaseSettings, engine: Optional[AsyncEngine] = None) -> None:
        self.settings = settings
        self.timeout = settings.timeout_seconds
        self.engine = engine or create_async_engine(
            settings.url,
            echo=settings.echo,
            connect_args={"timeout": settings.timeout_seconds},
        )
        self._write_lock = asyncio.Lock()
        self._last_received_at: Optional[datetime] = None

    async def initialize(self) -> None:
        """Create the table if needed and load the latest receive time."""
        try:
            Path(self.settings.path).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("Cannot create database directory", path=str(self.settings.path), error=str(e))
            raise StorageError()

        async def _setup() -> Optional[datetime]:
            async with self.engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
                result = await conn.execute(select(func.max(machine_data_table.c.received_at)))
                return result.scalar()

        latest = await self._run("initialize", _setup)
        self._last_received_at = _from_db_time(latest) if latest is not None else None
        logger.info("Record store initialized", path=str(self.settings.path), latest_received_at=latest)

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("Record store closed")

    async def _run(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await asyncio.wait_for(fn(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error("Storage operation timed out", operation=operation, timeout_seconds=self.timeout)
            raise StorageError()
        except SQLAlchemyError as e:
            logger.error(
                "Storage operation failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise StorageError()

    def _row_to_record(self, row: Row) -> Record:
        try:
            raw_payload = json.loads(row.raw_payload)
            extracted_data = json.loads(row.extracted_data)
            request_metadata = json.loads(row.request_metadata)
        except (TypeError, json.JSONDecodeError) as e:
            logger.error("Stored record is corrupted", record_id=row.id, error=str(e))
            raise StorageError()

        if not all(isinstance(v, dict) for v in (raw_payload, extracted_data, request_metadata)):
            logger.error("Stored record is corrupted", record_id=row.id, error="JSON column is not an object")
            raise StorageError()

        return Record(
            id=row.id,
            machine_id=row.machine_id,
            device_type=row.device_type,
            event_timestamp=row.event_timestamp,
            received_at=_from_db_time(row.received_at),
            raw_payload=raw_payload,
            extracted_data=extracted_data,
            metadata=request_metadata,
        )

    async def insert(
        self,
        machine_id: Optional[str],
        device_type: str,
        event_timestamp: Optional[str],
        raw_payload: Dict[str, Any],
        extracted_data: Dict[str, Any],
        metadata: Optional[Dict[str, Any]] = None,
        received_at: Optional[datetime] = None,
    ) -> Record:
        """
        Append a record and return it with its assigned id.

        Server-assigned receive times never go backwards. An explicit
        received_at is stored as given.
        """
        metadata = metadata or {}

        async with self._write_lock:
            if received_at is None:
                received_at = datetime.now(timezone.utc)
                if self._last_received_at is not None and received_at < self._last_received_at:
                    received_at = self._last_received_at
            else:
                received_at = _from_db_time(received_at)

            values = {
                "machine_id": machine_id,
                "device_type": device_type,
                "event_timestamp": event_timestamp,
                "received_at": _to_db_time(received_at),
                "raw_payload": _dumps(raw_payload),
                "extracted_data": _dumps(extracted_data),
                "request_metadata": _dumps(metadata),
            }

            async def _insert() -> int:
                async with self.engine.begin() as conn:
                    result = await conn.execute(insert(machine_data_table).values(**values))
                    return result.inserted_primary_key[0]

            record_id = await self._run("insert", _insert)

            if self._last_received_at is None or received_at > self._last_received_at:
                self._last_received_at = received_at

        logger.debug("Record stored", record_id=record_id, machine_id=machine_id)

        return Record(
            id=record_id,
            machine_id=machine_id,
            device_type=device_type,
            event_timestamp=event_timestamp,
            received_at=received_at,
            raw_payload=json.loads(values["raw_payload"]),
            extracted_data=json.loads(values["extracted_data"]),
            metadata=json.loads(values["request_metadata"]),
        )

    async def get(self, record_id: int) -> Record:
        """Fetch one record by id."""
        async def _get() -> Optional[Row]:
            async with self.engine.connect() as conn:
                result = await conn.execute(
                    select(machine_data_table).where(machine_data_table.c.id == record_id)
                )
                return result.first()

        row = await self._run("get", _get)
        if row is None:
            raise NotFoundError(f"No record with id {record_id}", details={"id": record_id})
        return self._row_to_record(row)

    @staticmethod
    def _conditions(filters: RecordFilter) -> list:
        t = machine_data_table
        conditions = []
        if filters.machine_id is not None:
            conditions.append(t.c.machine_id == filters.machine_id)
        if filters.device_type is not None:
            conditions.append(t.c.device_type == filters.device_type)
        if filters.received_from is not None:
            conditions.append(t.c.received_at >= _to_db_time(filters.received_from))
        if filters.received_to is not None:
            conditions.append(t.c.received_at <= _to_db_time(filters.received_to))
        return conditions

    @staticmethod
    def _newest_first(stmt: Any) -> Any:
        t = machine_data_table
        return stmt.order_by(t.c.received_at.desc(), t.c.id.desc())

    async def query(self, filters: RecordFilter, limit: int, offset: int) -> QueryPage:
        """Filtered page of records, most recent first."""
        conditions = self._conditions(filters)

        count_stmt = select(func.count()).select_from(machine_data_table)
        page_stmt = self._newest_first(select(machine_data_table)).limit(limit).offset(offset)
        if conditions:
            count_stmt = count_stmt.where(*conditions)
            page_stmt = page_stmt.where(*conditions)

        async def _query() -> tuple:
            async with self.engine.connect() as conn:
                total = (await conn.execute(count_stmt)).scalar_one()
                rows = (await conn.execute(page_stmt)).all()
                return total, rows

        total, rows = await self._run("query", _query)
        return QueryPage(
            records=[self._row_to_record(row) for row in rows],
            total=total,
            limit=limit,
            offset=offset,
        )

    async def query_by_machine(self, machine_id: str, limit: int) -> List[Record]:
        """Most recent records for one machine; NotFoundError if there are none."""
        stmt = self._newest_first(
            select(machine_data_table).where(machine_data_table.c.machine_id == machine_id)
        ).limit(limit)

        async def _query() -> list:
            async with self.engine.connect() as conn:
                return (await conn.execute(stmt)).all()

        rows = await self._run("query_by_machine", _query)
        if not rows:
            raise NotFoundError(
                f"No data found for machine: {machine_id}",
                details={"machineId": machine_id},
            )
        return [self._row_to_record(row) for row in rows]

    async def compute_stats(self, now: Optional[datetime] = None) -> StoreStats:
        """Totals, distinct machines and device types, 24h activity, per-machine counts."""
        t = machine_data_table
        since = _to_db_time((now or datetime.now(timezone.utc)) - timedelta(hours=24))
        message_count = func.count().label("message_count")

        async def _stats() -> StoreStats:
            async with self.engine.connect() as conn:
                total = (await conn.execute(select(func.count()).select_from(t))).scalar_one()
                unique = (await conn.execute(select(func.count(distinct(t.c.machine_id))))).scalar_one()
                device_types = (
                    await conn.execute(select(t.c.device_type).distinct().order_by(t.c.device_type))
                ).scalars().all()
                recent = (
                    await conn.execute(select(func.count()).select_from(t).where(t.c.received_at > since))
                ).scalar_one()
                per_machine = (
                    await conn.execute(
                        select(t.c.machine_id, message_count)
                        .where(t.c.machine_id.is_not(None))
                        .group_by(t.c.machine_id)
                        .order_by(desc("message_count"), t.c.machine_id)
                    )
                ).all()

            return StoreStats(
                total=total,
                unique_machines=unique,
                device_types=list(device_types),
                recent_24h=recent,
                per_machine_counts=[(row.machine_id, row.message_count) for row in per_machine],
            )

        return await self._run("compute_stats", _stats)

    async def delete_older_than(self, retention_days: int, now: Optional[datetime] = None) -> int:
        """Delete records received more than retention_days ago; returns the count removed."""
        threshold = _to_db_time((now or datetime.now(timezone.utc)) - timedelta(days=retention_days))

        async def _delete() -> int:
            async with self.engine.begin() as conn:
                result = await conn.execute(
                    delete(machine_data_table).where(machine_data_table.c.received_at < threshold)
                )
                return result.rowcount or 0

        deleted = await self._run("delete_older_than", _delete)
        logger.info("Deleted expired records", retention_days=retention_days, deleted=deleted)
        return deleted

    async def count(self) -> int:
        async def _count() -> int:
            async with self.engine.connect() as conn:
                return (await conn.execute(select(func.count()).select_from(machine_data_table))).scalar_one()

        return await self._run("count", _count)

    async def distinct_machine_ids(self) -> List[str]:
        """All non-null machine ids present in the store."""
        stmt = select(machine_data_table.c.machine_id).distinct().where(
            machine_data_table.c.machine_id.is_not(None)
        )

        async def _distinct() -> List[str]:
            async with self.engine.connect() as conn:
                return list((await conn.execute(stmt)).scalars().all())

        return await self._run("distinct_machine_ids", _distinct)

    async def ping(self) -> bool:
        """True when the database answers a trivial query."""
        async def _ping() -> None:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))

        try:
            await self._run("ping", _ping)
        except StorageError:
            return False
        return True
