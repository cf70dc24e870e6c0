"""
SQLAlchemy-backed implementations of the registry and store protocols.

Blocking database work runs on worker threads so the event loop keeps serving other
requests. Every write is its own transaction: a reading and its alerts are never
committed together.
"""

import asyncio
from datetime import UTC, datetime

import structlog
from pydantic import SecretStr
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from adapters.sql.tables import AlertRow, Database, DeviceRow, ReadingRow
from vitalsync.domain.models import VITAL_FIELDS, Alert, DeviceBinding, Reading
from vitalsync.errors import StorageFailure
from vitalsync.result import Result

logger = structlog.get_logger(__name__)


def _utc(value: datetime) -> datetime:
    return value.astimezone(UTC) if value.tzinfo else value.replace(tzinfo=UTC)


def _binding_from_row(row: DeviceRow) -> DeviceBinding:
    return DeviceBinding(
        device_id=row.device_id,
        patient_id=row.patient_id,
        api_key=SecretStr(row.api_key),
        is_active=row.is_active,
        last_sync=_utc(row.last_sync) if row.last_sync is not None else None,
    )


def _reading_from_row(row: ReadingRow) -> Reading:
    return Reading(
        id=row.id,
        patient_id=row.patient_id,
        device_id=row.device_id,
        timestamp=row.timestamp,
        received_at=row.received_at,
        **{name: getattr(row, name) for name in VITAL_FIELDS},
    )


def _alert_from_row(row: AlertRow) -> Alert:
    return Alert(
        id=row.id,
        patient_id=row.patient_id,
        device_id=row.device_id,
        reading_id=row.reading_id,
        alert_type=row.alert_type,
        severity=row.severity,
        message=row.message,
        value=row.value,
        threshold=row.threshold,
        is_acknowledged=row.is_acknowledged,
        acknowledged_by=row.acknowledged_by,
        acknowledged_at=row.acknowledged_at,
        created_at=row.created_at,
    )


class SqlDeviceRegistry:
    def __init__(self, database: Database) -> None:
        self.database = database
        self.logger = logger.bind(component="sql_device_registry")

    def register(self, binding: DeviceBinding) -> None:
        """Insert or replace a binding. Used for bootstrap; device CRUD lives elsewhere."""
        with self.database.session_factory.begin() as session:
            row = session.scalars(
                select(DeviceRow).where(DeviceRow.device_id == binding.device_id)
            ).first()
            if row is None:
                row = DeviceRow(device_id=binding.device_id)
                session.add(row)
            row.patient_id = binding.patient_id
            row.api_key = binding.api_key.get_secret_value()
            row.is_active = binding.is_active
            row.last_sync = binding.last_sync

    async def lookup(self, device_id: str) -> DeviceBinding | None:
        def _lookup() -> DeviceBinding | None:
            with self.database.session_factory() as session:
                row = session.scalars(
                    select(DeviceRow).where(DeviceRow.device_id == device_id)
                ).first()
                return _binding_from_row(row) if row is not None else None

        try:
            return await asyncio.to_thread(_lookup)
        except SQLAlchemyError as e:
            self.logger.error("device_lookup_failed", device_id=device_id, error=str(e))
            raise StorageFailure("Device registry unavailable") from e

    async def touch(self, device_id: str, at: datetime) -> None:
        def _touch() -> None:
            with self.database.session_factory.begin() as session:
                row = session.scalars(
                    select(DeviceRow).where(DeviceRow.device_id == device_id)
                ).first()
                if row is not None:
                    row.last_sync = _utc(at)

        try:
            await asyncio.to_thread(_touch)
        except SQLAlchemyError as e:
            self.logger.error("device_touch_failed", device_id=device_id, error=str(e))
            raise StorageFailure("Failed to record device sync") from e

    async def list_patient_ids(self) -> list[str]:
        def _list() -> list[str]:
            with self.database.session_factory() as session:
                return list(
                    session.scalars(
                        select(DeviceRow.patient_id).distinct().order_by(DeviceRow.patient_id)
                    )
                )

        try:
            return await asyncio.to_thread(_list)
        except SQLAlchemyError as e:
            self.logger.error("patient_listing_failed", error=str(e))
            raise StorageFailure("Device registry unavailable") from e


class SqlVitalsStore:
    def __init__(self, database: Database) -> None:
        self.database = database
        self.logger = logger.bind(component="sql_vitals_store")

    async def append(self, reading: Reading) -> Result[Reading, StorageFailure]:
        def _append() -> None:
            with self.database.session_factory.begin() as session:
                session.add(
                    ReadingRow(
                        id=reading.id,
                        patient_id=reading.patient_id,
                        device_id=reading.device_id,
                        timestamp=reading.timestamp,
                        received_at=reading.received_at,
                        **reading.vitals(),
                    )
                )

        try:
            await asyncio.to_thread(_append)
        except SQLAlchemyError as e:
            self.logger.error("reading_insert_failed", reading_id=reading.id, error=str(e))
            return Result.err(StorageFailure("Failed to store reading"))
        return Result.ok(reading)

    async def latest(self, patient_id: str) -> Reading | None:
        def _latest() -> Reading | None:
            with self.database.session_factory() as session:
                row = session.scalars(
                    select(ReadingRow)
                    .where(ReadingRow.patient_id == patient_id)
                    .order_by(ReadingRow.timestamp.desc(), ReadingRow.pk.desc())
                    .limit(1)
                ).first()
                return _reading_from_row(row) if row is not None else None

        return await asyncio.to_thread(_latest)

    async def window(self, patient_id: str, since: datetime, until: datetime) -> list[Reading]:
        def _window() -> list[Reading]:
            with self.database.session_factory() as session:
                rows = session.scalars(
                    select(ReadingRow)
                    .where(
                        ReadingRow.patient_id == patient_id,
                        ReadingRow.timestamp >= _utc(since),
                        ReadingRow.timestamp <= _utc(until),
                    )
                    .order_by(ReadingRow.timestamp.asc(), ReadingRow.pk.asc())
                )
                return [_reading_from_row(row) for row in rows]

        return await asyncio.to_thread(_window)


class SqlAlertStore:
    def __init__(self, database: Database) -> None:
        self.database = database
        self.logger = logger.bind(component="sql_alert_store")

    async def append(self, alert: Alert) -> Result[Alert, StorageFailure]:
        def _append() -> None:
            with self.database.session_factory.begin() as session:
                session.add(
                    AlertRow(
                        id=alert.id,
                        patient_id=alert.patient_id,
                        device_id=alert.device_id,
                        reading_id=alert.reading_id,
                        alert_type=alert.alert_type.value,
                        severity=alert.severity.value,
                        message=alert.message,
                        value=alert.value,
                        threshold=alert.threshold,
                        is_acknowledged=alert.is_acknowledged,
                        acknowledged_by=alert.acknowledged_by,
                        acknowledged_at=alert.acknowledged_at,
                        created_at=alert.created_at,
                    )
                )

        try:
            await asyncio.to_thread(_append)
        except SQLAlchemyError as e:
            self.logger.error("alert_insert_failed", alert_id=alert.id, error=str(e))
            return Result.err(StorageFailure("Failed to store alert"))
        return Result.ok(alert)

    async def get(self, alert_id: str) -> Alert | None:
        def _get() -> Alert | None:
            with self.database.session_factory() as session:
                row = session.scalars(select(AlertRow).where(AlertRow.id == alert_id)).first()
                return _alert_from_row(row) if row is not None else None

        return await asyncio.to_thread(_get)

    async def acknowledge(self, alert_id: str, by: str, at: datetime) -> Alert | None:
        def _acknowledge() -> Alert | None:
            with self.database.session_factory.begin() as session:
                row = session.scalars(
                    select(AlertRow).where(AlertRow.id == alert_id).with_for_update()
                ).first()
                if row is None:
                    return None
                if not row.is_acknowledged:
                    row.is_acknowledged = True
                    row.acknowledged_by = by
                    row.acknowledged_at = _utc(at)
                session.flush()
                return _alert_from_row(row)

        return await asyncio.to_thread(_acknowledge)

    async def recent(self, limit: int = 50, patient_id: str | None = None) -> list[Alert]:
        def _recent() -> list[Alert]:
            query = select(AlertRow)
            if patient_id is not None:
                query = query.where(AlertRow.patient_id == patient_id)
            query = query.order_by(AlertRow.created_at.desc(), AlertRow.pk.desc()).limit(limit)

            with self.database.session_factory() as session:
                return [_alert_from_row(row) for row in session.scalars(query)]

        return await asyncio.to_thread(_recent)
