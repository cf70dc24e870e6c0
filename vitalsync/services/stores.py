"""
Store contracts consumed by the ingestion pipeline, plus in-memory implementations.

The SQL-backed implementations live in ``adapters.sql``; the in-memory ones here back
tests and demos.
"""

import asyncio
from collections import defaultdict
from datetime import datetime
from typing import Protocol

from vitalsync.domain.models import Alert, DeviceBinding, Reading
from vitalsync.errors import StorageFailure
from vitalsync.result import Result


class DeviceRegistry(Protocol):
    """Read-side view of device bindings."""

    async def lookup(self, device_id: str) -> DeviceBinding | None:
        """Binding for ``device_id``, or None if the device is unknown."""
        ...

    async def touch(self, device_id: str, at: datetime) -> None:
        """Record the device's last successful sync."""
        ...

    async def list_patient_ids(self) -> list[str]:
        """Every patient that owns at least one device."""
        ...


class VitalsStore(Protocol):
    """Append-only persistence of readings."""

    async def append(self, reading: Reading) -> Result[Reading, StorageFailure]:
        ...

    async def latest(self, patient_id: str) -> Reading | None:
        """Reading with the greatest timestamp (not the last to arrive)."""
        ...

    async def window(self, patient_id: str, since: datetime, until: datetime) -> list[Reading]:
        """Readings with ``since <= timestamp <= until``, ascending by timestamp."""
        ...


class AlertStore(Protocol):
    """Persistence of alerts and their acknowledgement state."""

    async def append(self, alert: Alert) -> Result[Alert, StorageFailure]:
        ...

    async def get(self, alert_id: str) -> Alert | None:
        ...

    async def acknowledge(self, alert_id: str, by: str, at: datetime) -> Alert | None:
        """Acknowledge idempotently. None if the alert does not exist."""
        ...

    async def recent(self, limit: int = 50, patient_id: str | None = None) -> list[Alert]:
        """Newest alerts first."""
        ...


class InMemoryDeviceRegistry:
    def __init__(self, bindings: list[DeviceBinding] | None = None) -> None:
        self._bindings: dict[str, DeviceBinding] = {}
        self._lock = asyncio.Lock()
        for binding in bindings or []:
            self._bindings[binding.device_id] = binding

    def add(self, binding: DeviceBinding) -> None:
        self._bindings[binding.device_id] = binding

    async def lookup(self, device_id: str) -> DeviceBinding | None:
        return self._bindings.get(device_id)

    async def touch(self, device_id: str, at: datetime) -> None:
        async with self._lock:
            binding = self._bindings.get(device_id)
            if binding is not None:
                self._bindings[device_id] = binding.model_copy(update={"last_sync": at})

    async def list_patient_ids(self) -> list[str]:
        return sorted({binding.patient_id for binding in self._bindings.values()})


class InMemoryVitalsStore:
    def __init__(self) -> None:
        self._readings: dict[str, list[Reading]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def append(self, reading: Reading) -> Result[Reading, StorageFailure]:
        async with self._lock:
            self._readings[reading.patient_id].append(reading)
        return Result.ok(reading)

    async def latest(self, patient_id: str) -> Reading | None:
        latest: Reading | None = None
        for reading in self._readings.get(patient_id, []):
            # Later arrivals win ties.
            if latest is None or reading.timestamp >= latest.timestamp:
                latest = reading
        return latest

    async def window(self, patient_id: str, since: datetime, until: datetime) -> list[Reading]:
        matching = [
            reading
            for reading in self._readings.get(patient_id, [])
            if since <= reading.timestamp <= until
        ]
        return sorted(matching, key=lambda reading: reading.timestamp)

    async def count(self) -> int:
        return sum(len(readings) for readings in self._readings.values())


class InMemoryAlertStore:
    def __init__(self) -> None:
        self._alerts: dict[str, Alert] = {}
        self._lock = asyncio.Lock()

    async def append(self, alert: Alert) -> Result[Alert, StorageFailure]:
        async with self._lock:
            self._alerts[alert.id] = alert
        return Result.ok(alert)

    async def get(self, alert_id: str) -> Alert | None:
        return self._alerts.get(alert_id)

    async def acknowledge(self, alert_id: str, by: str, at: datetime) -> Alert | None:
        async with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                return None
            acknowledged = alert.acknowledge(by, at)
            self._alerts[alert_id] = acknowledged
            return acknowledged

    async def recent(self, limit: int = 50, patient_id: str | None = None) -> list[Alert]:
        alerts = [
            alert
            for alert in self._alerts.values()
            if patient_id is None or alert.patient_id == patient_id
        ]
        alerts.sort(key=lambda alert: alert.created_at, reverse=True)
        return alerts[:limit]
