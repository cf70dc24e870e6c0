"""
Ingestion pipeline tests.

Covers:
- Credential checks (missing, unknown, mismatched, inactive)
- Payload validation
- Alert derivation, persistence and publication order
- Error isolation (alert store failures, liveness failures, publish failures)
- Storage failure aborting before anything is published
- Clock skew warnings and trusted ingestion
"""

from datetime import UTC, datetime, timedelta

import pytest
from pydantic import SecretStr
from structlog.testing import capture_logs

from vitalsync.config import IngestionConfig
from vitalsync.domain.models import (
    Alert,
    AlertType,
    DeviceBinding,
    EventType,
    Reading,
    Severity,
    Topic,
)
from vitalsync.errors import (
    AuthenticationFailure,
    AuthorizationFailure,
    StorageFailure,
    ValidationFailure,
)
from vitalsync.result import Result
from vitalsync.services.distributor import RealtimeDistributor
from vitalsync.services.ingestion import IngestionService
from vitalsync.services.stores import (
    InMemoryAlertStore,
    InMemoryDeviceRegistry,
    InMemoryVitalsStore,
)

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)
NOW_MS = int(NOW.timestamp() * 1000)


def fixed_clock() -> datetime:
    return NOW


class FailingVitalsStore(InMemoryVitalsStore):
    async def append(self, reading: Reading) -> Result[Reading, StorageFailure]:
        return Result.err(StorageFailure("disk full"))


class FailingAlertStore(InMemoryAlertStore):
    """Refuses alerts of one type, either by raising or by returning an error result."""

    def __init__(self, refuse: AlertType, raise_error: bool = False) -> None:
        super().__init__()
        self.refuse = refuse
        self.raise_error = raise_error

    async def append(self, alert: Alert) -> Result[Alert, StorageFailure]:
        if alert.alert_type is self.refuse:
            if self.raise_error:
                raise RuntimeError("connection reset")
            return Result.err(StorageFailure("constraint violated"))
        return await super().append(alert)


class FailingTouchRegistry(InMemoryDeviceRegistry):
    async def touch(self, device_id: str, at: datetime) -> None:
        raise RuntimeError("registry unavailable")


class ExplodingDistributor(RealtimeDistributor):
    def publish(self, event):
        raise RuntimeError("fan-out broken")


def bindings() -> list[DeviceBinding]:
    return [
        DeviceBinding(device_id="GW6-001", patient_id="P1", api_key=SecretStr("key-001")),
        DeviceBinding(
            device_id="GW6-002", patient_id="P2", api_key=SecretStr("key-002"), is_active=False
        ),
        DeviceBinding(device_id="GW6-003", patient_id="P3", api_key=SecretStr("key-003")),
    ]


def build_service(
    registry: InMemoryDeviceRegistry | None = None,
    vitals: InMemoryVitalsStore | None = None,
    alerts: InMemoryAlertStore | None = None,
    distributor: RealtimeDistributor | None = None,
) -> IngestionService:
    return IngestionService(
        registry=registry or InMemoryDeviceRegistry(bindings()),
        vitals=vitals or InMemoryVitalsStore(),
        alerts=alerts or InMemoryAlertStore(),
        distributor=distributor or RealtimeDistributor(),
        config=IngestionConfig(clock_skew_tolerance_seconds=3600),
        clock=fixed_clock,
    )


def payload(device_id: str = "GW6-001", **vitals: float) -> dict:
    return {"device_id": device_id, "timestamp": NOW_MS, **(vitals or {"heart_rate": 72})}


@pytest.fixture
def service() -> IngestionService:
    return build_service()


class TestCredentials:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("api_key", [None, ""])
    async def test_missing_key_rejected(self, service: IngestionService, api_key) -> None:
        with pytest.raises(AuthenticationFailure, match="Missing API key"):
            await service.submit(payload(), api_key)

    @pytest.mark.asyncio
    async def test_unknown_device_rejected(self, service: IngestionService) -> None:
        with pytest.raises(AuthenticationFailure) as exc_info:
            await service.submit(payload("GW6-999"), "anything")

        assert exc_info.value.status_code == 401
        assert await service.vitals.count() == 0

    @pytest.mark.asyncio
    async def test_wrong_key_indistinguishable_from_unknown_device(
        self, service: IngestionService
    ) -> None:
        with pytest.raises(AuthenticationFailure) as wrong_key:
            await service.submit(payload("GW6-001"), "key-003")
        with pytest.raises(AuthenticationFailure) as unknown:
            await service.submit(payload("GW6-999"), "key-003")

        assert wrong_key.value.message == unknown.value.message

    @pytest.mark.asyncio
    async def test_inactive_device_rejected(self, service: IngestionService) -> None:
        subscription = service.distributor.subscribe([Topic.VITALS, Topic.ALERTS])

        with pytest.raises(AuthorizationFailure) as exc_info:
            await service.submit(payload("GW6-002", heart_rate=150), "key-002")

        assert exc_info.value.status_code == 403
        assert await service.vitals.latest("P2") is None
        assert await service.alerts.recent() == []
        assert subscription.drain() == []


class TestValidation:
    @pytest.mark.asyncio
    async def test_missing_vitals_rejected(self, service: IngestionService) -> None:
        with pytest.raises(ValidationFailure) as exc_info:
            await service.submit({"device_id": "GW6-001", "timestamp": NOW_MS}, "key-001")

        assert exc_info.value.status_code == 400
        assert exc_info.value.details

    @pytest.mark.asyncio
    async def test_missing_device_id_rejected(self, service: IngestionService) -> None:
        with pytest.raises(ValidationFailure):
            await service.submit({"timestamp": NOW_MS, "heart_rate": 80}, "key-001")

    @pytest.mark.asyncio
    async def test_non_object_body_rejected(self, service: IngestionService) -> None:
        with pytest.raises(ValidationFailure, match="JSON object"):
            await service.submit([1, 2, 3], "key-001")  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_out_of_range_value_rejected(self, service: IngestionService) -> None:
        with pytest.raises(ValidationFailure):
            await service.submit(payload(oxygen_saturation=140), "key-001")


class TestAlerting:
    @pytest.mark.asyncio
    async def test_high_heart_rate_end_to_end(self, service: IngestionService) -> None:
        subscription = service.distributor.subscribe([Topic.VITALS, Topic.ALERTS])

        receipt = await service.submit(payload(heart_rate=145), "key-001")

        assert receipt.success
        assert receipt.message == "Data received successfully"
        assert receipt.alerts_generated == 1

        stored = await service.vitals.latest("P1")
        assert stored is not None and stored.id == receipt.reading_id
        assert stored.timestamp == NOW

        [alert] = await service.alerts.recent()
        assert alert.severity is Severity.CRITICAL
        assert alert.reading_id == receipt.reading_id
        assert alert.message == "High heart rate detected: 145 bpm"

        events = subscription.drain()
        assert [event.type for event in events] == [
            EventType.READING_CREATED,
            EventType.ALERT_CREATED,
        ]
        assert events[0].data.id == receipt.reading_id
        assert events[1].data.id == alert.id

    @pytest.mark.asyncio
    async def test_low_saturation_with_normal_heart_rate(self, service: IngestionService) -> None:
        receipt = await service.submit(
            payload("GW6-003", heart_rate=80, spo2=90), "key-003"
        )

        assert receipt.alerts_generated == 1
        [alert] = await service.alerts.recent(patient_id="P3")
        assert alert.alert_type is AlertType.LOW_OXYGEN_SATURATION
        assert alert.severity is Severity.WARNING
        assert alert.message == "Low oxygen saturation detected: 90%"

    @pytest.mark.asyncio
    async def test_normal_reading_produces_no_alerts(self, service: IngestionService) -> None:
        receipt = await service.submit(payload(heart_rate=72, spo2=98), "key-001")
        assert receipt.alerts_generated == 0
        assert await service.alerts.recent() == []

    @pytest.mark.asyncio
    async def test_successful_submission_records_liveness(
        self, service: IngestionService
    ) -> None:
        await service.submit(payload(), "key-001")

        binding = await service.registry.lookup("GW6-001")
        assert binding is not None and binding.last_sync == NOW


class TestFailureIsolation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("raise_error", [False, True])
    async def test_alert_store_failure_does_not_fail_request(self, raise_error: bool) -> None:
        alerts = FailingAlertStore(AlertType.HIGH_HEART_RATE, raise_error=raise_error)
        service = build_service(alerts=alerts)
        subscription = service.distributor.subscribe([Topic.VITALS, Topic.ALERTS])

        receipt = await service.submit(
            payload(heart_rate=150, oxygen_saturation=85), "key-001"
        )

        assert receipt.success
        assert receipt.alerts_generated == 2
        assert await service.vitals.latest("P1") is not None

        [stored] = await alerts.recent()
        assert stored.alert_type is AlertType.LOW_OXYGEN_SATURATION

        # Only persisted alerts are published.
        events = subscription.drain()
        assert [event.type for event in events] == [
            EventType.READING_CREATED,
            EventType.ALERT_CREATED,
        ]
        assert events[1].data.id == stored.id

    @pytest.mark.asyncio
    async def test_reading_store_failure_aborts_before_publishing(self) -> None:
        service = build_service(vitals=FailingVitalsStore())
        subscription = service.distributor.subscribe([Topic.VITALS, Topic.ALERTS])

        with pytest.raises(StorageFailure, match="Failed to store data") as exc_info:
            await service.submit(payload(heart_rate=150), "key-001")

        assert exc_info.value.status_code == 500
        assert await service.alerts.recent() == []
        assert subscription.drain() == []

    @pytest.mark.asyncio
    async def test_liveness_failure_is_logged_only(self) -> None:
        with capture_logs() as logs:
            service = build_service(registry=FailingTouchRegistry(bindings()))
            receipt = await service.submit(payload(), "key-001")

        assert receipt.success
        assert any(log["event"] == "device_liveness_update_failed" for log in logs)

    @pytest.mark.asyncio
    async def test_publish_failure_is_logged_only(self) -> None:
        with capture_logs() as logs:
            service = build_service(distributor=ExplodingDistributor())
            receipt = await service.submit(payload(heart_rate=145), "key-001")

        assert receipt.alerts_generated == 1
        assert await service.vitals.latest("P1") is not None
        failures = [log for log in logs if log["event"] == "event_publish_failed"]
        assert len(failures) == 2
        assert failures[0]["code"] == "distribution_error"


class TestClockSkew:
    @pytest.mark.asyncio
    async def test_skewed_timestamp_warns_but_stores(self) -> None:
        two_hours_ago = int((NOW - timedelta(hours=2)).timestamp() * 1000)

        with capture_logs() as logs:
            service = build_service()
            receipt = await service.submit(
                {"device_id": "GW6-001", "timestamp": two_hours_ago, "heart_rate": 72}, "key-001"
            )

        assert receipt.success
        stored = await service.vitals.latest("P1")
        assert stored is not None and stored.timestamp == NOW - timedelta(hours=2)
        [warning] = [log for log in logs if log["event"] == "timestamp_skew_exceeded"]
        assert warning["log_level"] == "warning"
        assert warning["skew_seconds"] == 7200

    @pytest.mark.asyncio
    async def test_timestamp_within_tolerance_is_silent(self) -> None:
        with capture_logs() as logs:
            service = build_service()
            await service.submit(payload(), "key-001")

        assert not any(log["event"] == "timestamp_skew_exceeded" for log in logs)


class TestOrderingAndHistory:
    @pytest.mark.asyncio
    async def test_latest_uses_device_timestamp_not_arrival(
        self, service: IngestionService
    ) -> None:
        newer = {"device_id": "GW6-001", "timestamp": NOW_MS, "heart_rate": 90}
        older = {"device_id": "GW6-001", "timestamp": NOW_MS - 60_000, "heart_rate": 70}

        await service.submit(newer, "key-001")
        await service.submit(older, "key-001")

        latest = await service.vitals.latest("P1")
        assert latest is not None and latest.heart_rate == 90

        history = await service.vitals.window("P1", NOW - timedelta(hours=1), NOW)
        assert [reading.heart_rate for reading in history] == [70, 90]

    @pytest.mark.asyncio
    async def test_subscriber_receives_a_device_readings_in_submission_order(
        self, service: IngestionService
    ) -> None:
        subscription = service.distributor.subscribe([Topic.VITALS])

        first = await service.submit(payload(heart_rate=70), "key-001")
        second = await service.submit(
            {"device_id": "GW6-001", "timestamp": NOW_MS - 60_000, "heart_rate": 71}, "key-001"
        )

        events = subscription.drain()
        assert [event.type for event in events] == [
            EventType.READING_CREATED,
            EventType.READING_CREATED,
        ]
        assert [event.data.id for event in events] == [first.reading_id, second.reading_id]

    @pytest.mark.asyncio
    async def test_late_subscriber_resyncs_from_store(self, service: IngestionService) -> None:
        await service.submit(payload(heart_rate=145), "key-001")

        late = service.distributor.subscribe([Topic.VITALS])

        assert late.drain() == []
        latest = await service.vitals.latest("P1")
        assert latest is not None and latest.heart_rate == 145


class TestTrustedIngestion:
    @pytest.mark.asyncio
    async def test_trusted_reading_skips_authentication(self, service: IngestionService) -> None:
        subscription = service.distributor.subscribe([Topic.VITALS, Topic.ALERTS])
        reading = Reading(patient_id="P1", timestamp=NOW, heart_rate=150)

        receipt = await service.ingest_trusted(reading)

        assert receipt.alerts_generated == 1
        assert receipt.reading_id == reading.id
        assert len(subscription.drain()) == 2

        binding = await service.registry.lookup("GW6-001")
        assert binding is not None and binding.last_sync is None
