"""
Reading ingestion pipeline.

authenticate -> validate -> store reading -> evaluate thresholds -> store alerts
-> record device liveness -> publish.

Error boundaries:
- Credential and payload problems are terminal and reported synchronously.
- A failed reading write aborts the request before anything is derived or published.
- A failed alert write is logged; the reading and the success response stand.
- Publishing happens only after persistence and never fails the request.
"""

import asyncio
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

import structlog
from pydantic import ValidationError

from vitalsync.config import IngestionConfig
from vitalsync.domain.models import (
    Alert,
    DeviceBinding,
    IngestionReceipt,
    Reading,
    ReadingSubmission,
    RealtimeEvent,
    utcnow,
)
from vitalsync.errors import (
    AuthenticationFailure,
    AuthorizationFailure,
    DistributionFailure,
    StorageFailure,
    ValidationFailure,
)
from vitalsync.services.distributor import RealtimeDistributor
from vitalsync.services.stores import AlertStore, DeviceRegistry, VitalsStore
from vitalsync.services.thresholds import ThresholdEvaluator

logger = structlog.get_logger(__name__)


def validation_details(error: ValidationError) -> list[dict[str, Any]]:
    """JSON-safe summary of a pydantic validation error."""
    return [
        {"field": ".".join(str(part) for part in err["loc"]) or "body", "message": err["msg"]}
        for err in error.errors()
    ]


class IngestionService:
    """
    Ties the registry, the stores, the evaluator and the distributor together.

    All collaborators are injected so the pipeline can be exercised against in-memory
    fakes or the SQL adapters alike.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        vitals: VitalsStore,
        alerts: AlertStore,
        distributor: RealtimeDistributor,
        evaluator: ThresholdEvaluator | None = None,
        config: IngestionConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.registry = registry
        self.vitals = vitals
        self.alerts = alerts
        self.distributor = distributor
        self.evaluator = evaluator or ThresholdEvaluator()
        self.config = config or IngestionConfig()
        self.clock = clock
        self.logger = logger.bind(component="ingestion")

    async def submit(self, payload: Mapping[str, Any], api_key: str | None) -> IngestionReceipt:
        """Ingest one device submission. Raises a VitalSyncError subclass on failure."""

        if not api_key:
            raise AuthenticationFailure("Missing API key")

        submission = self.parse(payload)
        binding = await self.authenticate(submission.device_id, api_key)
        self._check_clock_skew(submission)

        try:
            reading = submission.to_reading(binding.patient_id)
        except ValidationError as e:
            raise ValidationFailure("Invalid payload", validation_details(e)) from e

        # Once persistence starts the request runs to completion, even if the caller leaves.
        return await asyncio.shield(self._persist_and_publish(reading, record_liveness=True))

    async def ingest_trusted(self, reading: Reading) -> IngestionReceipt:
        """
        Ingest a reading from a privileged internal producer.

        Skips device authentication only; storage, evaluation and publishing are identical.
        """
        return await asyncio.shield(self._persist_and_publish(reading, record_liveness=False))

    def parse(self, payload: Mapping[str, Any]) -> ReadingSubmission:
        if not isinstance(payload, Mapping):
            raise ValidationFailure("Request body must be a JSON object")
        try:
            return ReadingSubmission.model_validate(payload)
        except ValidationError as e:
            raise ValidationFailure("Invalid payload", validation_details(e)) from e

    async def authenticate(self, device_id: str, api_key: str) -> DeviceBinding:
        binding = await self.registry.lookup(device_id)

        # Unknown device and wrong key look identical to the caller.
        if binding is None or not binding.matches_key(api_key):
            self.logger.warning("device_authentication_failed", device_id=device_id)
            raise AuthenticationFailure("Invalid device credentials")

        if not binding.is_active:
            self.logger.warning("inactive_device_rejected", device_id=device_id)
            raise AuthorizationFailure("Device is not active")

        return binding

    def _check_clock_skew(self, submission: ReadingSubmission) -> None:
        skew = abs((self.clock() - submission.observed_at).total_seconds())
        if skew > self.config.clock_skew_tolerance_seconds:
            # Late or drifting devices keep their data.
            self.logger.warning(
                "timestamp_skew_exceeded",
                device_id=submission.device_id,
                skew_seconds=round(skew, 3),
                tolerance_seconds=self.config.clock_skew_tolerance_seconds,
            )

    async def _persist_and_publish(
        self, reading: Reading, record_liveness: bool
    ) -> IngestionReceipt:
        log = self.logger.bind(patient_id=reading.patient_id, device_id=reading.device_id)

        stored = await self.vitals.append(reading)
        if stored.is_err():
            error = stored.unwrap_err()
            log.error("reading_store_failed", error=str(error))
            raise StorageFailure("Failed to store data") from error
        reading = stored.unwrap()

        try:
            candidates = self.evaluator.evaluate(reading)
        except Exception as e:
            log.exception("threshold_evaluation_failed", reading_id=reading.id, error=str(e))
            raise

        stored_alerts = await self._store_alerts(candidates, log)

        if record_liveness and reading.device_id is not None:
            await self._record_liveness(reading.device_id, log)

        self._publish(reading, stored_alerts, log)

        log.info(
            "reading_ingested",
            reading_id=reading.id,
            alerts_generated=len(candidates),
            alerts_stored=len(stored_alerts),
        )
        return IngestionReceipt(alerts_generated=len(candidates), reading_id=reading.id)

    async def _store_alerts(
        self, candidates: list[Alert], log: structlog.typing.FilteringBoundLogger
    ) -> list[Alert]:
        stored_alerts: list[Alert] = []
        for alert in candidates:
            try:
                result = await self.alerts.append(alert)
            except Exception as e:
                log.exception("alert_store_failed", alert_type=alert.alert_type.value, error=str(e))
                continue

            if result.is_err():
                log.error(
                    "alert_store_failed",
                    alert_type=alert.alert_type.value,
                    error=str(result.unwrap_err()),
                )
                continue
            stored_alerts.append(result.unwrap())
        return stored_alerts

    async def _record_liveness(
        self, device_id: str, log: structlog.typing.FilteringBoundLogger
    ) -> None:
        try:
            await self.registry.touch(device_id, self.clock())
        except Exception as e:
            log.warning("device_liveness_update_failed", error=str(e))

    def _publish(
        self,
        reading: Reading,
        alerts: list[Alert],
        log: structlog.typing.FilteringBoundLogger,
    ) -> None:
        events = [RealtimeEvent.reading_created(reading)]
        events.extend(RealtimeEvent.alert_created(alert) for alert in alerts)

        for event in events:
            try:
                self.distributor.publish(event)
            except Exception as e:
                log.error(
                    "event_publish_failed",
                    code=DistributionFailure.code,
                    event_type=event.type.value,
                    error=str(e),
                )
