"""Alert queries and acknowledgement."""

from collections.abc import Callable
from datetime import datetime

import structlog

from vitalsync.domain.models import Alert, utcnow
from vitalsync.errors import AlertNotFound, ValidationFailure
from vitalsync.services.stores import AlertStore

logger = structlog.get_logger(__name__)


class AlertService:
    def __init__(self, store: AlertStore, clock: Callable[[], datetime] = utcnow) -> None:
        self.store = store
        self.clock = clock
        self.logger = logger.bind(component="alert_service")

    async def acknowledge(self, alert_id: str, by: str, at: datetime | None = None) -> Alert:
        """
        Mark an alert acknowledged by ``by``.

        Idempotent: acknowledging an already acknowledged alert succeeds and keeps the
        original acknowledger and time.
        """
        if not by or not by.strip():
            raise ValidationFailure("acknowledged_by is required")

        alert = await self.store.acknowledge(alert_id, by.strip(), at or self.clock())
        if alert is None:
            raise AlertNotFound(f"Alert {alert_id} not found")

        self.logger.info(
            "alert_acknowledged",
            alert_id=alert_id,
            acknowledged_by=alert.acknowledged_by,
        )
        return alert

    async def recent(self, limit: int = 50, patient_id: str | None = None) -> list[Alert]:
        return await self.store.recent(limit=limit, patient_id=patient_id)
