"""
Domain models for wearable vitals monitoring.

These models represent the core business concepts and are framework-agnostic.
They use Pydantic for validation but could be swapped to dataclasses if needed.
"""

import hmac
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)

# Order matters: it is the order vitals are reported and evaluated in.
VITAL_FIELDS: tuple[str, ...] = (
    "heart_rate",
    "oxygen_saturation",
    "systolic_bp",
    "diastolic_bp",
    "body_temperature",
    "respiratory_rate",
)

# Largest epoch-millisecond value datetime can represent (9999-12-31T23:59:59.999Z).
MAX_EPOCH_MS = 253_402_300_799_999


def utcnow() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return uuid4().hex


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything stored is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Severity(str, Enum):
    """Alert severity. Critical supersedes warning for the same vital."""

    WARNING = "warning"
    CRITICAL = "critical"


class AlertType(str, Enum):
    """Kinds of clinical alerts. Extended by adding threshold rules."""

    HIGH_HEART_RATE = "high_heart_rate"
    LOW_OXYGEN_SATURATION = "low_oxygen_saturation"


class Topic(str, Enum):
    """Realtime distributor channels."""

    VITALS = "vitals"
    ALERTS = "alerts"


class EventType(str, Enum):
    READING_CREATED = "reading_created"
    ALERT_CREATED = "alert_created"


class Reading(BaseModel):
    """One timestamped set of biometric measurements for a patient."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)  # Immutable once stored

    id: str = Field(default_factory=_new_id)
    patient_id: str = Field(min_length=1)
    device_id: str | None = Field(None, description="Provenance; None for internal producers")
    timestamp: datetime = Field(description="Device-supplied instant, authoritative for ordering")

    heart_rate: float | None = Field(None, gt=0, description="Beats per minute")
    oxygen_saturation: float | None = Field(None, ge=0, le=100, description="SpO2 percent")
    systolic_bp: float | None = Field(None, gt=0, description="mmHg")
    diastolic_bp: float | None = Field(None, gt=0, description="mmHg")
    body_temperature: float | None = Field(None, description="Degrees Celsius")
    respiratory_rate: float | None = Field(None, gt=0, description="Breaths per minute")

    received_at: datetime = Field(default_factory=utcnow)

    @field_validator("timestamp", "received_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @model_validator(mode="after")
    def at_least_one_vital(self) -> "Reading":
        if not self.vitals():
            raise ValueError("a reading must carry at least one vital field")
        return self

    def vitals(self) -> dict[str, float]:
        """Present vital fields, in VITAL_FIELDS order."""
        return {
            name: getattr(self, name) for name in VITAL_FIELDS if getattr(self, name) is not None
        }


class ReadingSubmission(BaseModel):
    """
    Wire payload a device posts to the ingestion endpoint.

    Unknown fields are ignored so newer devices can send extra vitals to older servers.
    The payload never names a patient: ownership comes from the device binding.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True, allow_inf_nan=False)

    device_id: str = Field(min_length=1)
    timestamp: int = Field(ge=0, le=MAX_EPOCH_MS, description="Epoch milliseconds")

    heart_rate: float | None = Field(None, gt=0)
    oxygen_saturation: float | None = Field(
        None,
        ge=0,
        le=100,
        validation_alias=AliasChoices("oxygen_saturation", "spo2"),
    )
    systolic_bp: float | None = Field(None, gt=0)
    diastolic_bp: float | None = Field(None, gt=0)
    body_temperature: float | None = None
    respiratory_rate: float | None = Field(None, gt=0)

    @model_validator(mode="after")
    def at_least_one_vital(self) -> "ReadingSubmission":
        if all(getattr(self, name) is None for name in VITAL_FIELDS):
            raise ValueError("at least one vital field is required")
        return self

    @property
    def observed_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp / 1000, tz=UTC)

    def to_reading(self, patient_id: str) -> Reading:
        return Reading(
            patient_id=patient_id,
            device_id=self.device_id,
            timestamp=self.observed_at,
            **{name: getattr(self, name) for name in VITAL_FIELDS},
        )


class DeviceBinding(BaseModel):
    """Association of a device credential to its owning patient (read-only to the core)."""

    model_config = ConfigDict(frozen=True)

    device_id: str
    patient_id: str
    api_key: SecretStr
    is_active: bool = True
    last_sync: datetime | None = None

    def matches_key(self, presented: str) -> bool:
        """Constant-time comparison of the presented secret."""
        return hmac.compare_digest(
            self.api_key.get_secret_value().encode("utf-8"), presented.encode("utf-8")
        )


class Alert(BaseModel):
    """A derived notification that a measurement crossed a clinical threshold."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    id: str = Field(default_factory=_new_id)
    patient_id: str
    device_id: str | None = None
    reading_id: str = Field(description="Reading that triggered this alert")
    alert_type: AlertType
    severity: Severity
    message: str
    value: float = Field(description="The offending measurement")
    threshold: float = Field(description="The first boundary crossed")
    is_acknowledged: bool = False
    acknowledged_by: str | None = None
    acknowledged_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at", "acknowledged_at")
    @classmethod
    def ensure_utc(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v) if v is not None else None

    def acknowledge(self, by: str, at: datetime) -> "Alert":
        """Return the acknowledged alert. Re-acknowledging keeps the first acknowledger."""
        if self.is_acknowledged:
            return self
        return self.model_copy(
            update={"is_acknowledged": True, "acknowledged_by": by, "acknowledged_at": _as_utc(at)}
        )


class RealtimeEvent(BaseModel):
    """A typed event pushed to subscribers, carrying the full stored record."""

    model_config = ConfigDict(frozen=True)

    type: EventType
    topic: Topic
    patient_id: str
    data: Reading | Alert
    published_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def reading_created(cls, reading: Reading) -> "RealtimeEvent":
        return cls(
            type=EventType.READING_CREATED,
            topic=Topic.VITALS,
            patient_id=reading.patient_id,
            data=reading,
        )

    @classmethod
    def alert_created(cls, alert: Alert) -> "RealtimeEvent":
        return cls(
            type=EventType.ALERT_CREATED,
            topic=Topic.ALERTS,
            patient_id=alert.patient_id,
            data=alert,
        )

    def to_message(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class IngestionReceipt(BaseModel):
    """Outcome of a successful ingestion, as returned to the submitting device."""

    success: bool = True
    message: str = "Data received successfully"
    alerts_generated: int = Field(ge=0)
    reading_id: str
