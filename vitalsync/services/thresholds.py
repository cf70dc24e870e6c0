"""
Threshold-based alert derivation.

The evaluator is a pure function from a stored reading to the alerts it triggers.
Rules are data: extending the system means adding a ThresholdRule row, never changing
the engine.
"""

from dataclasses import dataclass
from typing import Literal

from vitalsync.domain.models import Alert, AlertType, Reading, Severity


@dataclass(frozen=True)
class ThresholdRule:
    """One row of the rule table.

    ``direction`` says which side of the boundaries is abnormal. Both boundaries are
    exclusive: a value equal to the warning boundary raises nothing.
    """

    vital: str
    alert_type: AlertType
    direction: Literal["above", "below"]
    warning: float
    critical: float
    message_template: str

    def crosses(self, value: float, boundary: float) -> bool:
        if self.direction == "above":
            return value > boundary
        return value < boundary

    def severity_for(self, value: float) -> Severity | None:
        if not self.crosses(value, self.warning):
            return None
        if self.crosses(value, self.critical):
            return Severity.CRITICAL
        return Severity.WARNING


def _format_value(value: float) -> str:
    return f"{value:g}"


DEFAULT_RULES: tuple[ThresholdRule, ...] = (
    ThresholdRule(
        vital="heart_rate",
        alert_type=AlertType.HIGH_HEART_RATE,
        direction="above",
        warning=120,
        critical=140,
        message_template="High heart rate detected: {value} bpm",
    ),
    ThresholdRule(
        vital="oxygen_saturation",
        alert_type=AlertType.LOW_OXYGEN_SATURATION,
        direction="below",
        warning=92,
        critical=88,
        message_template="Low oxygen saturation detected: {value}%",
    ),
)


class ThresholdEvaluator:
    """Stateless mapping ``Reading -> [Alert]`` over a fixed rule table."""

    def __init__(self, rules: tuple[ThresholdRule, ...] = DEFAULT_RULES) -> None:
        self.rules = rules

    def evaluate(self, reading: Reading) -> list[Alert]:
        """Alerts for ``reading``, one per crossed rule, in rule-table order."""
        alerts: list[Alert] = []
        for rule in self.rules:
            value = getattr(reading, rule.vital, None)
            if value is None:
                continue

            severity = rule.severity_for(value)
            if severity is None:
                continue

            alerts.append(
                Alert(
                    patient_id=reading.patient_id,
                    device_id=reading.device_id,
                    reading_id=reading.id,
                    alert_type=rule.alert_type,
                    severity=severity,
                    message=rule.message_template.format(value=_format_value(value)),
                    value=value,
                    threshold=rule.warning,
                )
            )
        return alerts
