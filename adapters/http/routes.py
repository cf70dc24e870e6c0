"""REST routes: reading ingestion, vitals queries, alerts and the simulation trigger."""

from datetime import datetime, timedelta
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from vitalsync.domain.models import Alert, Reading, utcnow
from vitalsync.errors import SimulatorDisabled, ValidationFailure
from vitalsync.services.pipeline import VitalsPipeline

router = APIRouter(prefix="/api/v1")

DEFAULT_HISTORY_WINDOW = timedelta(hours=24)


def get_pipeline(request: Request) -> VitalsPipeline:
    return request.app.state.pipeline


class AcknowledgeRequest(BaseModel):
    acknowledged_by: str = Field(min_length=1, max_length=128)


# ==================== INGESTION ====================


@router.post("/readings")
async def submit_reading(
    request: Request, pipeline: VitalsPipeline = Depends(get_pipeline)
) -> dict[str, Any]:
    """Accept one reading from a wearable device."""
    api_key = request.headers.get(pipeline.config.api.api_key_header)
    try:
        payload = await request.json()
    except ValueError as e:
        raise ValidationFailure("Request body must be valid JSON") from e

    receipt = await pipeline.ingestion.submit(payload, api_key)
    return {
        "success": receipt.success,
        "message": receipt.message,
        "alerts_generated": receipt.alerts_generated,
    }


# ==================== VITALS ====================


@router.get("/patients/{patient_id}/vitals/latest", response_model=Reading)
async def get_latest_vitals(patient_id: str, pipeline: VitalsPipeline = Depends(get_pipeline)):
    """Most recent reading by device timestamp."""
    reading = await pipeline.vitals.latest(patient_id)
    if reading is None:
        return JSONResponse(
            status_code=404,
            content={"error": "not_found", "message": "No readings for patient"},
        )
    return reading


@router.get("/patients/{patient_id}/vitals", response_model=list[Reading])
async def get_vitals_window(
    patient_id: str,
    since: datetime | None = Query(default=None),
    until: datetime | None = Query(default=None),
    pipeline: VitalsPipeline = Depends(get_pipeline),
) -> list[Reading]:
    """Readings in a time window, oldest first. Defaults to the last 24 hours."""
    until = until or utcnow()
    since = since or until - DEFAULT_HISTORY_WINDOW
    if since.tzinfo is None or until.tzinfo is None:
        raise ValidationFailure("since and until must include a timezone offset")
    if since > until:
        raise ValidationFailure("since must not be after until")
    return await pipeline.vitals.window(patient_id, since, until)


# ==================== ALERTS ====================


@router.get("/alerts", response_model=list[Alert])
async def list_alerts(
    patient_id: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    pipeline: VitalsPipeline = Depends(get_pipeline),
) -> list[Alert]:
    """Newest alerts first."""
    return await pipeline.alert_service.recent(limit=limit, patient_id=patient_id)


@router.post("/alerts/{alert_id}/acknowledge", response_model=Alert)
async def acknowledge_alert(
    alert_id: str,
    body: AcknowledgeRequest,
    pipeline: VitalsPipeline = Depends(get_pipeline),
) -> Alert:
    """Acknowledge an alert. Repeating the call is a no-op success."""
    return await pipeline.alert_service.acknowledge(alert_id, body.acknowledged_by)


# ==================== SIMULATION ====================


def require_simulator(pipeline: VitalsPipeline = Depends(get_pipeline)) -> VitalsPipeline:
    # The simulator writes without device credentials, so it is opt-in.
    if not pipeline.config.simulator.enabled:
        raise SimulatorDisabled("Simulation trigger is disabled")
    return pipeline


@router.get("/simulation")
async def simulation_status(pipeline: VitalsPipeline = Depends(require_simulator)) -> dict[str, Any]:
    controller = pipeline.simulation
    last = controller.last_report
    return {
        "running": controller.is_running,
        "ticks": controller.ticks,
        "interval_seconds": pipeline.config.simulator.interval_seconds,
        "last_report": last.model_dump(mode="json") if last else None,
    }


@router.post("/simulation/start")
async def start_simulation(pipeline: VitalsPipeline = Depends(require_simulator)) -> dict[str, str]:
    started = pipeline.simulation.start()
    return {"status": "started" if started else "already_running"}


@router.post("/simulation/stop")
async def stop_simulation(pipeline: VitalsPipeline = Depends(require_simulator)) -> dict[str, str]:
    stopped = await pipeline.simulation.stop()
    return {"status": "stopped" if stopped else "not_running"}


@router.post("/simulation/tick")
async def simulate_once(pipeline: VitalsPipeline = Depends(require_simulator)) -> dict[str, Any]:
    """Generate one reading for every known patient."""
    report = await pipeline.simulator.run_once()
    return {"message": report.message, **report.model_dump(mode="json")}
