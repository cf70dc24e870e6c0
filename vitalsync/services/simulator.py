"""
Synthetic vitals producer for demos.

Generates one reading per known patient per tick. Each vital is drawn independently from
a physiological baseline range, then the whole reading is scaled by a single
multiplicative jitter. Readings go through trusted ingestion: device authentication is
skipped, everything else (storage, thresholds, publishing) is identical.
"""

import asyncio
import random
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime

import structlog
from pydantic import BaseModel, Field

from vitalsync.config import SimulatorConfig
from vitalsync.domain.models import Reading, utcnow
from vitalsync.errors import VitalSyncError
from vitalsync.services.ingestion import IngestionService
from vitalsync.services.stores import DeviceRegistry

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class BaselineRange:
    low: float
    high: float
    decimals: int = 0
    cap: float | None = None

    def sample(self, rng: random.Random, variation: float) -> float:
        value = rng.uniform(self.low, self.high) * variation
        if self.cap is not None:
            value = min(self.cap, value)
        return round(value, self.decimals) if self.decimals else float(round(value))


BASELINES: dict[str, BaselineRange] = {
    "heart_rate": BaselineRange(70, 90),
    "oxygen_saturation": BaselineRange(96, 99, cap=100),
    "systolic_bp": BaselineRange(110, 130),
    "diastolic_bp": BaselineRange(70, 85),
    "body_temperature": BaselineRange(36.0, 38.5, decimals=1),
    "respiratory_rate": BaselineRange(12, 20),
}


class PatientSimulationResult(BaseModel):
    patient_id: str
    success: bool
    reading_id: str | None = None
    alerts_generated: int = 0
    error: str | None = None


class SimulationReport(BaseModel):
    successful: int = Field(ge=0)
    failed: int = Field(ge=0)
    results: list[PatientSimulationResult]
    generated_at: datetime = Field(default_factory=utcnow)

    @property
    def message(self) -> str:
        if not self.results:
            return "No patients found to simulate data for"
        return f"Sensor data generated for {self.successful} patients"


class VitalsSimulator:
    """Produces synthetic readings for every patient the registry knows about."""

    def __init__(
        self,
        ingestion: IngestionService,
        directory: DeviceRegistry,
        config: SimulatorConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.ingestion = ingestion
        self.directory = directory
        self.config = config or SimulatorConfig()
        self.rng = rng or random.Random()
        self.logger = logger.bind(component="vitals_simulator")

    def generate_reading(self, patient_id: str, at: datetime | None = None) -> Reading:
        jitter = self.config.jitter
        variation = 1.0 + self.rng.uniform(-jitter, jitter)
        values = {name: bounds.sample(self.rng, variation) for name, bounds in BASELINES.items()}
        return Reading(patient_id=patient_id, timestamp=at or utcnow(), **values)

    async def _simulate_patient(self, patient_id: str) -> PatientSimulationResult:
        reading = self.generate_reading(patient_id)
        try:
            receipt = await self.ingestion.ingest_trusted(reading)
        except VitalSyncError as e:
            self.logger.error("simulated_reading_failed", patient_id=patient_id, error=e.message)
            return PatientSimulationResult(patient_id=patient_id, success=False, error=e.message)

        return PatientSimulationResult(
            patient_id=patient_id,
            success=True,
            reading_id=receipt.reading_id,
            alerts_generated=receipt.alerts_generated,
        )

    async def run_once(self) -> SimulationReport:
        """Generate and ingest one reading per patient, concurrently."""
        patient_ids = await self.directory.list_patient_ids()

        async with asyncio.TaskGroup() as task_group:
            tasks = [
                task_group.create_task(self._simulate_patient(patient_id))
                for patient_id in patient_ids
            ]

        results = [task.result() for task in tasks]
        successful = sum(1 for result in results if result.success)
        report = SimulationReport(
            successful=successful, failed=len(results) - successful, results=results
        )
        self.logger.info(
            "simulation_tick_completed", successful=report.successful, failed=report.failed
        )
        return report

    async def run_continuously(self) -> AsyncIterator[SimulationReport]:
        """Yield one report per tick, keeping a fixed cadence."""
        self.logger.info("simulation_started", interval_seconds=self.config.interval_seconds)

        while True:
            tick_start = time.perf_counter()
            try:
                report = await self.run_once()
            except Exception as e:
                self.logger.exception("simulation_tick_failed", error=str(e))
                # Back off before retrying a failing directory or store
                await asyncio.sleep(min(60.0, self.config.interval_seconds * 2))
                continue

            yield report

            elapsed = time.perf_counter() - tick_start
            sleep_time = max(0.0, self.config.interval_seconds - elapsed)
            if sleep_time > 0:
                await asyncio.sleep(sleep_time)
            else:
                self.logger.warning(
                    "simulation_slower_than_interval",
                    elapsed_seconds=round(elapsed, 3),
                    interval_seconds=self.config.interval_seconds,
                )


class SimulationController:
    """Starts and stops a background simulation loop."""

    def __init__(self, simulator: VitalsSimulator) -> None:
        self.simulator = simulator
        self.ticks = 0
        self.last_report: SimulationReport | None = None
        self._task: asyncio.Task[None] | None = None
        self.logger = logger.bind(component="simulation_controller")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Start the loop. Returns False if it was already running."""
        if self.is_running:
            return False
        self._task = asyncio.create_task(self._run(), name="vitals-simulation")
        return True

    async def stop(self) -> bool:
        """Stop the loop. Returns False if it was not running."""
        if not self.is_running or self._task is None:
            return False
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self.logger.info("simulation_stopped", ticks=self.ticks)
        return True

    async def _run(self) -> None:
        async for report in self.simulator.run_continuously():
            self.ticks += 1
            self.last_report = report
