"""
Wiring for the complete vitals pipeline.

Combines:
- Device registry and the vitals/alert stores (injected, in-memory by default)
- Threshold evaluation
- Realtime distribution
- Alert acknowledgement
- The synthetic vitals producer and its start/stop controller
"""

from collections.abc import Callable
from datetime import datetime

import structlog

from vitalsync.config import AppConfig, get_config
from vitalsync.domain.models import utcnow
from vitalsync.services.alerting import AlertService
from vitalsync.services.distributor import RealtimeDistributor
from vitalsync.services.ingestion import IngestionService
from vitalsync.services.simulator import SimulationController, VitalsSimulator
from vitalsync.services.stores import (
    AlertStore,
    DeviceRegistry,
    InMemoryAlertStore,
    InMemoryDeviceRegistry,
    InMemoryVitalsStore,
    VitalsStore,
)
from vitalsync.services.thresholds import ThresholdEvaluator

logger = structlog.get_logger(__name__)


class VitalsPipeline:
    """Owns every service instance for one running application."""

    def __init__(
        self,
        config: AppConfig | None = None,
        registry: DeviceRegistry | None = None,
        vitals: VitalsStore | None = None,
        alerts: AlertStore | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config or get_config()
        self.clock = clock
        self.logger = logger.bind(component="vitals_pipeline")

        self.registry: DeviceRegistry = registry or InMemoryDeviceRegistry()
        self.vitals: VitalsStore = vitals or InMemoryVitalsStore()
        self.alerts: AlertStore = alerts or InMemoryAlertStore()

        self._init_distribution()
        self._init_ingestion()
        self._init_simulation()

    def _init_distribution(self) -> None:
        self.distributor = RealtimeDistributor(
            queue_size=self.config.distributor.subscriber_queue_size
        )
        self.logger.info(
            "distribution_initialized",
            queue_size=self.config.distributor.subscriber_queue_size,
        )

    def _init_ingestion(self) -> None:
        self.evaluator = ThresholdEvaluator()
        self.ingestion = IngestionService(
            registry=self.registry,
            vitals=self.vitals,
            alerts=self.alerts,
            distributor=self.distributor,
            evaluator=self.evaluator,
            config=self.config.ingestion,
            clock=self.clock,
        )
        self.alert_service = AlertService(self.alerts, clock=self.clock)
        self.logger.info("ingestion_initialized", rules=len(self.evaluator.rules))

    def _init_simulation(self) -> None:
        self.simulator = VitalsSimulator(
            ingestion=self.ingestion,
            directory=self.registry,
            config=self.config.simulator,
        )
        self.simulation = SimulationController(self.simulator)

    async def stop(self) -> None:
        """Gracefully stop background work."""
        await self.simulation.stop()
        self.logger.info("vitals_pipeline_stopped")
