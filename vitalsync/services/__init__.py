"""
Core services for the application.

This package contains the ingestion pipeline, the threshold evaluator, the realtime
distributor, the store contracts and the synthetic vitals producer.
"""

from .alerting import AlertService
from .distributor import RealtimeDistributor, Subscription
from .ingestion import IngestionService
from .pipeline import VitalsPipeline
from .simulator import SimulationController, SimulationReport, VitalsSimulator
from .stores import (
    AlertStore,
    DeviceRegistry,
    InMemoryAlertStore,
    InMemoryDeviceRegistry,
    InMemoryVitalsStore,
    VitalsStore,
)
from .thresholds import DEFAULT_RULES, ThresholdEvaluator, ThresholdRule

__all__ = [
    "AlertService",
    "AlertStore",
    "DEFAULT_RULES",
    "DeviceRegistry",
    "InMemoryAlertStore",
    "InMemoryDeviceRegistry",
    "InMemoryVitalsStore",
    "IngestionService",
    "RealtimeDistributor",
    "SimulationController",
    "SimulationReport",
    "Subscription",
    "ThresholdEvaluator",
    "ThresholdRule",
    "VitalsSimulator",
    "VitalsPipeline",
    "VitalsStore",
]
