"""
End-to-end walkthrough of the ingestion pipeline.

This script exercises:
1. Configuration loading
2. Authenticated ingestion with threshold alerts and realtime fan-out
3. Rejection of inactive and unknown devices
4. Late subscribers re-synchronising from the vitals store
5. The synthetic vitals producer

Run with: uv run python demo_pipeline.py
"""

import asyncio
import time
from collections.abc import Awaitable, Callable

from pydantic import SecretStr
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from vitalsync.config import AppConfig, get_config, print_config_summary
from vitalsync.domain.models import DeviceBinding, RealtimeEvent, Topic
from vitalsync.errors import AuthenticationFailure, AuthorizationFailure
from vitalsync.services.pipeline import VitalsPipeline
from vitalsync.services.stores import InMemoryDeviceRegistry

console = Console()

DEVICES = [
    DeviceBinding(device_id="GW6-001", patient_id="P1", api_key=SecretStr("key-001")),
    DeviceBinding(
        device_id="GW6-002", patient_id="P2", api_key=SecretStr("key-002"), is_active=False
    ),
    DeviceBinding(device_id="GW6-003", patient_id="P3", api_key=SecretStr("key-003")),
]


def build_demo_pipeline() -> VitalsPipeline:
    registry = InMemoryDeviceRegistry(DEVICES)
    config = AppConfig(database={"url": ""})
    return VitalsPipeline(config, registry=registry)


def now_ms() -> int:
    return int(time.time() * 1000)


def events_table(title: str, events: list[RealtimeEvent]) -> Table:
    table = Table(title=title)
    table.add_column("Event", style="cyan")
    table.add_column("Patient", style="magenta")
    table.add_column("Detail", style="white")
    for event in events:
        data = event.data.model_dump()
        detail = data.get("message") or ", ".join(
            f"{name}={value:g}" for name, value in event.data.vitals().items()
        )
        table.add_row(event.type.value, event.patient_id, detail)
    return table


async def check_configuration() -> bool:
    console.print(Panel("Configuration", style="blue"))
    get_config()
    print_config_summary()
    return True


async def check_alerting_ingestion() -> bool:
    """Scenarios 1 and 4: alerts derived, stored and published."""
    console.print(Panel("Ingestion with threshold alerts", style="blue"))
    pipeline = build_demo_pipeline()

    async with pipeline.distributor.subscription([Topic.VITALS, Topic.ALERTS]) as subscription:
        first = await pipeline.ingestion.submit(
            {"device_id": "GW6-001", "timestamp": now_ms(), "heart_rate": 145}, "key-001"
        )
        second = await pipeline.ingestion.submit(
            {"device_id": "GW6-003", "timestamp": now_ms(), "heart_rate": 80, "spo2": 90},
            "key-003",
        )
        events = subscription.drain()

    console.print(events_table("Published events", events))
    return first.alerts_generated == 1 and second.alerts_generated == 1 and len(events) == 4


async def check_rejections() -> bool:
    """Scenarios 2 and 3: inactive and unknown devices store nothing."""
    console.print(Panel("Credential checks", style="blue"))
    pipeline = build_demo_pipeline()
    outcomes: list[tuple[str, str]] = []

    attempts = [
        ("GW6-002", "key-002"),
        ("GW6-999", "anything"),
        ("GW6-001", "wrong-key"),
    ]
    for device_id, key in attempts:
        try:
            await pipeline.ingestion.submit(
                {"device_id": device_id, "timestamp": now_ms(), "heart_rate": 72}, key
            )
            outcomes.append((device_id, "accepted"))
        except AuthorizationFailure as e:
            outcomes.append((device_id, f"{e.status_code} {e.message}"))
        except AuthenticationFailure as e:
            outcomes.append((device_id, f"{e.status_code} {e.message}"))

    table = Table(title="Rejections")
    table.add_column("Device", style="cyan")
    table.add_column("Outcome", style="white")
    for device_id, outcome in outcomes:
        table.add_row(device_id, outcome)
    console.print(table)

    stored = await pipeline.vitals.latest("P2")
    return stored is None and all(outcome != "accepted" for _, outcome in outcomes)


async def check_late_subscriber() -> bool:
    """Scenario 5: the store, not the distributor, is the source of truth."""
    console.print(Panel("Late subscriber", style="blue"))
    pipeline = build_demo_pipeline()
    await pipeline.ingestion.submit(
        {"device_id": "GW6-001", "timestamp": now_ms(), "heart_rate": 145}, "key-001"
    )

    async with pipeline.distributor.subscription([Topic.VITALS]) as subscription:
        missed = subscription.drain()
        latest = await pipeline.vitals.latest("P1")

    console.print(f"Live events seen after connecting: {len(missed)}")
    console.print(f"Latest stored reading for P1: {latest.vitals() if latest else None}")
    return not missed and latest is not None and latest.heart_rate == 145


async def check_simulator() -> bool:
    console.print(Panel("Synthetic vitals", style="blue"))
    pipeline = build_demo_pipeline()
    report = await pipeline.simulator.run_once()

    table = Table(title=report.message)
    table.add_column("Patient", style="cyan")
    table.add_column("Stored", style="green")
    table.add_column("Alerts", style="yellow")
    for result in report.results:
        table.add_row(result.patient_id, str(result.success), str(result.alerts_generated))
    console.print(table)
    return report.failed == 0


async def run_all_checks() -> None:
    console.print(Panel("VitalSync - pipeline walkthrough", style="bold blue"))

    checks: list[tuple[str, Callable[[], Awaitable[bool]]]] = [
        ("Configuration", check_configuration),
        ("Alerting ingestion", check_alerting_ingestion),
        ("Credential checks", check_rejections),
        ("Late subscriber", check_late_subscriber),
        ("Synthetic vitals", check_simulator),
    ]

    results = []
    for name, check in checks:
        console.print(f"\n{'=' * 60}")
        try:
            results.append((name, await check()))
        except Exception as e:
            console.print(f"{name} failed with exception: {e}", style="red")
            results.append((name, False))

    console.print(f"\n{'=' * 60}")
    summary = Table(title="Summary")
    summary.add_column("Check", style="cyan")
    summary.add_column("Result", style="white")
    for name, passed in results:
        summary.add_row(name, "PASSED" if passed else "FAILED")
    console.print(summary)

    passed = sum(1 for _, ok in results if ok)
    console.print(f"\nResults: {passed}/{len(results)} checks passed")


if __name__ == "__main__":
    try:
        asyncio.run(run_all_checks())
    except KeyboardInterrupt:
        console.print("\nStopped by user", style="yellow")
