"""
WebSocket channel onto the realtime distributor.

A client connects to ``/api/v1/realtime?topics=vitals,alerts&patient_id=P1``, receives a
``subscribed`` message once its subscription is live, then one JSON message per
``reading_created`` / ``alert_created`` event. Closing the socket ends delivery; nothing
is replayed on reconnect.
"""

import asyncio

import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from vitalsync.domain.models import Topic
from vitalsync.services.distributor import Subscription

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1")

DEFAULT_TOPICS = ",".join(topic.value for topic in Topic)


def parse_topics(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


async def _forward_events(websocket: WebSocket, subscription: Subscription) -> None:
    async for event in subscription:
        await websocket.send_json(event.to_message())


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    # Clients do not send anything meaningful; reading is how a close is noticed.
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/realtime")
async def realtime_channel(
    websocket: WebSocket,
    topics: str = Query(default=DEFAULT_TOPICS),
    patient_id: str | None = Query(default=None),
) -> None:
    distributor = websocket.app.state.pipeline.distributor

    try:
        subscription = distributor.subscribe(parse_topics(topics), patient_id=patient_id)
    except ValueError as e:
        logger.info("realtime_subscription_rejected", topics=topics, error=str(e))
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=str(e))
        return

    tasks: list[asyncio.Task[None]] = []
    try:
        await websocket.accept()
        await websocket.send_json(
            {
                "type": "subscribed",
                "subscription_id": subscription.id,
                "topics": sorted(topic.value for topic in subscription.topics),
                "patient_id": patient_id,
            }
        )

        tasks = [
            asyncio.create_task(_forward_events(websocket, subscription)),
            asyncio.create_task(_wait_for_disconnect(websocket)),
        ]
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)

        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.warning("realtime_channel_error", error=str(error))
    except WebSocketDisconnect:
        pass
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        subscription.close()
