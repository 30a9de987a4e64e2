"""
Real-time order notifications using Server-Sent Events (SSE).
Dashboards subscribe per store; webhook ingestion and status changes publish here.
"""
import asyncio
import json
import logging
from typing import Any, Dict, Set

from app.models import Order

logger = logging.getLogger(__name__)

MAX_QUEUED_EVENTS = 100


def order_event(event_type: str, order: Order) -> Dict[str, Any]:
    return {
        "type": event_type,
        "data": {
            "id": order.id,
            "orderId": order.order_id,
            "name": order.name,
            "customStatus": order.custom_status,
            "isDeleted": bool(order.is_deleted),
            "pickupReady": bool(order.pickup_ready),
        },
    }


class RealtimeService:
    def __init__(self):
        # Active subscriber queues by store id
        self.connections: Dict[str, Set[asyncio.Queue]] = {}

    async def connect(self, store_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=MAX_QUEUED_EVENTS)
        self.connections.setdefault(store_id, set()).add(queue)
        logger.info("Realtime subscriber connected for store %s", store_id)
        return queue

    async def disconnect(self, store_id: str, queue: asyncio.Queue) -> None:
        queues = self.connections.get(store_id)
        if queues is not None:
            queues.discard(queue)
            if not queues:
                del self.connections[store_id]
        logger.info("Realtime subscriber disconnected for store %s", store_id)

    def subscriber_count(self, store_id: str) -> int:
        return len(self.connections.get(store_id, ()))

    async def publish(self, store_id: str, event: Dict[str, Any]) -> int:
        """
        Queue an event for every subscriber of the store. Returns the number of subscribers reached.
        A subscriber whose queue is full misses the event.
        """
        queues = list(self.connections.get(store_id, ()))
        if not queues:
            return 0
        message = json.dumps(event, default=str)
        reached = 0
        for queue in queues:
            try:
                queue.put_nowait(message)
                reached += 1
            except asyncio.QueueFull:
                logger.warning("Realtime queue full for store %s; dropping %s event", store_id, event.get("type"))
        return reached

    async def publish_order(self, store_id: str, event_type: str, order: Order) -> int:
        return await self.publish(store_id, order_event(event_type, order))

    async def generate_events(self, store_id: str):
        """Yield SSE events for one subscriber until the client goes away."""
        queue = await self.connect(store_id)
        try:
            while True:
                message = await queue.get()
                yield {"event": "update", "data": message}
        finally:
            await self.disconnect(store_id, queue)


# Global instance
realtime_service = RealtimeService()
