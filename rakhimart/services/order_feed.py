"""
In-process fan-out of committed order changes.

Subscribers receive read-only snapshots; there is no write path back into
the order from here.
"""

import logging
import queue
import threading
from typing import Optional

logger = logging.getLogger(__name__)


def order_snapshot(order) -> dict:
    return {
        "id": order.id,
        "order_number": order.order_number,
        "user_id": order.user_id,
        "status": order.status,
        "payment_status": order.payment_status,
        "tracking_number": order.tracking_number,
        "delivery_partner": order.delivery_partner,
        "estimated_delivery": order.estimated_delivery,
        "updated_at": order.updated_at.isoformat() if order.updated_at else None,
    }


class Subscription:
    def __init__(self, feed: "OrderFeed", user_id: Optional[str], maxsize: int):
        self.feed = feed
        self.user_id = user_id
        self.queue = queue.Queue(maxsize=maxsize)

    def wants(self, snapshot: dict) -> bool:
        return self.user_id is None or snapshot.get("user_id") == self.user_id

    def get(self, timeout: Optional[float] = None) -> Optional[dict]:
        try:
            return self.queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self):
        self.feed.unsubscribe(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class OrderFeed:
    def __init__(self, maxsize: int = 100):
        self.maxsize = maxsize
        self._subscribers = []
        self._lock = threading.Lock()

    def subscribe(self, user_id: Optional[str] = None) -> Subscription:
        """``user_id=None`` receives every order (admin view)."""
        subscription = Subscription(self, user_id, self.maxsize)
        with self._lock:
            self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription):
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    def publish(self, order) -> int:
        snapshot = order_snapshot(order)
        delivered = 0

        with self._lock:
            subscribers = list(self._subscribers)

        for subscription in subscribers:
            if not subscription.wants(snapshot):
                continue
            try:
                subscription.queue.put_nowait(snapshot)
                delivered += 1
            except queue.Full:
                # slow consumer; it re-reads the order on reconnect
                logger.warning(f"Dropping update for {snapshot['order_number']}: subscriber queue full")

        return delivered


order_feed = OrderFeed()
