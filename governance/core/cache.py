"""
Stale-cache notifications.

Publishers (the action executor, the ledger) announce that a topic changed;
subscribers drop whatever they cached. Delivery happens outside the publisher's
transaction: on a running event loop it is scheduled with call_soon, otherwise
it runs inline. Subscriber failures are logged and never reach the publisher.
Callbacks must be idempotent, a topic can be announced more than once.
"""

import asyncio
import threading
from typing import Callable, Dict, List, Tuple

from util.logging import logger

PLANNING_DATA = "planning_data"
VALIDATIONS = "validations"
RULES = "rules"


class StaleNotifier:

    def __init__(self):
        self._subscribers: Dict[str, List[Tuple[str, Callable[[str], None]]]] = {}
        self._lock = threading.Lock()

    def subscribe(self, topic: str, name: str, callback: Callable[[str], None]) -> None:
        with self._lock:
            self._subscribers.setdefault(topic, []).append((name, callback))

    def notify(self, topic: str) -> int:
        """Announce that `topic` is stale. Returns the number of deliveries scheduled."""
        with self._lock:
            subscribers = list(self._subscribers.get(topic, []))

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        for name, callback in subscribers:
            if loop is not None:
                loop.call_soon(self._deliver, topic, name, callback)
            else:
                self._deliver(topic, name, callback)
        return len(subscribers)

    @staticmethod
    def _deliver(topic: str, name: str, callback: Callable[[str], None]) -> None:
        try:
            callback(topic)
            logger.log_cache_invalidation(topic, name)
        except Exception as e:
            logger.log_cache_invalidation(topic, name, status="failed", error=str(e))
