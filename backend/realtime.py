"""In-process change feed.

Services publish ``(collection, doc_id)`` after each commit; live views
(websockets, SSE, a hosted real-time store) subscribe from outside the core.
"""

import logging
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    collection: str  # "accounts", "ideas" or "builds"
    doc_id: str
    account_id: str | None = None


Subscriber = Callable[[ChangeEvent], None]


class ChangeFeed:
    def __init__(self):
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def _unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)
        return _unsubscribe

    def publish(self, collection: str, doc_id: str, account_id: str | None = None) -> None:
        event = ChangeEvent(collection, doc_id, account_id)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Change subscriber failed for %s/%s", collection, doc_id)
