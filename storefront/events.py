import json
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Union

logger = logging.getLogger(__name__)

CART_CHANGED = "cart-changed"
WISHLIST_CHANGED = "wishlist-changed"
ORDERS_CHANGED = "orders-changed"
REVIEWS_CHANGED = "reviews-changed"
SESSION_CHANGED = "session-changed"

TOPICS = (
    CART_CHANGED,
    WISHLIST_CHANGED,
    ORDERS_CHANGED,
    REVIEWS_CHANGED,
    SESSION_CHANGED,
)


@dataclass(frozen=True)
class StorageEvent:
    """A store was written; ``new_value`` is the serialized value stored."""

    topic: str
    key: str
    new_value: str


@dataclass(frozen=True)
class UpdateEvent:
    """Published when a storage event could not be built for a change."""

    topic: str
    detail: object


Event = Union[StorageEvent, UpdateEvent]
Listener = Callable[[Event], None]


class EventBus:
    """Publish/subscribe hub for store change notifications.

    Listeners should treat any event as a signal to re-read the store they
    care about rather than trusting the payload.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {topic: [] for topic in TOPICS}

    def subscribe(self, topic: str, listener: Listener) -> Callable[[], None]:
        if topic not in self._listeners:
            raise ValueError(f"Unknown topic: {topic}")
        self._listeners[topic].append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners[topic].remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def publish(self, topic: str, event: Event) -> None:
        for listener in list(self._listeners.get(topic, ())):
            try:
                listener(event)
            except Exception:
                logger.exception("Listener for %s failed", topic)

    def notify_change(self, topic: str, key: str, payload) -> None:
        try:
            event: Event = StorageEvent(topic=topic, key=key, new_value=json.dumps(payload))
        except (TypeError, ValueError) as exc:
            logger.warning("Could not build storage event for %s: %s", key, exc)
            event = UpdateEvent(topic=topic, detail=payload)
        self.publish(topic, event)
