import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from storefront.collections import is_valid_id, read_json_list
from storefront.events import ORDERS_CHANGED, EventBus

logger = logging.getLogger(__name__)

ORDERS_KEY = "orders_v1"
DELIVERY_WINDOW = timedelta(days=5)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def parse_iso(value) -> Optional[datetime]:
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def epoch_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


@dataclass
class OrderRecord:
    id: str
    product_id: str
    created_at: str
    delivery_at: str
    title: Optional[str] = None
    price: Optional[float] = None
    image: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "productId": self.product_id,
            "title": self.title,
            "price": self.price,
            "image": self.image,
            "createdAt": self.created_at,
            "deliveryAt": self.delivery_at,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "OrderRecord":
        try:
            price = float(data.get("price") or 0)
        except (TypeError, ValueError):
            price = 0.0
        return cls(
            id=str(data.get("id")),
            product_id=str(data.get("productId")),
            title=data.get("title"),
            price=price,
            image=data.get("image"),
            created_at=str(data.get("createdAt")),
            delivery_at=str(data.get("deliveryAt")),
        )


class OrderStore:
    key = ORDERS_KEY

    def __init__(
        self,
        storage,
        bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.bus = bus
        self.clock = clock

    def get_orders(self) -> List[OrderRecord]:
        return [
            OrderRecord.from_dict(entry)
            for entry in read_json_list(self.storage, self.key)
            if isinstance(entry, dict)
        ]

    def set_orders(self, orders: List[OrderRecord]) -> None:
        payload = [order.to_dict() for order in orders]
        try:
            self.storage.set_item(self.key, json.dumps(payload))
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to store orders: %s", exc)
            return
        if self.bus is not None:
            self.bus.notify_change(ORDERS_CHANGED, self.key, payload)

    def add_order(self, product: Dict) -> Optional[OrderRecord]:
        """Record a purchase of ``product`` and return the new order.

        ``product`` carries ``id`` and optionally ``title``, ``price`` and
        ``image``. Orders are kept newest first.
        """
        product_id = (product or {}).get("id")
        if not is_valid_id(product_id):
            return None
        product_id = str(product_id).strip()
        now = self.clock()
        order = OrderRecord(
            id=f"{product_id}-{epoch_millis(now)}",
            product_id=product_id,
            title=product.get("title"),
            price=product.get("price") or 0,
            image=product.get("image"),
            created_at=to_iso(now),
            delivery_at=to_iso(now + DELIVERY_WINDOW),
        )
        self.set_orders([order] + self.get_orders())
        return order

    def remove_order(self, order_id) -> None:
        if not is_valid_id(order_id):
            return
        target = str(order_id)
        self.set_orders([order for order in self.get_orders() if order.id != target])

    def clear_orders(self) -> None:
        self.set_orders([])
