import json
import logging
from typing import Iterable, List, Optional

from storefront.events import CART_CHANGED, WISHLIST_CHANGED, EventBus

logger = logging.getLogger(__name__)

CART_KEY = "cart"
WISHLIST_KEY = "wishlist_v1"

INVALID_ID_SENTINELS = {"", "null", "undefined", "0"}


def is_valid_id(value) -> bool:
    if value is None:
        return False
    return str(value).strip() not in INVALID_ID_SENTINELS


def normalize_ids(values: Iterable) -> List[str]:
    normalized: List[str] = []
    seen = set()
    for value in values or []:
        if not is_valid_id(value):
            continue
        product_id = str(value).strip()
        if product_id in seen:
            continue
        seen.add(product_id)
        normalized.append(product_id)
    return normalized


def read_json_list(storage, key: str) -> list:
    """Stored JSON arrays; anything else reads as empty."""
    raw = storage.get_item(key)
    if not raw:
        return []
    try:
        values = json.loads(raw)
    except ValueError as exc:
        logger.warning("Failed to parse %s from storage: %s", key, exc)
        return []
    if not isinstance(values, list):
        logger.warning("Ignoring %s in storage: expected a list", key)
        return []
    return values


class IdCollection:
    key = ""
    topic = ""

    def __init__(self, storage, bus: Optional[EventBus] = None):
        self.storage = storage
        self.bus = bus

    def get(self) -> List[str]:
        return [
            str(value).strip()
            for value in read_json_list(self.storage, self.key)
            if is_valid_id(value)
        ]

    def set(self, ids: Iterable) -> List[str]:
        normalized = normalize_ids(ids)
        try:
            self.storage.set_item(self.key, json.dumps(normalized))
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to store %s: %s", self.key, exc)
            return normalized
        if self.bus is not None:
            self.bus.notify_change(self.topic, self.key, normalized)
        return normalized

    def add(self, product_id) -> None:
        if not is_valid_id(product_id):
            return
        items = self.get()
        items.append(str(product_id).strip())
        self.set(items)

    def remove(self, product_id) -> None:
        if not is_valid_id(product_id):
            return
        target = str(product_id).strip()
        self.set([value for value in self.get() if value != target])

    def clear(self) -> None:
        self.set([])

    def is_present(self, product_id) -> bool:
        if not is_valid_id(product_id):
            return False
        return str(product_id).strip() in self.get()


class CartStore(IdCollection):
    key = CART_KEY
    topic = CART_CHANGED


class WishlistStore(IdCollection):
    key = WISHLIST_KEY
    topic = WISHLIST_CHANGED

    def add(self, product_id) -> None:
        if not is_valid_id(product_id):
            return
        target = str(product_id).strip()
        items = self.get()
        if target not in items:
            self.set([target] + items)

    def toggle(self, product_id) -> bool:
        """Flip membership locally and return whether the id is now present."""
        if not is_valid_id(product_id):
            return False
        if self.is_present(product_id):
            self.remove(product_id)
            return False
        self.add(product_id)
        return True
