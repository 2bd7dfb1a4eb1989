import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from storefront.collections import read_json_list
from storefront.events import REVIEWS_CHANGED, EventBus
from storefront.orders import epoch_millis, to_iso, utc_now

logger = logging.getLogger(__name__)

REVIEWS_KEY = "reviews_v1"
MIN_RATING = 1
MAX_RATING = 5


def is_present_value(value) -> bool:
    if value is None:
        return False
    text = str(value).strip()
    return bool(text) and text not in ("null", "undefined")


@dataclass
class ReviewRecord:
    id: str
    order_id: str
    product_id: str
    rating: int
    created_at: str
    text: str = ""
    reviewer_name: str = ""
    attachments: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "orderId": self.order_id,
            "productId": self.product_id,
            "rating": self.rating,
            "text": self.text,
            "reviewerName": self.reviewer_name,
            "attachments": list(self.attachments),
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ReviewRecord":
        try:
            rating = int(float(data.get("rating") or 0))
        except (TypeError, ValueError, OverflowError):
            rating = 0
        attachments = data.get("attachments")
        return cls(
            id=str(data.get("id")),
            order_id=str(data.get("orderId")),
            product_id=str(data.get("productId")),
            rating=rating,
            text=str(data.get("text") or ""),
            reviewer_name=str(data.get("reviewerName") or ""),
            attachments=[str(item) for item in attachments]
            if isinstance(attachments, list)
            else [],
            created_at=str(data.get("createdAt")),
        )


class ReviewStore:
    key = REVIEWS_KEY

    def __init__(
        self,
        storage,
        bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.bus = bus
        self.clock = clock

    def get_reviews(self) -> List[ReviewRecord]:
        """Return stored reviews, dropping (and forgetting) anonymous ones."""
        entries = [
            entry for entry in read_json_list(self.storage, self.key) if isinstance(entry, dict)
        ]
        reviews = [ReviewRecord.from_dict(entry) for entry in entries]
        cleaned = [review for review in reviews if review.reviewer_name.strip()]
        if len(cleaned) != len(entries):
            try:
                self.storage.set_item(
                    self.key, json.dumps([review.to_dict() for review in cleaned])
                )
            except (OSError, TypeError, ValueError) as exc:
                logger.warning("Failed to write cleaned reviews: %s", exc)
        return cleaned

    def set_reviews(self, reviews: List[ReviewRecord]) -> None:
        payload = [review.to_dict() for review in reviews]
        try:
            self.storage.set_item(self.key, json.dumps(payload))
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to store reviews: %s", exc)
            return
        if self.bus is not None:
            self.bus.notify_change(REVIEWS_CHANGED, self.key, payload)

    def add_review(
        self,
        order_id,
        product_id,
        rating,
        text: str = "",
        attachments: Optional[List[str]] = None,
        reviewer_name: str = "",
    ) -> Optional[ReviewRecord]:
        if not is_present_value(order_id) or not is_present_value(product_id):
            return None
        try:
            rating = int(rating)
        except (TypeError, ValueError):
            return None
        if rating < MIN_RATING or rating > MAX_RATING:
            return None

        now = self.clock()
        review = ReviewRecord(
            id=f"{order_id}-{epoch_millis(now)}",
            order_id=str(order_id),
            product_id=str(product_id),
            rating=rating,
            text=text or "",
            reviewer_name=reviewer_name or "",
            attachments=[str(item) for item in attachments or []],
            created_at=to_iso(now),
        )
        self.set_reviews([review] + self.get_reviews())
        return review

    def get_reviews_for_product(self, product_id) -> List[ReviewRecord]:
        if not is_present_value(product_id):
            return []
        target = str(product_id)
        return [review for review in self.get_reviews() if review.product_id == target]

    def get_review_for_order(self, order_id) -> Optional[ReviewRecord]:
        if not is_present_value(order_id):
            return None
        target = str(order_id)
        for review in self.get_reviews():
            if review.order_id == target:
                return review
        return None

    def remove_review(self, review_id) -> None:
        if not is_present_value(review_id):
            return
        target = str(review_id)
        self.set_reviews([review for review in self.get_reviews() if review.id != target])
