import logging
import os
from typing import Dict, List, Optional

import requests
from dotenv import load_dotenv

from storefront.errors import ApiError
from storefront.orders import DELIVERY_WINDOW, OrderRecord, parse_iso, to_iso, utc_now
from storefront.reviews import ReviewRecord

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:5000"


class ApiClient:
    """Thin JSON client for the CraftCircle API."""

    def __init__(self, base_url: Optional[str] = None, session: Optional[requests.Session] = None):
        self.base_url = (
            base_url or os.getenv("CRAFTCIRCLE_API_URL") or DEFAULT_API_URL
        ).rstrip("/")
        self.http = session or requests.Session()

    def request(self, method: str, path: str, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            response = self.http.request(method, url, **kwargs)
        except requests.RequestException as exc:
            raise ApiError(f"{method} {path} failed: {exc}") from exc

        if not response.ok:
            message = f"{method} {path} failed: {response.status_code}"
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("message"):
                message = f"{message} {body['message']}"
            raise ApiError(message, status=response.status_code)

        try:
            return response.json()
        except ValueError:
            return None

    def login(self, email: str, password: str) -> Dict:
        return self.request("POST", "/api/login", json={"email": email, "password": password})

    def fetch_products(self, product_ids: List[str]) -> List[Dict]:
        if not product_ids:
            return []
        data = self.request("GET", "/api/products", params={"ids": ",".join(product_ids)})
        return (data or {}).get("products") or []


class WishlistMirror:
    def __init__(self, api: ApiClient):
        self.api = api

    def fetch_remote(self, user_id: str) -> List[str]:
        try:
            rows = self.api.request("GET", "/api/wishlist", params={"user_id": user_id})
        except ApiError as exc:
            logger.error("Failed to fetch remote wishlist: %s", exc)
            return []
        return [str(row.get("product_id")) for row in rows or [] if isinstance(row, dict)]

    def add_remote(self, user_id: str, product_id: str) -> bool:
        try:
            row = self.api.request(
                "POST", "/api/wishlist", json={"user_id": user_id, "product_id": product_id}
            )
        except ApiError as exc:
            logger.error("Failed to add remote wishlist: %s", exc)
            return False
        return bool(row)

    def remove_remote(self, user_id: str, product_id: str) -> bool:
        try:
            self.api.request(
                "DELETE", "/api/wishlist", json={"user_id": user_id, "product_id": product_id}
            )
        except ApiError as exc:
            logger.error("Failed to remove remote wishlist: %s", exc)
            return False
        return True

    def toggle_remote(self, user_id: str, product_id: str) -> bool:
        """Flip remote membership and return whether the product is now present.

        This reads then writes, so two concurrent toggles can interleave.
        """
        exists = str(product_id) in self.fetch_remote(user_id)
        if exists:
            removed = self.remove_remote(user_id, product_id)
            return exists if not removed else False
        return self.add_remote(user_id, product_id)


class OrdersMirror:
    def __init__(self, api: ApiClient):
        self.api = api

    def _record_from_row(self, row: Dict, product: Optional[Dict] = None) -> OrderRecord:
        created = parse_iso(row.get("created_at")) or utc_now()
        product = product or {}
        return OrderRecord(
            id=str(row.get("id")),
            product_id=str(row.get("product_id")),
            title=product.get("title"),
            price=product.get("price"),
            image=product.get("image"),
            created_at=to_iso(created),
            delivery_at=to_iso(created + DELIVERY_WINDOW),
        )

    def fetch_remote(self, user_id: str) -> List[OrderRecord]:
        try:
            rows = self.api.request("GET", "/api/orders", params={"user_id": user_id})
        except ApiError as exc:
            logger.error("Failed to fetch remote orders: %s", exc)
            return []
        rows = [row for row in rows or [] if isinstance(row, dict)]

        product_ids = list(
            dict.fromkeys(str(row.get("product_id")) for row in rows if row.get("product_id"))
        )
        products_by_id: Dict[str, Dict] = {}
        if product_ids:
            try:
                for product in self.api.fetch_products(product_ids):
                    images = product.get("images") or []
                    products_by_id[str(product.get("id"))] = {
                        "title": product.get("title"),
                        "price": product.get("price"),
                        "image": images[0] if images else None,
                    }
            except ApiError as exc:
                logger.warning("Failed to fetch product metadata for orders: %s", exc)

        return [
            self._record_from_row(row, products_by_id.get(str(row.get("product_id"))))
            for row in rows
        ]

    def add_remote(self, user_id: str, product: Dict, quantity: int = 1) -> Optional[OrderRecord]:
        try:
            row = self.api.request(
                "POST",
                "/api/orders",
                json={
                    "user_id": user_id,
                    "product_id": product.get("id"),
                    "quantity": quantity,
                    "status": "completed",
                },
            )
        except ApiError as exc:
            logger.error("Failed to add remote order: %s", exc)
            return None
        if not row:
            return None
        return self._record_from_row(row, product)

    def remove_remote(
        self, user_id: str, order_id: Optional[str] = None, product_id: Optional[str] = None
    ) -> int:
        body = {"user_id": user_id}
        if order_id:
            body["order_id"] = order_id
        if product_id:
            body["product_id"] = product_id
        try:
            result = self.api.request("DELETE", "/api/orders", json=body)
        except ApiError as exc:
            logger.error("Failed to remove remote order: %s", exc)
            return 0
        return int((result or {}).get("deleted") or 0)


class ReviewsMirror:
    def __init__(self, api: ApiClient):
        self.api = api

    def fetch_remote(self) -> List[ReviewRecord]:
        try:
            rows = self.api.request("GET", "/api/reviews")
        except ApiError as exc:
            logger.error("Failed to fetch remote reviews: %s", exc)
            return []
        reviews = []
        for row in rows or []:
            if not isinstance(row, dict):
                continue
            reviews.append(
                ReviewRecord(
                    id=str(row.get("id")),
                    order_id=str(row.get("order_id") or ""),
                    product_id=str(row.get("product_id") or ""),
                    rating=int(row.get("rating") or 0),
                    text=row.get("comment") or "",
                    reviewer_name=row.get("reviewer_name") or "",
                    attachments=[str(item) for item in row.get("attachments") or []],
                    created_at=str(row.get("created_at") or ""),
                )
            )
        return reviews

    def submit_remote(self, token: str, review: ReviewRecord) -> Optional[Dict]:
        try:
            return self.api.request(
                "POST",
                "/api/reviews",
                json={
                    "productId": review.product_id,
                    "orderId": review.order_id,
                    "rating": review.rating,
                    "text": review.text,
                    "attachments": review.attachments,
                },
                headers={"Authorization": f"Bearer {token}"},
            )
        except ApiError as exc:
            logger.error("Failed to submit remote review: %s", exc)
            return None
