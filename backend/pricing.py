import hashlib
import logging
import random
import re
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_MIN_FARE = 20.0
DEFAULT_MAX_FARE = 200.0

PINCODE_PATTERN = re.compile(r"^[0-9]{6}$")
PINCODE_FIELDS = ("to_pincode", "pincode", "postalCode", "postal_code")


def seeded_fare(
    seed: str,
    salt: str = "",
    min_fare: float = DEFAULT_MIN_FARE,
    max_fare: float = DEFAULT_MAX_FARE,
) -> float:
    """Return a stable pseudo-random fare for ``seed + salt``.

    The first four bytes of the SHA-256 digest are read as a big-endian
    unsigned integer and scaled into ``[0, 1)`` before being mapped onto
    the fare range. The same seed and salt always give the same fare.
    """
    try:
        digest = hashlib.sha256(f"{seed}{salt}".encode("utf-8")).digest()
        fraction = int.from_bytes(digest[:4], "big") / 2**32
    except (ValueError, TypeError) as exc:
        logger.warning("Seeded fare hashing unavailable, using random fare: %s", exc)
        fraction = random.random()
    fare = min_fare + fraction * (max_fare - min_fare)
    return round(fare, 2)


def estimate(items: List[Dict], salt: str = "") -> List[Dict[str, object]]:
    estimates = []
    for index, item in enumerate(items or []):
        item_id = resolve_item_id(item, index)
        estimates.append({"id": item_id, "cost": seeded_fare(item_id, salt)})
    return estimates


def resolve_item_id(item, index: int) -> str:
    if isinstance(item, dict):
        candidate = item.get("id") or item.get("productId") or item.get("sku")
    else:
        candidate = item
    candidate = str(candidate).strip() if candidate is not None else ""
    return candidate or f"item_{index}"


def extract_pincode(payload: Dict) -> Optional[str]:
    for field in PINCODE_FIELDS:
        value = payload.get(field)
        if value not in (None, ""):
            return str(value).strip()
    return None


def is_valid_pincode(value: Optional[str]) -> bool:
    # str.isdigit accepts non-ASCII digits, so match explicitly.
    return bool(value) and bool(PINCODE_PATTERN.match(value))


def collect_source_items(payload: Dict) -> List[Dict[str, object]]:
    """Build the list of items to price from an estimate request body."""
    items = payload.get("items")
    if isinstance(items, list) and items:
        return [
            {
                "id": resolve_item_id(entry, index),
                "weight": entry.get("weight") if isinstance(entry, dict) else None,
            }
            for index, entry in enumerate(items)
        ]

    parcels = payload.get("parcels")
    if isinstance(parcels, list) and parcels:
        source = []
        for index, parcel in enumerate(parcels):
            parcel = parcel if isinstance(parcel, dict) else {}
            source.append(
                {
                    "id": str(
                        parcel.get("productId") or parcel.get("sku") or f"parcel_{index}"
                    ),
                    "weight": parcel.get("actual_weight") or parcel.get("weight") or 0.5,
                }
            )
        return source

    return [
        {
            "id": str(payload.get("productId") or payload.get("sku") or "default"),
            "weight": safe_weight(payload.get("weight")),
        }
    ]


def safe_weight(value, default: float = 0.5) -> float:
    try:
        weight = float(value)
    except (TypeError, ValueError):
        return default
    return weight if weight > 0 else default


def build_fallback_rates(
    source_items: List[Dict[str, object]], salt: str, currency: str
) -> List[Dict[str, object]]:
    fares = estimate(source_items, salt)
    rates = []
    for item, fare in zip(source_items, fares):
        rates.append(
            {
                "productId": fare["id"],
                "weight": item.get("weight") or None,
                "currency": currency,
                "shipping_cost": fare["cost"],
                "label": f"Seeded fallback rate for {fare['id']}",
            }
        )
    return rates
