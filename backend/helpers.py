import json
import math
from datetime import datetime
from typing import List, Optional

from bson import ObjectId
from bson.errors import InvalidId

INVALID_ID_SENTINELS = {"", "null", "undefined", "0"}


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def is_valid_id(value) -> bool:
    """Product and order ids arrive from clients that stringify missing values."""
    if value is None:
        return False
    return str(value).strip() not in INVALID_ID_SENTINELS


def normalize_category_name(value: Optional[str]) -> str:
    if value is None:
        return ""
    condensed = " ".join(str(value).split())
    return condensed.strip()


def parse_json_list(value):
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [item for item in value]
    if isinstance(value, (bytes, bytearray)):
        try:
            value = value.decode("utf-8")
        except UnicodeDecodeError:
            value = ""
    if isinstance(value, str):
        candidate = value.strip()
        if not candidate:
            return []
        try:
            parsed = json.loads(candidate)
            if isinstance(parsed, list):
                return parsed
        except (json.JSONDecodeError, ValueError):
            pass
        if "," in candidate:
            return [
                item.strip()
                for item in candidate.split(",")
                if item and item.strip()
            ]
        return [candidate]
    return []


def normalize_text_list(value) -> Optional[List[str]]:
    # None means "not provided" and is stored as such.
    if value is None:
        return None
    normalized = []
    for item in parse_json_list(value):
        name = normalize_category_name(item)
        if name:
            normalized.append(name)
    return normalized


def normalize_object_id_value(value):
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def normalize_object_id_list(values) -> List[ObjectId]:
    normalized_ids: List[ObjectId] = []
    if not values:
        return normalized_ids
    for value in values:
        if isinstance(value, ObjectId):
            normalized_ids.append(value)
            continue
        try:
            normalized_ids.append(ObjectId(str(value)))
        except (InvalidId, TypeError):
            continue
    return normalized_ids


def safe_float(value, default=0.0):
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return default
    if math.isfinite(numeric):
        return numeric
    return default


def safe_positive_int(value, default=0):
    try:
        numeric = int(float(value))
    except (TypeError, ValueError):
        return default
    return max(default, numeric)


def parse_int(value, default: int) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default


def format_timestamp(value) -> Optional[str]:
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is not None:
        return value.isoformat()
    return f"{value.isoformat()}Z"
