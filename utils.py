import math
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional, Tuple

from bson.objectid import ObjectId
from fastapi import HTTPException


def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid id")


def is_oid(value: Any) -> bool:
    return isinstance(value, str) and ObjectId.is_valid(value)


def serialize_doc(doc):
    """Make a Mongo document JSON friendly: ObjectIds become strings and
    datetimes ISO-8601, recursively through nested dicts and lists."""
    if isinstance(doc, dict):
        return {k: serialize_doc(v) for k, v in doc.items()}
    if isinstance(doc, list):
        return [serialize_doc(v) for v in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        return as_utc(doc).isoformat()
    return doc


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes that are already UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def round_half_up(value: float, places: int = 0) -> float:
    exp = Decimal(1).scaleb(-places)
    rounded = Decimal(str(value)).quantize(exp, rounding=ROUND_HALF_UP)
    return int(rounded) if places == 0 else float(rounded)


def paginate(collection, query: Dict[str, Any], page: int, limit: int, sort: Optional[List[Tuple[str, int]]] = None,
             projection: Optional[Dict[str, int]] = None) -> Tuple[List[dict], Dict[str, Any]]:
    page = max(page, 1)
    limit = max(limit, 1)
    total = collection.count_documents(query)
    cursor = collection.find(query, projection)
    if sort:
        cursor = cursor.sort(sort)
    items = list(cursor.skip((page - 1) * limit).limit(limit))
    total_pages = math.ceil(total / limit)
    pagination = {
        "currentPage": page,
        "totalPages": total_pages,
        "total": total,
        "limit": limit,
        "hasNextPage": page < total_pages,
        "hasPrevPage": page > 1,
        "nextPage": page + 1 if page < total_pages else None,
        "prevPage": page - 1 if page > 1 else None,
    }
    return items, pagination
