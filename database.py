"""
MongoDB access shared by every router.

Collections are addressed by name (``db["cart"]``); ``create_document`` and
``get_documents`` cover the plain insert/list cases, everything else talks to
pymongo directly.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

import config

logger = logging.getLogger(__name__)

client = MongoClient(config.DATABASE_URL)
db = client[config.DATABASE_NAME]


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = datetime.now(timezone.utc)
    data_dict.setdefault("createdAt", now)
    data_dict["updatedAt"] = now
    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None) -> List[dict]:
    cursor = db[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes():
    try:
        # one active cart per phone number
        db["cart"].create_index(
            [("phoneNumber", ASCENDING)],
            unique=True,
            partialFilterExpression={"status": "active"},
            name="uniq_active_cart",
        )
        db["cart"].create_index("orderNumber", unique=True, sparse=True)
        db["cart"].create_index("razorpayOrderId", sparse=True)
        db["coupon"].create_index("code", unique=True)
        db["coupon"].create_index([("code", ASCENDING), ("isActive", ASCENDING)])
        db["otp"].create_index("expiresAt", expireAfterSeconds=0)
        db["otp"].create_index([("isdCode", ASCENDING), ("phoneNumber", ASCENDING), ("createdAt", DESCENDING)])
        db["profile"].create_index([("isdCode", ASCENDING), ("phoneNumber", ASCENDING)], unique=True)
        db["wishlist"].create_index("phoneNumber", unique=True)
        db["bike_brand"].create_index("name", unique=True)
    except Exception as exc:
        logger.warning("Unable to ensure indexes: %s", exc)
