import logging
from datetime import datetime
from typing import List, Optional, Tuple

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from pymongo import DESCENDING, ReturnDocument

from database import create_document, db
from schemas import Coupon as CouponSchema, CouponType
from utils import as_utc, now_utc, oid, paginate, round_half_up, serialize_doc

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/coupon", tags=["coupon"])


# ----------------------- Engine -----------------------
def find_user_usage(coupon: dict, phone_number: str) -> Optional[dict]:
    for usage in coupon.get("usedBy") or []:
        if usage.get("phoneNumber") == phone_number:
            return usage
    return None


def validate_eligibility(coupon: dict, phone_number: Optional[str], subtotal: float,
                         now: Optional[datetime] = None) -> Tuple[bool, Optional[str]]:
    """Return ``(is_valid, reason)``; the first failing rule wins."""
    now = now or now_utc()
    if not coupon.get("isActive", True):
        return False, "Coupon is not active"

    expires_at = coupon.get("expiresAt")
    if expires_at and now > as_utc(expires_at):
        return False, "Coupon has expired"

    min_amount = coupon.get("minCartAmount") or 0
    if subtotal < min_amount:
        return False, f"Minimum cart amount of ₹{min_amount:g} required"

    limit = coupon.get("usageLimit")
    if limit:
        if phone_number:
            usage = find_user_usage(coupon, phone_number)
            if usage and usage.get("usageCount", 0) >= limit:
                return False, "Coupon usage limit exceeded for this user"
        if coupon.get("usedCount", 0) >= limit:
            return False, "Coupon has reached maximum usage"

    return True, None


def calculate_discount(coupon: dict, subtotal: float) -> int:
    if coupon.get("type") == "Percentage":
        discount = subtotal * coupon["discount"] / 100
        max_discount = coupon.get("maxDiscount")
        if max_discount is not None and discount > max_discount:
            discount = max_discount
    else:
        # Flat, Special, Festival and First Order all take a fixed amount off
        discount = coupon["discount"]
    return round_half_up(discount)


def get_coupon_by_code(code: str) -> Optional[dict]:
    return db["coupon"].find_one({"code": code.strip().upper()})


def record_usage(coupon_id, phone_number: str) -> bool:
    """Count one use of a coupon at order placement.

    The global counter is bumped with a conditional update so two orders
    racing for the last use cannot both get it. Returns False when the coupon
    is exhausted (or gone)."""
    coupon = db["coupon"].find_one({"_id": coupon_id})
    if not coupon:
        return False

    limit = coupon.get("usageLimit")
    query = {"_id": coupon_id}
    if limit:
        query["usedCount"] = {"$lt": limit}
    now = now_utc()
    res = db["coupon"].update_one(query, {"$inc": {"usedCount": 1}, "$set": {"updatedAt": now}})
    if res.matched_count == 0:
        logger.info("Coupon %s has no uses left", coupon.get("code"))
        return False

    if limit:
        user_query = {"_id": coupon_id, "usedBy": {"$elemMatch": {"phoneNumber": phone_number, "usageCount": {"$lt": limit}}}}
    else:
        user_query = {"_id": coupon_id, "usedBy.phoneNumber": phone_number}
    res = db["coupon"].update_one(
        user_query,
        {"$inc": {"usedBy.$.usageCount": 1}, "$set": {"usedBy.$.usedAt": now}},
    )
    if res.matched_count:
        return True

    if find_user_usage(db["coupon"].find_one({"_id": coupon_id}) or {}, phone_number):
        # the user already hit the per-user limit
        release_usage(coupon_id, None)
        return False

    db["coupon"].update_one(
        {"_id": coupon_id},
        {"$push": {"usedBy": {"phoneNumber": phone_number, "usageCount": 1, "usedAt": now}}},
    )
    return True


def release_usage(coupon_id, phone_number: Optional[str]):
    db["coupon"].update_one({"_id": coupon_id, "usedCount": {"$gt": 0}}, {"$inc": {"usedCount": -1}})
    if phone_number:
        db["coupon"].update_one(
            {"_id": coupon_id, "usedBy": {"$elemMatch": {"phoneNumber": phone_number, "usageCount": {"$gt": 0}}}},
            {"$inc": {"usedBy.$.usageCount": -1}},
        )


# ----------------------- Models -----------------------
class CouponUpdateBody(BaseModel):
    id: str
    code: Optional[str] = None
    type: Optional[CouponType] = None
    discount: Optional[float] = None
    maxDiscount: Optional[float] = None
    minCartAmount: Optional[float] = None
    usageLimit: Optional[int] = None
    isActive: Optional[bool] = None
    expiresAt: Optional[datetime] = None
    description: Optional[str] = None


class CouponIdBody(BaseModel):
    id: str


class ValidateCouponBody(BaseModel):
    couponCode: str
    phoneNumber: Optional[str] = None
    cartAmount: Optional[float] = None


def public_view(coupon: dict) -> dict:
    return {
        "code": coupon["code"],
        "type": coupon["type"],
        "discount": coupon["discount"],
        "maxDiscount": coupon.get("maxDiscount"),
        "minCartAmount": coupon.get("minCartAmount", 0),
        "description": coupon.get("description"),
    }


# ----------------------- Admin -----------------------
@router.get("/")
def list_coupons(page: int = 1, limit: int = 10, type: Optional[str] = None,
                 isActive: Optional[bool] = None, search: Optional[str] = None):
    query = {}
    if type:
        query["type"] = type
    if isActive is not None:
        query["isActive"] = isActive
    if search:
        query["$or"] = [
            {"code": {"$regex": search, "$options": "i"}},
            {"description": {"$regex": search, "$options": "i"}},
        ]
    coupons, pagination = paginate(db["coupon"], query, page, limit, sort=[("createdAt", DESCENDING)])
    return {"success": True, "data": serialize_doc(coupons), "pagination": pagination}


@router.post("/", status_code=201)
def create_coupon(body: CouponSchema):
    if body.type == "Percentage" and body.discount > 50 and not body.maxDiscount:
        raise HTTPException(status_code=400, detail="High percentage coupons should have a maxDiscount limit")

    code = body.code.strip().upper()
    if db["coupon"].find_one({"code": code}):
        raise HTTPException(status_code=400, detail="Coupon code already exists")

    data = body.model_dump()
    data.update({"code": code, "usedCount": 0, "usedBy": []})
    coupon_id = create_document("coupon", data)
    coupon = db["coupon"].find_one({"_id": oid(coupon_id)})
    return {"success": True, "message": "Coupon created successfully", "data": serialize_doc(coupon)}


@router.post("/update")
def update_coupon(body: CouponUpdateBody):
    coupon_id = oid(body.id)
    update = body.model_dump(exclude_none=True, exclude={"id"})
    if "code" in update:
        update["code"] = update["code"].strip().upper()
        if db["coupon"].find_one({"code": update["code"], "_id": {"$ne": coupon_id}}):
            raise HTTPException(status_code=400, detail="Coupon code already exists")
    update["updatedAt"] = now_utc()

    coupon = db["coupon"].find_one_and_update(
        {"_id": coupon_id}, {"$set": update}, return_document=ReturnDocument.AFTER
    )
    if not coupon:
        raise HTTPException(status_code=404, detail="Coupon not found")
    return {"success": True, "message": "Coupon updated successfully", "data": serialize_doc(coupon)}


@router.post("/toggle-status")
def toggle_coupon_status(body: CouponIdBody):
    coupon_id = oid(body.id)
    coupon = db["coupon"].find_one({"_id": coupon_id})
    if not coupon:
        raise HTTPException(status_code=404, detail="Coupon not found")

    is_active = not coupon.get("isActive", True)
    db["coupon"].update_one({"_id": coupon_id}, {"$set": {"isActive": is_active, "updatedAt": now_utc()}})
    coupon["isActive"] = is_active
    state = "activated" if is_active else "deactivated"
    return {"success": True, "message": f"Coupon {state} successfully", "data": serialize_doc(coupon)}


@router.post("/delete")
def delete_coupon(body: CouponIdBody):
    coupon_id = oid(body.id)
    coupon = db["coupon"].find_one({"_id": coupon_id})
    if not coupon:
        raise HTTPException(status_code=404, detail="Coupon not found")
    if coupon.get("usedCount", 0) > 0:
        raise HTTPException(status_code=400, detail="Cannot delete coupon that has been used")
    db["coupon"].delete_one({"_id": coupon_id})
    return {"success": True, "message": "Coupon deleted successfully"}


# ----------------------- Public -----------------------
@router.post("/validate")
def validate_coupon(body: ValidateCouponBody):
    coupon = get_coupon_by_code(body.couponCode)
    if not coupon:
        raise HTTPException(status_code=404, detail="Invalid coupon code")

    amount = body.cartAmount
    if amount is None:
        # without an amount only the amount-independent rules can be judged
        amount = coupon.get("minCartAmount") or 0
    is_valid, reason = validate_eligibility(coupon, body.phoneNumber, amount)

    errors: List[str] = [reason] if reason else []
    data = {"isValid": is_valid, "coupon": public_view(coupon), "errors": errors}
    if is_valid and body.cartAmount is not None:
        data["discountAmount"] = calculate_discount(coupon, body.cartAmount)
    return {"success": True, "data": data}
