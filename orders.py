"""Orders are carts whose status reached ``ordered``; no separate collection."""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from pymongo import DESCENDING

import cart as cart_engine
from currency import RateCache, convert_cart, get_rate_cache
from database import db
from schemas import OrderStatus
from utils import now_utc, oid, paginate, serialize_doc

router = APIRouter(prefix="/order", tags=["order"])

FINAL_STATUSES = ("delivered", "cancelled", "returned")


class UpdateOrderStatusBody(BaseModel):
    orderStatus: OrderStatus
    trackingNumber: Optional[str] = None
    estimatedDelivery: Optional[datetime] = None
    notes: Optional[str] = None


class CancelOrderBody(BaseModel):
    reason: Optional[str] = None


def order_view(order: dict, currency: Optional[str], cache: RateCache) -> dict:
    return serialize_doc(convert_cart(cart_engine.populate(order), currency, cache))


def append_note(order: dict, note: str):
    if order.get("notes"):
        order["notes"] += f"\n{now_utc().isoformat()}: {note}"
    else:
        order["notes"] = note


def get_order(order_id: str) -> dict:
    order = db["cart"].find_one({"_id": oid(order_id), "status": "ordered"})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def status_view(order: dict) -> dict:
    keys = ("_id", "orderNumber", "orderStatus", "trackingNumber", "estimatedDelivery",
            "notes", "paymentStatus", "updatedAt")
    return serialize_doc({k: order.get(k) for k in keys})


@router.get("/user/{phoneNumber}")
def user_orders(phoneNumber: str, page: int = 1, limit: int = 10, status: Optional[str] = None,
                currency: Optional[str] = None, cache: RateCache = Depends(get_rate_cache)):
    query = {"phoneNumber": phoneNumber, "status": "ordered"}
    if status:
        query["orderStatus"] = status
    orders, pagination = paginate(db["cart"], query, page, limit, sort=[("orderDate", DESCENDING)])
    return {
        "success": True,
        "data": [order_view(o, currency, cache) for o in orders],
        "pagination": pagination,
    }


@router.get("/number/{orderNumber}")
def order_by_number(orderNumber: str, currency: Optional[str] = None, cache: RateCache = Depends(get_rate_cache)):
    order = db["cart"].find_one({"orderNumber": orderNumber, "status": "ordered"})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return {"success": True, "data": order_view(order, currency, cache)}


@router.get("/{orderId}")
def order_by_id(orderId: str, currency: Optional[str] = None, cache: RateCache = Depends(get_rate_cache)):
    return {"success": True, "data": order_view(get_order(orderId), currency, cache)}


@router.put("/{orderId}/status")
def update_order_status(orderId: str, body: UpdateOrderStatusBody):
    order = get_order(orderId)
    if body.orderStatus == "cancelled" and order.get("orderStatus") in FINAL_STATUSES:
        raise HTTPException(status_code=400, detail=f"Order cannot be cancelled as it is already {order['orderStatus']}")

    order["orderStatus"] = body.orderStatus
    if body.trackingNumber is not None:
        order["trackingNumber"] = body.trackingNumber
    if body.estimatedDelivery is not None:
        order["estimatedDelivery"] = body.estimatedDelivery
    if body.notes is not None:
        append_note(order, body.notes)
    if body.orderStatus == "cancelled" and order.get("paymentStatus") == "paid":
        order["paymentStatus"] = "refunded"

    cart_engine.save_cart(order)
    return {"success": True, "message": "Order status updated successfully", "data": status_view(order)}


@router.put("/{orderId}/cancel")
def cancel_order(orderId: str, body: Optional[CancelOrderBody] = None):
    order = get_order(orderId)
    if order.get("orderStatus") in FINAL_STATUSES:
        raise HTTPException(status_code=400, detail=f"Order cannot be cancelled as it is already {order['orderStatus']}")

    order["orderStatus"] = "cancelled"
    if order.get("paymentStatus") == "paid":
        order["paymentStatus"] = "refunded"
    reason = body.reason if body and body.reason else "No reason provided"
    append_note(order, f"Cancelled: {reason}")

    cart_engine.save_cart(order)
    return {"success": True, "message": "Order cancelled successfully", "data": status_view(order)}
