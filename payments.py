"""
Razorpay checkout bridge.

Orders are always settled in INR paise whatever currency the client displays.
The callback and the webhook are both authenticated with an HMAC-SHA256 over
the payload using the key secret.
"""
import hashlib
import hmac
import json
import logging
from typing import Optional

import requests
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

import cart as cart_engine
import config
from database import db
from utils import oid, round_half_up, serialize_doc

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payment", tags=["payment"])

SETTLEMENT_CURRENCY = "INR"


class GatewayError(Exception):
    pass


class RazorpayClient:
    def __init__(self, key_id: str, key_secret: str, base_url: str):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url

    def create_order(self, amount: int, receipt: str, notes: dict) -> dict:
        try:
            response = requests.post(
                f"{self.base_url}/orders",
                auth=(self.key_id, self.key_secret),
                json={
                    "amount": amount,
                    "currency": SETTLEMENT_CURRENCY,
                    "receipt": receipt,
                    "payment_capture": 1,
                    "notes": notes,
                },
                timeout=15,
            )
        except requests.RequestException as exc:
            raise GatewayError(str(exc))
        if response.status_code >= 400:
            logger.error("Razorpay order creation failed: %s", response.text)
            raise GatewayError(response.text)
        return response.json()


def get_gateway() -> RazorpayClient:
    return RazorpayClient(config.RAZORPAY_KEY_ID, config.RAZORPAY_KEY_SECRET, config.RAZORPAY_API_URL)


def sign(message: bytes, secret: Optional[str] = None) -> str:
    secret = config.RAZORPAY_KEY_SECRET if secret is None else secret
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def signature_matches(message: bytes, signature: Optional[str]) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(sign(message), signature)


def to_minor_units(amount: float) -> int:
    return round_half_up(amount * 100)


# ----------------------- Models -----------------------
class CreateOrderBody(BaseModel):
    phoneNumber: str


class VerifyPaymentBody(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str
    cartId: str


# ----------------------- Routes -----------------------
@router.post("/create-order")
def create_order(body: CreateOrderBody, gateway: RazorpayClient = Depends(get_gateway)):
    cart = (
        db["cart"].find_one({"phoneNumber": body.phoneNumber, "status": "checkout"})
        or cart_engine.get_active_cart(body.phoneNumber)
    )
    if not cart:
        raise HTTPException(status_code=404, detail="No active cart found")
    if not cart.get("items"):
        raise HTTPException(status_code=400, detail="Cart is empty")
    if not cart.get("shippingAddress") or not cart.get("billingAddress"):
        raise HTTPException(status_code=400, detail="Shipping and billing addresses are required")

    cart_engine.recalculate(cart)
    amount = to_minor_units(cart["totalAmount"])
    try:
        order = gateway.create_order(
            amount,
            receipt=f"receipt_{cart['_id']}",
            notes={"cartId": str(cart["_id"]), "phoneNumber": body.phoneNumber},
        )
    except GatewayError as exc:
        logger.error("Error creating Razorpay order for cart %s: %s", cart["_id"], exc)
        raise HTTPException(status_code=500, detail="Failed to create payment order")

    cart["razorpayOrderId"] = order["id"]
    cart["paymentStatus"] = "pending"
    if not cart.get("paymentMethod") or cart["paymentMethod"] == "cod":
        cart["paymentMethod"] = "online"
    cart_engine.save_cart(cart)

    return {
        "success": True,
        "data": {
            "orderId": order["id"],
            "amount": order.get("amount", amount),
            "currency": order.get("currency", SETTLEMENT_CURRENCY),
            "cartId": str(cart["_id"]),
            "keyId": config.RAZORPAY_KEY_ID,
            "name": config.MERCHANT_NAME,
        },
    }


@router.post("/verify")
def verify_payment(body: VerifyPaymentBody):
    message = f"{body.razorpay_order_id}|{body.razorpay_payment_id}".encode()
    if not signature_matches(message, body.razorpay_signature):
        raise HTTPException(status_code=400, detail="Payment verification failed")

    cart = db["cart"].find_one({"_id": oid(body.cartId)})
    if not cart:
        raise HTTPException(status_code=404, detail="Cart not found")
    if not cart.get("razorpayOrderId") or cart["razorpayOrderId"] != body.razorpay_order_id:
        raise HTTPException(status_code=400, detail="Payment does not belong to this cart")

    order = cart_engine.mark_paid(cart, body.razorpay_payment_id, body.razorpay_signature)
    return {
        "success": True,
        "message": "Payment verified successfully",
        "data": serialize_doc({
            "orderId": order["_id"],
            "orderNumber": order["orderNumber"],
            "paymentId": body.razorpay_payment_id,
            "orderStatus": order["orderStatus"],
            "orderDate": order["orderDate"],
        }),
    }


def handle_payment_captured(entity: dict):
    cart = db["cart"].find_one({"razorpayOrderId": entity.get("order_id")})
    if not cart:
        logger.warning("Captured payment for unknown order %s", entity.get("order_id"))
        return
    order = cart_engine.mark_paid(cart, entity.get("id"))
    logger.info("Payment captured for order %s", order["orderNumber"])


def handle_payment_failed(entity: dict):
    cart = db["cart"].find_one({"razorpayOrderId": entity.get("order_id")})
    if not cart:
        logger.warning("Failed payment for unknown order %s", entity.get("order_id"))
        return
    cart_engine.mark_failed(cart)
    logger.info("Payment failed for cart %s", cart["_id"])


WEBHOOK_HANDLERS = {
    "payment.captured": handle_payment_captured,
    "payment.failed": handle_payment_failed,
}


@router.post("/webhook")
async def handle_webhook(request: Request):
    raw = await request.body()
    if not signature_matches(raw, request.headers.get("x-razorpay-signature")):
        raise HTTPException(status_code=400, detail="Invalid webhook signature")

    try:
        payload = json.loads(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    event = payload.get("event")
    logger.info("Webhook received: %s", event)
    handler = WEBHOOK_HANDLERS.get(event)
    if handler is None:
        logger.info("Unhandled webhook event: %s", event)
        return {"success": True}

    entity = ((payload.get("payload") or {}).get("payment") or {}).get("entity") or {}
    await run_in_threadpool(handler, entity)
    return {"success": True}


@router.get("/status/{cartId}")
def payment_status(cartId: str):
    cart = db["cart"].find_one({"_id": oid(cartId)})
    if not cart:
        raise HTTPException(status_code=404, detail="Cart not found")
    return {
        "success": True,
        "data": {
            "paymentStatus": cart.get("paymentStatus"),
            "orderId": cart.get("razorpayOrderId"),
            "paymentId": cart.get("razorpayPaymentId"),
            "orderNumber": cart.get("orderNumber"),
            "orderStatus": cart.get("orderStatus"),
        },
    }
