"""
Cart engine.

One active cart per phone number. A cart becomes the order record once it is
placed, so the same document travels active -> checkout -> ordered.

Writes are compare-and-swap on the ``version`` field: a request that read an
older copy of the cart gets a 409 instead of silently overwriting a newer one.
"""
import logging
import secrets
import string
import time
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError

import coupons
from currency import RateCache, convert_cart, get_rate_cache
from database import db
from schemas import Address, Cart as CartSchema, PaymentMethod
from utils import is_oid, now_utc, oid, serialize_doc

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cart", tags=["cart"])

CONFLICT_MESSAGE = "Cart was modified by another request, please retry"
PLACEABLE_STATUSES = ["active", "validated"]


# ----------------------- Helpers -----------------------
def new_cart(phone_number: str) -> dict:
    cart = CartSchema(phoneNumber=phone_number).model_dump()
    cart["_id"] = None
    return cart


def virtual_cart(phone_number: str) -> dict:
    cart = new_cart(phone_number)
    now = now_utc()
    cart.update({"createdAt": now, "updatedAt": now})
    return cart


def get_active_cart(phone_number: str) -> Optional[dict]:
    return db["cart"].find_one({"phoneNumber": phone_number, "status": "active"})


def line_total(price: float, quantity: int) -> float:
    return price * quantity


def recalculate(cart: dict) -> dict:
    cart["subtotal"] = sum(item["totalPrice"] for item in cart["items"])
    cart["totalAmount"] = (
        cart["subtotal"]
        + (cart.get("shippingCost") or 0)
        + (cart.get("taxAmount") or 0)
        - (cart.get("discountAmount") or 0)
    )
    return cart


def clear_coupon(cart: dict):
    cart["appliedCoupon"] = None
    cart["couponCode"] = None
    cart["discountAmount"] = 0


def refresh_coupon(cart: dict) -> Optional[str]:
    """Re-check an applied coupon against the current subtotal.

    Drops the coupon and returns the reason when it no longer qualifies,
    otherwise recomputes the discount."""
    recalculate(cart)
    if not cart.get("appliedCoupon"):
        return None

    coupon = db["coupon"].find_one({"_id": cart["appliedCoupon"]})
    if not coupon:
        clear_coupon(cart)
        recalculate(cart)
        return "Coupon no longer exists and was removed"

    is_valid, reason = coupons.validate_eligibility(coupon, cart["phoneNumber"], cart["subtotal"])
    if not is_valid:
        clear_coupon(cart)
        recalculate(cart)
        return f"Coupon {coupon['code']} removed: {reason}"

    cart["discountAmount"] = coupons.calculate_discount(coupon, cart["subtotal"])
    recalculate(cart)
    return None


def save_cart(cart: dict) -> dict:
    recalculate(cart)
    now = now_utc()
    cart["updatedAt"] = now

    if cart.get("_id") is None:
        cart["createdAt"] = now
        cart["version"] = 0
        doc = {k: v for k, v in cart.items() if k != "_id"}
        try:
            cart["_id"] = db["cart"].insert_one(doc).inserted_id
        except DuplicateKeyError:
            raise HTTPException(status_code=409, detail=CONFLICT_MESSAGE)
        return cart

    version = cart.get("version")
    query = {"_id": cart["_id"], "version": version if version is not None else {"$exists": False}}
    fields = {k: v for k, v in cart.items() if k not in ("_id", "version")}
    try:
        res = db["cart"].update_one(query, {"$set": fields, "$inc": {"version": 1}})
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail=CONFLICT_MESSAGE)
    if res.matched_count == 0:
        raise HTTPException(status_code=409, detail=CONFLICT_MESSAGE)
    cart["version"] = (version or 0) + 1
    return cart


def delete_cart(cart: dict):
    if cart.get("_id") is None:
        return
    res = db["cart"].delete_one({"_id": cart["_id"], "version": cart.get("version")})
    if res.deleted_count == 0:
        raise HTTPException(status_code=409, detail=CONFLICT_MESSAGE)


def populate(cart: dict) -> dict:
    """Copy of ``cart`` with each line's product reference replaced by the
    product document (left as the id when the product is gone)."""
    ids = [item["product"] for item in cart.get("items", [])]
    products = {p["_id"]: p for p in db["bike_product"].find({"_id": {"$in": ids}})} if ids else {}
    items = [{**item, "product": products.get(item["product"], item["product"])} for item in cart.get("items", [])]
    return {**cart, "items": items}


def render(cart: dict, currency: Optional[str], cache: RateCache) -> dict:
    if cart.get("_id") is None:
        return serialize_doc(convert_cart(cart, currency, cache))
    return serialize_doc(convert_cart(populate(cart), currency, cache))


def generate_order_number() -> str:
    suffix = "".join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(5))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


def assign_order_number(cart: dict):
    if not cart.get("orderNumber"):
        cart["orderNumber"] = generate_order_number()


# ----------------------- Stock -----------------------
def validate_product_availability(items: List[dict]) -> List[dict]:
    results = []
    for item in items:
        product_id = item.get("productId") or item.get("product")
        quantity = item.get("quantity") or 0
        product = db["bike_product"].find_one({"_id": oid(str(product_id))}) if is_oid(str(product_id)) else None
        if not product:
            results.append({
                "productId": str(product_id),
                "isValid": False,
                "message": "Product not found",
                "requestedQuantity": quantity,
                "availableQuantity": 0,
            })
            continue

        available = product.get("quantityAvailable", 0)
        is_valid = available >= quantity
        results.append({
            "productId": str(product["_id"]),
            "productName": product.get("name"),
            "isValid": is_valid,
            "message": "Product available" if is_valid else "Insufficient quantity available",
            "requestedQuantity": quantity,
            "availableQuantity": available,
            "price": product.get("price"),
        })
    return results


def restore_stock(lines: List[dict]):
    for line in lines:
        db["bike_product"].update_one({"_id": line["product"]}, {"$inc": {"quantityAvailable": line["quantity"]}})


def reserve_stock(lines: List[dict]) -> Optional[dict]:
    """Decrement stock for every line or for none of them.

    Returns the first line that could not be reserved, ``None`` on success."""
    reserved = []
    for line in lines:
        res = db["bike_product"].update_one(
            {"_id": line["product"], "quantityAvailable": {"$gte": line["quantity"]}},
            {"$inc": {"quantityAvailable": -line["quantity"]}},
        )
        if res.matched_count == 0:
            restore_stock(reserved)
            return line
        reserved.append(line)
    return None


def place_order(cart: dict, payment_method: Optional[str] = None) -> Optional[str]:
    """Reserve inventory and consume the coupon for ``cart`` exactly once.

    Raises 400 when stock ran out; returns a message when the coupon had to be
    dropped because its usage limit was reached meanwhile. Does not save."""
    if cart.get("reservationHeld"):
        return None

    failed = reserve_stock(cart["items"])
    if failed is not None:
        raise HTTPException(status_code=400, detail={
            "error": "Some products are no longer available",
            "data": validate_product_availability(cart["items"]),
        })
    cart["reservationHeld"] = True

    message = None
    if cart.get("appliedCoupon"):
        if not coupons.record_usage(cart["appliedCoupon"], cart["phoneNumber"]):
            message = f"Coupon {cart.get('couponCode')} removed: usage limit reached"
            clear_coupon(cart)
            recalculate(cart)

    assign_order_number(cart)
    cart["orderDate"] = now_utc()
    if payment_method:
        cart["paymentMethod"] = payment_method
    return message


def return_reserved(cart: dict):
    restore_stock(cart["items"])
    if cart.get("appliedCoupon"):
        coupons.release_usage(cart["appliedCoupon"], cart["phoneNumber"])


def release_order(cart: dict):
    """Undo ``place_order``: put the stock back and return the coupon use.

    Only for reservations that were never persisted, or whose cart document
    is already gone; otherwise the stored ``reservationHeld`` flag would
    still claim the stock."""
    if not cart.get("reservationHeld"):
        return
    return_reserved(cart)
    cart["reservationHeld"] = False


def save_placed(cart: dict):
    try:
        save_cart(cart)
    except HTTPException:
        release_order(cart)
        raise


def is_paid(cart: Optional[dict]) -> bool:
    return bool(cart) and cart.get("paymentStatus") == "paid" and cart.get("status") == "ordered"


def mark_paid(cart: dict, payment_id: Optional[str] = None, signature: Optional[str] = None) -> dict:
    """Confirm the order behind ``cart`` once its payment is captured.

    The callback and the webhook usually both arrive for one payment; the
    one that loses the version race gives back whatever it reserved and
    returns the stored order."""
    if is_paid(cart):
        return cart

    reserved_here = False
    if not cart.get("reservationHeld"):
        try:
            place_order(cart)
            reserved_here = True
        except HTTPException:
            # money is already captured; the order stands and ops reconcile stock
            logger.error("Stock could not be reserved for paid cart %s", cart["_id"])
            assign_order_number(cart)

    if payment_id:
        cart["razorpayPaymentId"] = payment_id
    if signature:
        cart["razorpaySignature"] = signature
    cart["paymentStatus"] = "paid"
    cart["status"] = "ordered"
    cart["orderStatus"] = "confirmed"
    cart["orderDate"] = now_utc()
    assign_order_number(cart)
    try:
        save_cart(cart)
    except HTTPException:
        if reserved_here:
            release_order(cart)
        stored = db["cart"].find_one({"_id": cart["_id"]})
        if is_paid(stored):
            return stored
        raise
    return cart


def mark_failed(cart: dict) -> dict:
    """Record a failed payment and give the reservation back.

    Stock and coupon use are returned only after the cleared flag is saved,
    so a redelivered or racing webhook cannot return them twice. The cart
    goes back to ``active`` unless the customer already started a new one,
    in which case it stays in ``checkout`` for a retry."""
    if cart.get("status") == "ordered":
        return cart

    held = cart.get("reservationHeld")
    cart["reservationHeld"] = False
    cart["paymentStatus"] = "failed"
    cart["orderStatus"] = None
    if cart.get("status") != "active":
        other = db["cart"].find_one({"phoneNumber": cart["phoneNumber"], "status": "active", "_id": {"$ne": cart["_id"]}})
        if other is None:
            cart["status"] = "active"
    save_cart(cart)
    if held:
        return_reserved(cart)
    return cart


# ----------------------- Item management -----------------------
def check_batch(items: List["CartItemRequest"]) -> Tuple[List[dict], Dict[str, dict]]:
    errors = []
    products = {}
    for index, item in enumerate(items):
        if not item.productId or item.quantity is None:
            errors.append({"index": index, "productId": item.productId, "quantity": item.quantity,
                           "message": "productId and quantity are required"})
            continue
        if item.quantity < 0:
            errors.append({"index": index, "productId": item.productId, "quantity": item.quantity,
                           "message": "Quantity cannot be negative"})
            continue
        product = db["bike_product"].find_one({"_id": oid(item.productId)}) if is_oid(item.productId) else None
        if not product:
            errors.append({"index": index, "productId": item.productId, "quantity": item.quantity,
                           "message": "Product not found"})
            continue
        products[item.productId] = product
    return errors, products


def find_line(cart: dict, product_id: str) -> int:
    for index, line in enumerate(cart["items"]):
        if str(line["product"]) == product_id:
            return index
    return -1


def shortage(product: dict, quantity: int, added: int) -> dict:
    return {
        "product": product,
        "quantity": quantity,
        "price": product["price"],
        "totalPrice": line_total(product["price"], quantity),
        "message": f"Only {added} available, {quantity} not processed",
        "availableQuantity": product.get("quantityAvailable", 0),
    }


def apply_items(cart: dict, items: List["CartItemRequest"], products: Dict[str, dict]) -> Tuple[List[dict], List[dict]]:
    actions = []
    unprocessed = []
    for item in items:
        product = products[item.productId]
        index = find_line(cart, item.productId)

        if item.quantity == 0:
            if index > -1:
                cart["items"].pop(index)
                actions.append({"productId": item.productId, "action": "removed", "quantity": 0})
            else:
                actions.append({"productId": item.productId, "action": "no-op", "quantity": 0,
                                "message": "Item not in cart"})
            continue

        available = max(product.get("quantityAvailable", 0), 0)
        current = cart["items"][index]["quantity"] if index > -1 else 0
        wanted = current + item.quantity
        quantity = min(wanted, available)
        if wanted > quantity:
            unprocessed.append(shortage(product, wanted - quantity, quantity))

        if quantity == current:
            continue
        if quantity == 0:
            cart["items"].pop(index)
            actions.append({"productId": item.productId, "action": "removed", "quantity": 0})
            continue
        line = {
            "product": product["_id"],
            "quantity": quantity,
            "price": product["price"],
            "totalPrice": line_total(product["price"], quantity),
        }
        if index > -1:
            cart["items"][index] = line
            actions.append({"productId": item.productId, "action": "updated", "quantity": quantity})
        else:
            cart["items"].append(line)
            actions.append({"productId": item.productId, "action": "added", "quantity": quantity})
    return actions, unprocessed


def evict_unavailable(cart: dict) -> List[dict]:
    """Second pass against live stock; lines that no longer fit are dropped."""
    evicted = []
    kept = []
    for line, result in zip(cart["items"], validate_product_availability(cart["items"])):
        if result["isValid"]:
            kept.append(line)
            continue
        evicted.append({
            "product": str(line["product"]),
            "quantity": line["quantity"],
            "price": line["price"],
            "totalPrice": line["totalPrice"],
            "message": result["message"],
            "availableQuantity": result["availableQuantity"],
        })
    cart["items"] = kept
    return evicted


def manage_items(phone_number: str, items: List["CartItemRequest"]) -> Tuple[dict, List[dict], List[dict], Optional[str]]:
    errors, products = check_batch(items)
    if errors:
        raise HTTPException(status_code=400, detail={"error": "Validation errors in request", "errors": errors})

    cart = get_active_cart(phone_number) or new_cart(phone_number)
    actions, unprocessed = apply_items(cart, items, products)
    unprocessed.extend(evict_unavailable(cart))
    coupon_message = refresh_coupon(cart)

    if not cart["items"]:
        delete_cart(cart)
        return virtual_cart(phone_number), actions, unprocessed, coupon_message

    save_cart(cart)
    return cart, actions, unprocessed, coupon_message


# ----------------------- Models -----------------------
class CartItemRequest(BaseModel):
    productId: Optional[str] = None
    quantity: Optional[int] = None


class ManageCartBody(BaseModel):
    phoneNumber: str
    items: List[CartItemRequest]


class ValidateCartBody(BaseModel):
    items: List[Dict[str, Any]]


class PhoneBody(BaseModel):
    phoneNumber: str


class AddressBody(BaseModel):
    phoneNumber: str
    shippingAddress: Optional[Address] = None
    billingAddress: Optional[Address] = None


class ApplyCouponBody(BaseModel):
    phoneNumber: str
    couponCode: str


class CheckoutBody(BaseModel):
    phoneNumber: str
    paymentMethod: PaymentMethod = "online"


def require_active_cart(phone_number: str) -> dict:
    cart = get_active_cart(phone_number)
    if not cart:
        raise HTTPException(status_code=404, detail="Active cart not found")
    return cart


# ----------------------- Routes -----------------------
@router.post("/validate")
def validate_cart(body: ValidateCartBody):
    if not body.items:
        raise HTTPException(status_code=400, detail="Items array is required and cannot be empty")
    results = validate_product_availability(body.items)
    all_valid = all(r["isValid"] for r in results)
    return {
        "success": True,
        "data": {
            "isValid": all_valid,
            "items": results,
            "invalidItems": [r for r in results if not r["isValid"]],
            "message": "All items are available" if all_valid else "Some items are not available",
        },
    }


@router.get("/active/{phoneNumber}")
def active_cart(phoneNumber: str, currency: Optional[str] = None, cache: RateCache = Depends(get_rate_cache)):
    cart = get_active_cart(phoneNumber) or virtual_cart(phoneNumber)
    return {"success": True, "data": render(cart, currency, cache)}


@router.post("/item")
def manage_cart_item(body: ManageCartBody, currency: Optional[str] = None, cache: RateCache = Depends(get_rate_cache)):
    if not body.items:
        raise HTTPException(status_code=400, detail="items array is required and cannot be empty")

    cart, actions, unprocessed, coupon_message = manage_items(body.phoneNumber, body.items)
    data = render(cart, currency, cache)
    data["actions"] = actions
    data["unProcessedItems"] = serialize_doc(unprocessed)
    if coupon_message:
        data["couponMessage"] = coupon_message
    return {"success": True, "data": data}


@router.post("/clear")
def clear_cart(body: PhoneBody):
    cart = require_active_cart(body.phoneNumber)
    delete_cart(cart)
    release_order(cart)
    return {"success": True, "message": "Cart cleared successfully", "data": serialize_doc(virtual_cart(body.phoneNumber))}


@router.post("/address")
def update_cart_addresses(body: AddressBody):
    cart = require_active_cart(body.phoneNumber)
    if body.shippingAddress:
        cart["shippingAddress"] = body.shippingAddress.model_dump()
    if body.billingAddress:
        cart["billingAddress"] = body.billingAddress.model_dump()
    save_cart(cart)
    return {
        "success": True,
        "message": "Cart addresses updated successfully",
        "data": {"shippingAddress": cart.get("shippingAddress"), "billingAddress": cart.get("billingAddress")},
    }


@router.post("/apply-coupon")
def apply_coupon(body: ApplyCouponBody, currency: Optional[str] = None, cache: RateCache = Depends(get_rate_cache)):
    cart = require_active_cart(body.phoneNumber)
    coupon = coupons.get_coupon_by_code(body.couponCode)
    if not coupon:
        raise HTTPException(status_code=404, detail="Invalid coupon code")

    recalculate(cart)
    is_valid, reason = coupons.validate_eligibility(coupon, body.phoneNumber, cart["subtotal"])
    if not is_valid:
        raise HTTPException(status_code=400, detail=reason)

    cart["appliedCoupon"] = coupon["_id"]
    cart["couponCode"] = coupon["code"]
    cart["discountAmount"] = coupons.calculate_discount(coupon, cart["subtotal"])
    save_cart(cart)
    return {"success": True, "message": "Coupon applied successfully", "data": render(cart, currency, cache)}


@router.post("/remove-coupon")
def remove_coupon(body: PhoneBody, currency: Optional[str] = None, cache: RateCache = Depends(get_rate_cache)):
    cart = require_active_cart(body.phoneNumber)
    clear_coupon(cart)
    save_cart(cart)
    return {"success": True, "message": "Coupon removed successfully", "data": render(cart, currency, cache)}


@router.post("/checkout")
def checkout_cart(body: CheckoutBody):
    cart = db["cart"].find_one({"phoneNumber": body.phoneNumber, "status": {"$in": PLACEABLE_STATUSES}})
    if not cart:
        raise HTTPException(status_code=404, detail="No active cart found")
    if not cart.get("items"):
        raise HTTPException(status_code=400, detail="Cart is empty")
    if not cart.get("shippingAddress") or not cart.get("billingAddress"):
        raise HTTPException(status_code=400, detail="Shipping and billing addresses are required")

    results = validate_product_availability(cart["items"])
    if not all(r["isValid"] for r in results):
        raise HTTPException(status_code=400, detail={"error": "Some products are no longer available", "data": results})

    coupon_message = refresh_coupon(cart)
    usage_message = place_order(cart, body.paymentMethod)
    cart["orderStatus"] = "placed"
    cart["status"] = "ordered" if body.paymentMethod == "cod" else "checkout"
    save_placed(cart)

    data = {
        "cartId": str(cart["_id"]),
        "orderNumber": cart["orderNumber"],
        "totalAmount": cart["totalAmount"],
        "paymentMethod": body.paymentMethod,
        "status": cart["status"],
        "orderStatus": cart["orderStatus"],
        "itemsCount": len(cart["items"]),
    }
    message = coupon_message or usage_message
    if message:
        data["couponMessage"] = message
    return {"success": True, "message": "Cart ready for checkout", "data": data}
