from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from database import db
from utils import now_utc, oid, serialize_doc

router = APIRouter(prefix="/wishlist", tags=["wishlist"])


class WishlistBody(BaseModel):
    phoneNumber: str
    productId: str


def empty_wishlist(phone_number: str) -> dict:
    return {"_id": None, "phoneNumber": phone_number, "products": []}


def populated(wishlist: dict) -> dict:
    products = []
    for product in db["bike_product"].find({"_id": {"$in": wishlist["products"]}}):
        product["brand"] = db["bike_brand"].find_one({"_id": product.get("brand")}) or product.get("brand")
        product["model"] = db["bike_model"].find_one({"_id": product.get("model")}) or product.get("model")
        products.append(product)
    return serialize_doc({**wishlist, "products": products})


@router.post("/add")
def add_to_wishlist(body: WishlistBody):
    product_id = oid(body.productId)
    if not db["bike_product"].find_one({"_id": product_id}):
        raise HTTPException(status_code=404, detail="Product not found")

    wishlist = db["wishlist"].find_one({"phoneNumber": body.phoneNumber})
    if wishlist and product_id in wishlist["products"]:
        return {"success": True, "message": "Product already in wishlist", "data": populated(wishlist)}

    now = now_utc()
    db["wishlist"].update_one(
        {"phoneNumber": body.phoneNumber},
        {"$addToSet": {"products": product_id}, "$set": {"updatedAt": now}, "$setOnInsert": {"createdAt": now}},
        upsert=True,
    )
    wishlist = db["wishlist"].find_one({"phoneNumber": body.phoneNumber})
    return {"success": True, "message": "Product added to wishlist successfully", "data": populated(wishlist)}


@router.get("/{phoneNumber}")
def get_wishlist(phoneNumber: str):
    wishlist = db["wishlist"].find_one({"phoneNumber": phoneNumber})
    if not wishlist:
        return {"success": True, "data": empty_wishlist(phoneNumber)}
    return {"success": True, "data": populated(wishlist)}


@router.post("/remove")
def remove_from_wishlist(body: WishlistBody):
    product_id = oid(body.productId)
    wishlist = db["wishlist"].find_one({"phoneNumber": body.phoneNumber})
    if not wishlist:
        raise HTTPException(status_code=404, detail="Wishlist not found")
    if product_id not in wishlist["products"]:
        raise HTTPException(status_code=404, detail="Product not found in wishlist")

    products = [p for p in wishlist["products"] if p != product_id]
    if not products:
        db["wishlist"].delete_one({"_id": wishlist["_id"]})
        return {
            "success": True,
            "message": "Product removed from wishlist successfully. Wishlist is now empty.",
            "data": empty_wishlist(body.phoneNumber),
        }

    db["wishlist"].update_one({"_id": wishlist["_id"]}, {"$pull": {"products": product_id}, "$set": {"updatedAt": now_utc()}})
    wishlist["products"] = products
    return {"success": True, "message": "Product removed from wishlist successfully", "data": populated(wishlist)}
