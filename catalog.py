import re
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pymongo import DESCENDING, ReturnDocument

from currency import RateCache, convert_product, get_rate_cache
from database import create_document, db, get_documents
from schemas import BikeBrand, BikeModel, BikeProduct
from utils import now_utc, oid, paginate, serialize_doc

brand_router = APIRouter(prefix="/brand", tags=["brand"])
model_router = APIRouter(prefix="/model", tags=["model"])
product_router = APIRouter(prefix="/product", tags=["product"])

SEARCH_FIELDS = {"name": 1, "shortDescription": 1, "price": 1, "imageUrl": 1, "quantityAvailable": 1}


def ref_or_none(value: Optional[str]):
    return oid(value) if value else None


def products_view(products: List[dict], currency: Optional[str], cache: RateCache) -> list:
    return serialize_doc([convert_product(p, currency, cache) for p in products])


# ----------------------- Brands -----------------------
@brand_router.post("/", status_code=201)
def create_brand(body: BikeBrand):
    if db["bike_brand"].find_one({"name": body.name}):
        raise HTTPException(status_code=400, detail="Brand already exists")
    brand_id = create_document("bike_brand", body)
    return {"success": True, "data": serialize_doc(db["bike_brand"].find_one({"_id": oid(brand_id)}))}


@brand_router.get("/")
def list_brands():
    return {"success": True, "data": serialize_doc(list(db["bike_brand"].find().sort("name", 1)))}


@brand_router.get("/with-models")
def brands_with_models(category: Optional[str] = None):
    result = []
    for brand in db["bike_brand"].find().sort("name", 1):
        query = {"brand": brand["_id"]}
        if category:
            query["category"] = category
        models = list(db["bike_model"].find(query))
        if models:
            result.append({**brand, "models": [{**m, "brandName": brand["name"]} for m in models]})
    return {"success": True, "data": serialize_doc(result)}


@brand_router.post("/{brand_id}")
def update_brand(brand_id: str, body: BikeBrand):
    brand = db["bike_brand"].find_one_and_update(
        {"_id": oid(brand_id)},
        {"$set": {**body.model_dump(), "updatedAt": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    if not brand:
        raise HTTPException(status_code=404, detail="Brand not found")
    return {"success": True, "data": serialize_doc(brand)}


# ----------------------- Models -----------------------
def with_brand(model: dict) -> dict:
    brand = db["bike_brand"].find_one({"_id": model.get("brand")})
    return {**model, "brand": brand or model.get("brand")}


def model_document(body: BikeModel) -> dict:
    brand_id = oid(body.brand)
    if not db["bike_brand"].find_one({"_id": brand_id}):
        raise HTTPException(status_code=404, detail="Brand not found")
    return {**body.model_dump(), "brand": brand_id}


@model_router.post("/", status_code=201)
def create_model(body: BikeModel):
    model_id = create_document("bike_model", model_document(body))
    return {"success": True, "data": serialize_doc(db["bike_model"].find_one({"_id": oid(model_id)}))}


@model_router.get("/brand/{brand_id}")
def models_by_brand(brand_id: str):
    models = db["bike_model"].find({"brand": oid(brand_id)}, {"name": 1}).sort("name", 1)
    return {"success": True, "data": serialize_doc(list(models))}


@model_router.get("/{model_id}")
def get_model(model_id: str):
    model = db["bike_model"].find_one({"_id": oid(model_id)})
    if not model:
        raise HTTPException(status_code=404, detail="Model not found")
    return {"success": True, "data": serialize_doc(with_brand(model))}


@model_router.post("/{model_id}")
def update_model(model_id: str, body: BikeModel):
    model = db["bike_model"].find_one_and_update(
        {"_id": oid(model_id)},
        {"$set": {**model_document(body), "updatedAt": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    if not model:
        raise HTTPException(status_code=404, detail="Model not found")
    return {"success": True, "data": serialize_doc(with_brand(model))}


# ----------------------- Products -----------------------
def product_document(body: BikeProduct) -> dict:
    data = body.model_dump()
    data["brand"] = ref_or_none(body.brand)
    data["model"] = ref_or_none(body.model)
    # bike specific unless told otherwise, but only when tied to a model
    if body.model:
        data["isBikeSpecific"] = True if body.isBikeSpecific is None else body.isBikeSpecific
    else:
        data["isBikeSpecific"] = False
    return data


@product_router.post("/", status_code=201)
def create_product(body: BikeProduct):
    product_id = create_document("bike_product", product_document(body))
    return {"success": True, "data": serialize_doc(db["bike_product"].find_one({"_id": oid(product_id)}))}


@product_router.get("/all")
def list_products(page: int = 1, limit: int = 10, newArrival: Optional[bool] = None,
                  garageFavorite: Optional[bool] = None, currency: Optional[str] = None,
                  cache: RateCache = Depends(get_rate_cache)):
    query = {}
    if newArrival is not None:
        query["isNewArrival"] = newArrival
    if garageFavorite is not None:
        query["isGarageFavorite"] = garageFavorite
    products, pagination = paginate(db["bike_product"], query, page, limit, sort=[("createdAt", DESCENDING)])
    return {"success": True, "data": products_view(products, currency, cache), "pagination": pagination}


@product_router.get("/search")
def search_products(query: Optional[str] = None, page: int = 1, limit: int = 10,
                    currency: Optional[str] = None, cache: RateCache = Depends(get_rate_cache)):
    if not query:
        raise HTTPException(status_code=400, detail="Query parameter is required")

    pattern = {"$regex": re.escape(query), "$options": "i"}
    model_ids = [m["_id"] for m in db["bike_model"].find({"name": pattern}, {"_id": 1})]
    filt = {
        "$and": [
            {"$or": [{"name": pattern}, {"model": {"$in": model_ids}}]},
            {"quantityAvailable": {"$gt": 0}},
        ]
    }
    products, pagination = paginate(db["bike_product"], filt, page, limit,
                                    sort=[("createdAt", DESCENDING)], projection=SEARCH_FIELDS)
    return {"success": True, "data": products_view(products, currency, cache), "pagination": pagination}


@product_router.get("/categories/count")
def category_counts():
    pipeline = [
        {"$group": {"_id": "$category", "count": {"$sum": 1}, "categoryIcon": {"$first": "$categoryIcon"}}},
        {"$sort": {"count": -1}},
        {"$project": {"_id": 0, "name": "$_id", "icon": "$categoryIcon", "count": 1}},
    ]
    return {"success": True, "data": list(db["bike_product"].aggregate(pipeline))}


@product_router.get("/model/{model_id}")
def products_by_model(model_id: str, currency: Optional[str] = None, cache: RateCache = Depends(get_rate_cache)):
    products = get_documents("bike_product", {"model": oid(model_id)})
    return {"success": True, "data": products_view(products, currency, cache)}


@product_router.get("/category/{category}")
def products_by_category(category: str, page: int = 1, limit: int = 10, currency: Optional[str] = None,
                         cache: RateCache = Depends(get_rate_cache)):
    products, pagination = paginate(db["bike_product"], {"category": category}, page, limit,
                                    sort=[("createdAt", DESCENDING)])
    return {"success": True, "data": products_view(products, currency, cache), "pagination": pagination}


@product_router.get("/{product_id}")
def get_product(product_id: str, currency: Optional[str] = None, cache: RateCache = Depends(get_rate_cache)):
    product = db["bike_product"].find_one({"_id": oid(product_id)})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"success": True, "data": serialize_doc(convert_product(product, currency, cache))}


@product_router.post("/{product_id}")
def update_product(product_id: str, body: BikeProduct):
    product = db["bike_product"].find_one_and_update(
        {"_id": oid(product_id)},
        {"$set": {**product_document(body), "updatedAt": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"success": True, "data": serialize_doc(product)}
