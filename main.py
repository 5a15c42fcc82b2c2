import logging
import os
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
from blog import router as blog_router
from cart import router as cart_router
from catalog import brand_router, model_router, product_router
from country import router as country_router
from coupons import router as coupon_router
from database import create_document, db, ensure_indexes
from orders import router as order_router
from otp import router as otp_router
from payments import router as payment_router
from profiles import router as profile_router
from schemas import BikeBrand, BikeModel, BikeProduct, Coupon
from utils import now_utc, oid
from wishlist import router as wishlist_router

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_indexes()
    yield


app = FastAPI(title="Bike Accessories Store API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------------- Errors -----------------------
@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    content = {"success": False}
    if isinstance(exc.detail, dict):
        content.update(exc.detail)
    else:
        content["error"] = exc.detail
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err["loc"] if p not in ("body", "query", "path"))
        errors.append({"field": field, "message": err["msg"]})
    first = errors[0] if errors else {"field": "", "message": "Invalid request"}
    message = f"{first['field']}: {first['message']}" if first["field"] else first["message"]
    return JSONResponse(status_code=400, content={"success": False, "error": message, "errors": errors})


@app.exception_handler(Exception)
async def unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "Bike Accessories Store API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if db is not None:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


api = APIRouter(prefix="/api/v1")


@api.get("/health")
def health():
    return {
        "success": True,
        "data": {
            "status": "OK",
            "message": "Bike Accessories Store API is running",
            "timestamp": now_utc().isoformat(),
        },
    }


# ----------------------- Seed Demo Data -----------------------
DEMO_CATALOG = [
    {
        "brand": {"name": "Royal Enfield", "description": "Classic Indian motorcycles."},
        "models": [
            {"name": "Classic 350", "type": "Cruiser", "category": "Motorcycle"},
            {"name": "Himalayan 450", "type": "Adventure", "category": "Motorcycle"},
        ],
    },
    {
        "brand": {"name": "KTM", "description": "Ready to race."},
        "models": [
            {"name": "Duke 390", "type": "Naked", "category": "Motorcycle"},
        ],
    },
]

DEMO_PRODUCTS = [
    {
        "model": "Classic 350",
        "name": "Touring Crash Guard",
        "shortDescription": "Powder coated steel crash guard.",
        "category": "Protection",
        "price": 3499,
        "quantityAvailable": 20,
        "isGarageFavorite": True,
    },
    {
        "model": "Himalayan 450",
        "name": "Aluminium Top Box 45L",
        "shortDescription": "Weatherproof top box with mounting plate.",
        "category": "Luggage",
        "price": 8999,
        "quantityAvailable": 8,
        "isNewArrival": True,
    },
    {
        "model": "Duke 390",
        "name": "Tank Pad",
        "shortDescription": "Carbon look tank protector.",
        "category": "Styling",
        "price": 799,
        "quantityAvailable": 50,
    },
    {
        "model": None,
        "name": "Riding Gloves",
        "shortDescription": "Full finger gloves with knuckle armour.",
        "category": "Riding Gear",
        "price": 1899,
        "quantityAvailable": 35,
        "isNewArrival": True,
    },
]

DEMO_COUPON = {"code": "WELCOME10", "type": "Percentage", "discount": 10, "maxDiscount": 500, "minCartAmount": 1000}


@app.post("/seed")
def seed():
    if db["bike_product"].count_documents({}) > 0:
        return {"seeded": False, "message": "Products already exist"}

    models = {}
    for entry in DEMO_CATALOG:
        brand_id = oid(create_document("bike_brand", BikeBrand(**entry["brand"])))
        for m in entry["models"]:
            model = BikeModel(brand=str(brand_id), **m).model_dump()
            model["brand"] = brand_id
            models[m["name"]] = (brand_id, oid(create_document("bike_model", model)))

    for p in DEMO_PRODUCTS:
        brand_id, model_id = models.get(p["model"], (None, None))
        product = BikeProduct(**{k: v for k, v in p.items() if k != "model"}).model_dump()
        product.update({"brand": brand_id, "model": model_id, "isBikeSpecific": model_id is not None})
        create_document("bike_product", product)

    if not db["coupon"].find_one({"code": DEMO_COUPON["code"]}):
        create_document("coupon", {**Coupon(**DEMO_COUPON).model_dump(), "usedCount": 0, "usedBy": []})

    return {"seeded": True, "products": db["bike_product"].count_documents({})}


for router in (
    country_router,
    profile_router,
    brand_router,
    model_router,
    product_router,
    cart_router,
    coupon_router,
    order_router,
    payment_router,
    otp_router,
    wishlist_router,
    blog_router,
):
    api.include_router(router)

app.include_router(api)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
