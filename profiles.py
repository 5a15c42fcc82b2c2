from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr
from pymongo import ReturnDocument

from auth import get_verified_phone
from database import create_document, db
from schemas import OwnedBike, Profile as ProfileSchema
from utils import now_utc, oid, serialize_doc

router = APIRouter(prefix="/profile", tags=["profile"])


class ProfileUpdateBody(BaseModel):
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    emailId: Optional[EmailStr] = None
    address: Optional[str] = None
    notifyOffers: Optional[bool] = None
    bikeOwnedByCustomer: Optional[List[OwnedBike]] = None


def owned_bikes(bikes: List[OwnedBike]) -> List[dict]:
    return [{"brand": oid(b.brand), "model": oid(b.model)} for b in bikes]


@router.post("/", status_code=201)
def create_profile(body: ProfileSchema, verified: dict = Depends(get_verified_phone)):
    if verified["phoneNumber"] != body.phoneNumber or verified.get("isdCode") != body.isdCode:
        raise HTTPException(status_code=403, detail="Phone number has not been verified")
    if db["profile"].find_one({"isdCode": body.isdCode, "phoneNumber": body.phoneNumber}):
        raise HTTPException(status_code=400, detail="Profile with this ISD code and phone number already exists")

    data = body.model_dump()
    data["bikeOwnedByCustomer"] = owned_bikes(body.bikeOwnedByCustomer)
    profile_id = create_document("profile", data)
    return {"success": True, "data": serialize_doc(db["profile"].find_one({"_id": oid(profile_id)}))}


@router.get("/phone")
def get_profile_by_phone(isdCode: str, phoneNumber: str):
    profile = db["profile"].find_one({"isdCode": isdCode.lstrip("+"), "phoneNumber": phoneNumber})
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return {"success": True, "data": serialize_doc(profile)}


@router.get("/{profile_id}")
def get_profile(profile_id: str):
    profile = db["profile"].find_one({"_id": oid(profile_id)})
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return {"success": True, "data": serialize_doc(profile)}


@router.post("/update/{profile_id}")
def update_profile(profile_id: str, body: ProfileUpdateBody):
    # isdCode and phoneNumber identify the profile and never change
    update = body.model_dump(exclude_none=True)
    if body.bikeOwnedByCustomer is not None:
        update["bikeOwnedByCustomer"] = owned_bikes(body.bikeOwnedByCustomer)
    update["updatedAt"] = now_utc()
    profile = db["profile"].find_one_and_update(
        {"_id": oid(profile_id)}, {"$set": update}, return_document=ReturnDocument.AFTER
    )
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return {"success": True, "data": serialize_doc(profile)}
