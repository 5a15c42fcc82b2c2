import logging
import re
import secrets
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from pymongo import DESCENDING

import config
from auth import phone_token
from database import create_document, db
from schemas import Otp as OtpSchema
from sms import SmsError, get_sms_sender
from utils import as_utc, now_utc, oid, serialize_doc

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/otp", tags=["otp"])

SUPPORTED_ISD_CODE = "91"
PHONE_PATTERN = re.compile(r"^\d{10}$")


class GenerateOtpBody(BaseModel):
    isdCode: str
    phoneNumber: str


class VerifyOtpBody(BaseModel):
    isdCode: str
    phoneNumber: str
    otp: str


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


def latest_live_otp(isd_code: str, phone_number: str):
    """Most recent unverified code for the number, if it has not expired.

    The TTL index removes expired codes eventually; the expiry check here
    covers the gap before the sweeper runs."""
    record = db["otp"].find_one(
        {"isdCode": isd_code, "phoneNumber": phone_number, "isVerified": False},
        sort=[("createdAt", DESCENDING)],
    )
    if record and as_utc(record["expiresAt"]) <= now_utc():
        return None
    return record


@router.post("/generate")
def generate_otp(body: GenerateOtpBody, sender=Depends(get_sms_sender)):
    isd_code = body.isdCode.strip().lstrip("+")
    phone_number = body.phoneNumber.strip()
    if not isd_code or not phone_number:
        raise HTTPException(status_code=400, detail="ISD code and phone number are required")
    if isd_code != SUPPORTED_ISD_CODE:
        raise HTTPException(
            status_code=400,
            detail="We do not support OTP generation outside India as of now. "
                   "Please use an Indian phone number (ISD code: +91)",
        )
    if not PHONE_PATTERN.match(phone_number):
        raise HTTPException(status_code=400, detail="Invalid phone number. Please provide a valid 10-digit Indian phone number")
    if sender is None:
        logger.error("SMS provider %s is not configured", config.SMS_PROVIDER)
        raise HTTPException(status_code=500, detail="SMS service is not configured. Please contact administrator.")

    code = generate_code()
    db["otp"].delete_many({"isdCode": isd_code, "phoneNumber": phone_number})
    record = OtpSchema(
        isdCode=isd_code,
        phoneNumber=phone_number,
        otp=code,
        expiresAt=now_utc() + timedelta(minutes=config.OTP_EXPIRY_MINUTES),
    )
    otp_id = create_document("otp", record)

    try:
        sender.send_code(isd_code, phone_number, code)
    except SmsError as exc:
        logger.error("Error sending OTP to +%s-%s: %s", isd_code, phone_number, exc)
        db["otp"].delete_one({"_id": oid(otp_id)})
        raise HTTPException(status_code=500, detail="Failed to send OTP via SMS. Please try again later.")

    return {
        "success": True,
        "data": {
            "message": f"OTP sent successfully to +{isd_code}-{phone_number}",
            "phoneNumber": f"+{isd_code}-{phone_number}",
            "expiresIn": f"{config.OTP_EXPIRY_MINUTES} minutes",
        },
    }


@router.post("/verify")
def verify_otp(body: VerifyOtpBody):
    isd_code = body.isdCode.strip().lstrip("+")
    phone_number = body.phoneNumber.strip()
    code = body.otp.strip()
    if not isd_code or not phone_number or not code:
        raise HTTPException(status_code=400, detail="ISD code, phone number, and OTP are required")
    if isd_code != SUPPORTED_ISD_CODE:
        raise HTTPException(status_code=400, detail="We do not support OTP verification outside India as of now")

    record = latest_live_otp(isd_code, phone_number)
    if not record:
        raise HTTPException(status_code=400, detail="No OTP found or OTP has expired. Please request a new OTP")

    if not secrets.compare_digest(record["otp"], code):
        failed_attempts = record.get("failedAttempts", 0) + 1
        if failed_attempts >= config.OTP_MAX_ATTEMPTS:
            db["otp"].delete_one({"_id": record["_id"]})
            raise HTTPException(status_code=400, detail="Too many incorrect attempts. Please request a new OTP")
        db["otp"].update_one({"_id": record["_id"]}, {"$set": {"failedAttempts": failed_attempts}})
        raise HTTPException(status_code=400, detail="Invalid OTP. Please check and try again")

    db["otp"].update_one({"_id": record["_id"]}, {"$set": {"isVerified": True, "updatedAt": now_utc()}})

    data = {
        "message": "OTP verified successfully",
        "phoneNumber": f"+{isd_code}-{phone_number}",
        "verified": True,
        "token": phone_token(isd_code, phone_number),
    }
    profile = db["profile"].find_one({"isdCode": isd_code, "phoneNumber": phone_number})
    if profile:
        data["profile"] = serialize_doc(profile)
    return {"success": True, "data": data}
