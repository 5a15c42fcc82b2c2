from datetime import timedelta

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

import config
from utils import now_utc

security = HTTPBearer()


def create_token(payload: dict) -> str:
    exp = now_utc() + timedelta(days=config.JWT_EXPIRE_DAYS)
    to_encode = {**payload, "exp": exp}
    return jwt.encode(to_encode, config.JWT_SECRET, algorithm=config.JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def phone_token(isd_code: str, phone_number: str) -> str:
    return create_token({"isdCode": isd_code, "phoneNumber": phone_number, "verified": True})


async def get_verified_phone(credentials: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    payload = decode_token(credentials.credentials)
    if not payload.get("verified") or not payload.get("phoneNumber"):
        raise HTTPException(status_code=401, detail="Invalid token payload")
    return {"isdCode": payload.get("isdCode"), "phoneNumber": payload["phoneNumber"]}
