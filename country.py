from fastapi import APIRouter

from currency import CURRENCIES

router = APIRouter(prefix="/country", tags=["country"])

COUNTRIES = [
    {"name": "India", "code": "IN", "isdCode": "91", "currency": "INR", "flag": "🇮🇳"},
    {"name": "United States", "code": "US", "isdCode": "1", "currency": "USD", "flag": "🇺🇸"},
    {"name": "United Kingdom", "code": "GB", "isdCode": "44", "currency": "GBP", "flag": "🇬🇧"},
    {"name": "Germany", "code": "DE", "isdCode": "49", "currency": "EUR", "flag": "🇩🇪"},
    {"name": "France", "code": "FR", "isdCode": "33", "currency": "EUR", "flag": "🇫🇷"},
    {"name": "United Arab Emirates", "code": "AE", "isdCode": "971", "currency": "AED", "flag": "🇦🇪"},
    {"name": "Australia", "code": "AU", "isdCode": "61", "currency": "AUD", "flag": "🇦🇺"},
    {"name": "Canada", "code": "CA", "isdCode": "1", "currency": "CAD", "flag": "🇨🇦"},
    {"name": "Singapore", "code": "SG", "isdCode": "65", "currency": "SGD", "flag": "🇸🇬"},
    {"name": "Japan", "code": "JP", "isdCode": "81", "currency": "JPY", "flag": "🇯🇵"},
    {"name": "Nepal", "code": "NP", "isdCode": "977", "currency": "NPR", "flag": "🇳🇵"},
    {"name": "Sri Lanka", "code": "LK", "isdCode": "94", "currency": "LKR", "flag": "🇱🇰"},
    {"name": "Bangladesh", "code": "BD", "isdCode": "880", "currency": "BDT", "flag": "🇧🇩"},
]


@router.get("/isd-codes")
def isd_codes():
    return {"success": True, "data": COUNTRIES}


@router.get("/currencies")
def currencies():
    return {"success": True, "data": CURRENCIES}
