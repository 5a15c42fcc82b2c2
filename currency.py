"""
INR based exchange rates for display prices.

Prices are stored and settled in INR; clients may ask for any other currency
for display only. Rates come from exchangerate-api and are cached process
wide for an hour. While a refresh is running other requests keep reading the
previous table.
"""
import logging
import threading
import time
from typing import Callable, Dict, Optional

import requests

import config
from utils import round_half_up

logger = logging.getLogger(__name__)

BASE_CURRENCY = "INR"
CACHE_TTL_SECONDS = 60 * 60

FALLBACK_RATES = {
    "INR": 1,
    "USD": 0.012,
    "EUR": 0.011,
    "GBP": 0.0095,
}

CURRENCIES = [
    {"code": "INR", "name": "Indian Rupee", "symbol": "₹"},
    {"code": "USD", "name": "US Dollar", "symbol": "$"},
    {"code": "EUR", "name": "Euro", "symbol": "€"},
    {"code": "GBP", "name": "British Pound", "symbol": "£"},
    {"code": "AED", "name": "UAE Dirham", "symbol": "د.إ"},
    {"code": "AUD", "name": "Australian Dollar", "symbol": "A$"},
    {"code": "CAD", "name": "Canadian Dollar", "symbol": "C$"},
    {"code": "SGD", "name": "Singapore Dollar", "symbol": "S$"},
    {"code": "JPY", "name": "Japanese Yen", "symbol": "¥"},
    {"code": "NPR", "name": "Nepalese Rupee", "symbol": "रु"},
    {"code": "LKR", "name": "Sri Lankan Rupee", "symbol": "Rs"},
    {"code": "BDT", "name": "Bangladeshi Taka", "symbol": "৳"},
]


def currency_symbol(code: str) -> Optional[str]:
    for currency in CURRENCIES:
        if currency["code"] == code:
            return currency["symbol"]
    return None


def fetch_remote_rates() -> Dict[str, float]:
    url = f"{config.EXCHANGE_RATE_API_URL}/{config.EXCHANGE_RATE_API_KEY}/latest/{BASE_CURRENCY}"
    response = requests.get(url, timeout=10)
    response.raise_for_status()
    payload = response.json()
    rates = payload.get("conversion_rates")
    if not rates:
        raise ValueError("Invalid response from exchange rate API")
    return rates


class RateCache:
    def __init__(self, fetch: Callable[[], Dict[str, float]] = fetch_remote_rates,
                 ttl: float = CACHE_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self._fetch = fetch
        self._ttl = ttl
        self._clock = clock
        self._rates: Optional[Dict[str, float]] = None
        self._fetched_at: Optional[float] = None
        self._refresh_lock = threading.Lock()

    def _is_fresh(self) -> bool:
        return (
            self._rates is not None
            and self._fetched_at is not None
            and self._clock() - self._fetched_at < self._ttl
        )

    def get_rates(self) -> Dict[str, float]:
        if self._is_fresh():
            return self._rates

        if not self._refresh_lock.acquire(blocking=False):
            # someone else is refreshing; serve what we have
            return self._rates or FALLBACK_RATES

        try:
            if self._is_fresh():
                return self._rates
            try:
                rates = self._fetch()
            except Exception as exc:
                # timestamp untouched so the next call retries the API
                logger.warning("Error fetching exchange rates: %s", exc)
                return FALLBACK_RATES
            self._rates = rates
            self._fetched_at = self._clock()
            return rates
        finally:
            self._refresh_lock.release()

    def convert(self, amount: float, target: Optional[str]) -> float:
        if not target or target == BASE_CURRENCY:
            return amount
        rate = self.get_rates().get(target)
        if not rate:
            logger.warning("Exchange rate for %s not found, returning original price", target)
            return amount
        return amount * rate

    def converted_price(self, amount: float, target: Optional[str], multiplier: Optional[float] = None) -> float:
        """Display price of an INR ``amount`` in ``target`` rounded to 2 places."""
        if multiplier is None:
            multiplier = config.CROSS_CURRENCY_MULTIPLIER or 1
        return round_half_up(self.convert(amount, target) * multiplier, 2)


rate_cache = RateCache()


def get_rate_cache() -> RateCache:
    return rate_cache


def is_display_currency(code: Optional[str]) -> bool:
    return bool(code) and code != BASE_CURRENCY and currency_symbol(code) is not None


def convert_product(product: dict, currency: Optional[str], cache: RateCache) -> dict:
    if not is_display_currency(currency) or not isinstance(product, dict):
        return product
    original = product.get("price") or 0
    return {
        **product,
        "price": cache.converted_price(original, currency),
        "originalPrice": original,
        "currency": currency,
        "currencySymbol": currency_symbol(currency),
    }


AMOUNT_FIELDS = ("subtotal", "discountAmount", "shippingCost", "taxAmount", "totalAmount")


def convert_cart(cart: dict, currency: Optional[str], cache: RateCache) -> dict:
    """Display-currency copy of a cart or order; ``original*`` keep INR."""
    if not is_display_currency(currency) or not cart.get("items"):
        return cart

    symbol = currency_symbol(currency)
    items = []
    for item in cart["items"]:
        price = item.get("price") or 0
        total = item.get("totalPrice") or 0
        items.append({
            **item,
            "product": convert_product(item.get("product"), currency, cache),
            "price": cache.converted_price(price, currency),
            "totalPrice": cache.converted_price(total, currency),
            "originalPrice": price,
            "originalTotalPrice": total,
            "currency": currency,
            "currencySymbol": symbol,
        })

    converted = {**cart, "items": items, "currency": currency, "currencySymbol": symbol}
    for field in AMOUNT_FIELDS:
        amount = cart.get(field) or 0
        converted[field] = cache.converted_price(amount, currency)
        converted["original" + field[0].upper() + field[1:]] = amount
    return converted
