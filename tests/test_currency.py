import pytest

from currency import FALLBACK_RATES, RateCache, convert_product


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class Fetcher:
    def __init__(self, rates=None, error=None):
        self.rates = rates or {"INR": 1, "USD": 0.012}
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.error:
            raise self.error
        return dict(self.rates)


def test_converts_with_rate_and_rounds():
    cache = RateCache(fetch=Fetcher())
    assert cache.converted_price(100, "USD", multiplier=1) == 1.2


@pytest.mark.parametrize("target", [None, "", "INR"])
def test_base_currency_is_unchanged(target):
    fetcher = Fetcher()
    cache = RateCache(fetch=fetcher)
    assert cache.convert(100, target) == 100
    assert fetcher.calls == 0


def test_unknown_currency_returns_amount():
    cache = RateCache(fetch=Fetcher())
    assert cache.convert(100, "XYZ") == 100


def test_multiplier_applies_after_conversion():
    cache = RateCache(fetch=Fetcher())
    assert cache.converted_price(1000, "USD", multiplier=1.1) == 13.2


def test_rates_cached_for_an_hour():
    clock = Clock()
    fetcher = Fetcher()
    cache = RateCache(fetch=fetcher, clock=clock)

    cache.get_rates()
    clock.now += 3599
    cache.get_rates()
    assert fetcher.calls == 1

    clock.now += 2
    cache.get_rates()
    assert fetcher.calls == 2


def test_fallback_rates_do_not_refresh_cache():
    fetcher = Fetcher(error=RuntimeError("rate api down"))
    cache = RateCache(fetch=fetcher)

    assert cache.get_rates() == FALLBACK_RATES
    assert cache.get_rates() == FALLBACK_RATES
    # every call retries the API while it is failing
    assert fetcher.calls == 2

    fetcher.error = None
    assert cache.get_rates()["USD"] == 0.012
    assert fetcher.calls == 3


def test_convert_product_keeps_original_price():
    cache = RateCache(fetch=Fetcher())
    product = convert_product({"name": "Tank Pad", "price": 500}, "USD", cache)

    assert product["price"] == 6.0
    assert product["originalPrice"] == 500
    assert product["currencySymbol"] == "$"
    assert convert_product({"price": 500}, "INR", cache) == {"price": 500}
