"""
Currency conversion between the booking currency and the gateway's
settlement currency.

The rate is expressed as local units per 1 foreign unit (e.g. 24500 VND per
USD). It is cached with a TTL; when the live source cannot be used the
configured fixed rate applies.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx

from backend.app.core.config import Settings, settings as default_settings
from backend.app.domain.pricing.money import Number, to_decimal, to_money
from backend.app.schemas.currency import ConversionDetails
from backend.app.services.rate_cache import RateCache, exchange_rate_key

logger = logging.getLogger(__name__)

RATE_PLACES = Decimal("0.0001")


class CurrencyConverter:

    def __init__(
        self,
        cache: RateCache,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.cache = cache
        self.settings = settings or default_settings
        self.http_client = http_client
        self.local_currency = self.settings.local_currency
        self.foreign_currency = self.settings.paypal_currency

    @property
    def cache_key(self) -> str:
        return exchange_rate_key(self.local_currency, self.foreign_currency)

    async def get_exchange_rate(self) -> Decimal:
        """Local units per 1 foreign unit, from cache or freshly fetched."""
        cached = await self.cache.get(self.cache_key)
        if cached is not None:
            return cached

        rate = await self.fetch_exchange_rate()
        await self.cache.set(self.cache_key, rate)
        return rate

    async def fetch_exchange_rate(self) -> Decimal:
        default_rate = to_decimal(self.settings.default_exchange_rate).quantize(RATE_PLACES)

        if self.settings.use_fixed_exchange_rate:
            return default_rate

        try:
            if self.http_client is not None:
                resp = await self.http_client.get(self.settings.exchange_rate_api_url)
            else:
                async with httpx.AsyncClient(timeout=self.settings.exchange_rate_timeout_seconds) as client:
                    resp = await client.get(self.settings.exchange_rate_api_url)
            resp.raise_for_status()
            raw = resp.json()["rates"][self.local_currency]
            rate = Decimal(str(raw)).quantize(RATE_PLACES)
        except (httpx.HTTPError, KeyError, TypeError, ValueError, InvalidOperation) as exc:
            logger.warning(
                "Failed to fetch exchange rate from API, using default %s: %s", default_rate, exc
            )
            return default_rate

        if rate <= 0:
            logger.warning("Exchange rate API returned non-positive rate %s, using default", rate)
            return default_rate

        logger.info("Exchange rate fetched from API: 1 %s = %s %s", self.foreign_currency, rate, self.local_currency)
        return rate

    async def refresh_rate(self) -> Decimal:
        """Drop the cached rate and fetch a new one."""
        await self.cache.invalidate(self.cache_key)
        return await self.get_exchange_rate()

    async def is_cached(self) -> bool:
        return await self.cache.exists(self.cache_key)

    async def to_foreign(self, amount_local: Number, rate: Optional[Decimal] = None) -> Decimal:
        rate = rate or await self.get_exchange_rate()
        return to_money(to_decimal(amount_local) / rate)

    async def to_local(self, amount_foreign: Number, rate: Optional[Decimal] = None) -> Decimal:
        rate = rate or await self.get_exchange_rate()
        return to_money(to_decimal(amount_foreign) * rate)

    async def conversion_details(self, amount_local: Number) -> ConversionDetails:
        rate = await self.get_exchange_rate()
        amount_local = to_money(amount_local)
        amount_foreign = await self.to_foreign(amount_local, rate)

        return ConversionDetails(
            local_currency=self.local_currency,
            foreign_currency=self.foreign_currency,
            amount_local=amount_local,
            amount_foreign=amount_foreign,
            exchange_rate=rate,
            formatted_local=format_amount(amount_local, self.local_currency),
            formatted_foreign=format_amount(amount_foreign, self.foreign_currency),
            rate_text=self.rate_text(rate),
        )

    def rate_text(self, rate: Decimal) -> str:
        return f"1 {self.foreign_currency} = {rate:,.0f} {self.local_currency}"


def format_amount(amount: Number, currency: str) -> str:
    """
    Display format: VND as "1.000.000 ₫", USD as "$1,234.56", anything
    else as "1,234.56 EUR".
    """
    amount = to_decimal(amount)
    if currency == "VND":
        return f"{amount:,.0f}".replace(",", ".") + " ₫"
    if currency == "USD":
        return f"${amount:,.2f}"
    return f"{amount:,.2f} {currency}"
