"""
Currency Schemas.
"""

from decimal import Decimal
from pydantic import BaseModel


class ConversionDetails(BaseModel):
    """Local amount shown alongside its settlement-currency equivalent."""
    local_currency: str
    foreign_currency: str
    amount_local: Decimal
    amount_foreign: Decimal
    exchange_rate: Decimal
    formatted_local: str
    formatted_foreign: str
    rate_text: str


class ExchangeRateResponse(BaseModel):
    local_currency: str
    foreign_currency: str
    exchange_rate: Decimal
    cached: bool
    fixed_rate: bool
    rate_text: str
