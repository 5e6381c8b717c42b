"""
Currency conversion backed by a process-wide cache of exchange rates.

Rates are quoted against a single base currency (USD from the default
provider). The cache starts empty; until the first successful refresh every
conversion is a passthrough. Refresh failures keep the previous table.

Rounding: converted amounts are rounded to 2 decimal places with ROUND_HALF_UP.
"""
import asyncio
import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from types import MappingProxyType
from typing import Dict, Mapping, Optional

from .clients import exchange_rates_client
from .config import EXCHANGE_RATE_REFRESH_SECONDS
from .errors import ExternalServiceFailure

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "NGN": "₦",
    "GHS": "₵",
    "ZAR": "R",
    "KES": "KSh",
    "JPY": "¥",
    "CNY": "¥",
    "INR": "₹",
    "CAD": "C$",
    "AUD": "A$",
    "BRL": "R$",
    "MXN": "Mex$",
}


def quantize_money(amount) -> Decimal:
    """Round an amount to cents, half-up."""
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)


class RateTable:
    """
    Holder for the current exchange rate table.

    The table is replaced wholesale on refresh, so a reader that grabbed
    `rates` always sees one complete, consistent table.
    """

    def __init__(self, base: str = "USD"):
        self.base = base
        self._rates: Mapping[str, Decimal] = MappingProxyType({})
        self.updated_at: Optional[datetime] = None

    @property
    def rates(self) -> Mapping[str, Decimal]:
        return self._rates

    def replace(self, rates: Dict[str, Decimal]) -> None:
        self._rates = MappingProxyType(dict(rates))
        self.updated_at = datetime.utcnow()

    def clear(self) -> None:
        self._rates = MappingProxyType({})
        self.updated_at = None


rate_table = RateTable()


def convert(amount, from_currency: str, to_currency: str, rates: Optional[Mapping[str, Decimal]] = None) -> Decimal:
    """
    Convert an amount between two currencies via the base currency.

    If either currency is missing from the rate table the amount is returned
    unchanged (rounded to cents), so ordering keeps working while the
    provider is down.

    Args:
        amount: Amount in from_currency
        from_currency: Source currency code
        to_currency: Target currency code
        rates: Rate table to use instead of the process-wide cache

    Returns:
        Converted amount rounded to 2 decimal places
    """
    table = rate_table.rates if rates is None else rates
    amount = Decimal(str(amount))

    if from_currency == to_currency:
        return quantize_money(amount)

    from_rate = table.get(from_currency)
    to_rate = table.get(to_currency)
    if not from_rate or not to_rate:
        logger.warning(f"No exchange rate for {from_currency}->{to_currency}; passing amount through unconverted")
        return quantize_money(amount)

    amount_in_base = amount / from_rate
    return quantize_money(amount_in_base * to_rate)


def currency_symbol(currency_code: str) -> str:
    """Display symbol for a currency, falling back to the code itself."""
    return CURRENCY_SYMBOLS.get(currency_code, currency_code + " ")


def format_price(amount: Decimal, currency_code: str) -> str:
    """Format an amount with its currency symbol and thousands separators."""
    return f"{currency_symbol(currency_code)}{quantize_money(amount):,}"


async def refresh_rates() -> Mapping[str, Decimal]:
    """
    Fetch a fresh rate table and swap it into the cache.

    Failures are logged and the previous table is kept; nothing is raised.

    Returns:
        The rate table in effect after the attempt
    """
    try:
        rates = await exchange_rates_client.fetch_latest_rates()
    except ExternalServiceFailure as e:
        logger.error(f"Error fetching exchange rates: {e.message}")
        return rate_table.rates

    rate_table.replace(rates)
    logger.info(f"Exchange rates updated ({len(rates)} currencies)")
    return rate_table.rates


async def run_rate_refresher(interval: int = EXCHANGE_RATE_REFRESH_SECONDS) -> None:
    """
    Refresh rates once immediately and then every `interval` seconds until cancelled.

    An unexpected error in one refresh is logged and the loop carries on.
    """
    while True:
        try:
            await refresh_rates()
        except Exception:
            logger.exception("Unexpected error refreshing exchange rates")
        await asyncio.sleep(interval)
