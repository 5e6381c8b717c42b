"""
HTTP client for the external exchange rate provider.

The provider returns a JSON document of the form
`{"base": "USD", "rates": {"USD": 1, "NGN": 1500.5, ...}}`.
"""
import httpx
from typing import Dict, Optional
from decimal import Decimal, InvalidOperation

from ..config import EXCHANGE_RATE_API_URL, EXCHANGE_RATE_TIMEOUT
from ..errors import ExternalServiceFailure


async def fetch_latest_rates(url: Optional[str] = None) -> Dict[str, Decimal]:
    """
    Retrieve the full rate table from the provider.

    Args:
        url: Override for the provider endpoint

    Returns:
        Mapping of currency code to units per base currency

    Raises:
        ExternalServiceFailure: If the provider is unreachable or the payload is unusable
    """
    try:
        async with httpx.AsyncClient(timeout=EXCHANGE_RATE_TIMEOUT) as client:
            response = await client.get(url or EXCHANGE_RATE_API_URL)
            response.raise_for_status()
            payload = response.json()
    except (httpx.HTTPError, ValueError) as e:
        raise ExternalServiceFailure(f"Exchange rate provider error: {str(e)}") from e

    return parse_rates(payload)


def parse_rates(payload: dict) -> Dict[str, Decimal]:
    """
    Validate a provider payload and convert its rates to Decimal.

    Raises:
        ExternalServiceFailure: If no usable rates are present
    """
    raw_rates = payload.get("rates") if isinstance(payload, dict) else None
    if not isinstance(raw_rates, dict) or not raw_rates:
        raise ExternalServiceFailure("Exchange rate provider returned no rates")

    rates = {}
    for code, value in raw_rates.items():
        try:
            rate = Decimal(str(value))
        except (InvalidOperation, ValueError):
            continue
        # A zero or negative rate would break division during conversion
        if rate.is_finite() and rate > 0:
            rates[str(code).upper()] = rate

    if not rates:
        raise ExternalServiceFailure("Exchange rate provider returned no valid rates")
    return rates
