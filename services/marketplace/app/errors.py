"""
Domain errors raised by the Marketplace service.

Every error carries the HTTP status it maps to; `main` renders them as
`{"success": false, "message": ...}`.
"""
from fastapi import status


class MarketplaceError(Exception):
    """Base class for expected business-rule failures."""
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND


class InsufficientStock(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST


class InsufficientBalance(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST


class Forbidden(MarketplaceError):
    status_code = status.HTTP_403_FORBIDDEN


class ValidationError(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST


class EscrowStateError(MarketplaceError):
    """Escrow is not in a state that allows the requested transition."""
    status_code = status.HTTP_409_CONFLICT


class WalletInvariantError(MarketplaceError):
    """A wallet operation would have driven a balance negative."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class ExternalServiceFailure(MarketplaceError):
    """The exchange rate provider could not be reached or returned garbage."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
