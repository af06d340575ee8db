"""
Domain errors raised by the marketplace service.
"""

from __future__ import annotations


class MarketplaceError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 400


class ValidationError(MarketplaceError):
    status_code = 400


class NotFoundError(MarketplaceError):
    status_code = 404


class PermissionDeniedError(MarketplaceError):
    status_code = 403


class InvalidTransitionError(MarketplaceError):
    status_code = 409


class StaleStateError(MarketplaceError):
    """A guarded write found the row in a different state than expected."""

    status_code = 409


class InsufficientCreditsError(MarketplaceError):
    status_code = 402
