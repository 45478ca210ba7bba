from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class NotFoundError(AppError):
    pass


class ForbiddenError(AppError):
    pass


class ConflictError(AppError):
    """Unique-constraint race lost; resolved by re-reading the winner."""


class ValidationError(AppError):
    pass


class TransientStoreError(AppError):
    """Network or store hiccup; safe to retry."""


class OutboxFullError(AppError):
    """Local pending outbox has no room left; the user must retry manually."""


class FabricDisconnected(AppError):
    """Transport lost; the fabric reconnects and resyncs on its own."""
