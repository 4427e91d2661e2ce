from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    CONFIGURATION_ERROR = "configuration-error"
    PROVIDER_UNAVAILABLE = "provider-unavailable"
    TOKEN_INVALID = "token-invalid"
    CONFLICT = "conflict"
    INVALID_TRANSITION = "invalid-transition"
    NOT_FOUND = "not-found"


class PortalError(Exception):
    code: ErrorCode

    def __init__(self, message: str, detail: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.detail = detail or {}

    def as_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"code": self.code.value, "message": str(self)}
        if self.detail:
            body["detail"] = self.detail
        return body


class CatalogConfigurationError(PortalError):
    code = ErrorCode.CONFIGURATION_ERROR


class ProviderError(PortalError):
    """Failure talking to the external identity provider."""

    retryable = False


class ProviderUnavailableError(ProviderError):
    code = ErrorCode.PROVIDER_UNAVAILABLE
    retryable = True


class TokenInvalidError(ProviderError):
    code = ErrorCode.TOKEN_INVALID


class ConflictError(PortalError):
    code = ErrorCode.CONFLICT


class InvalidTransitionError(PortalError):
    code = ErrorCode.INVALID_TRANSITION


class NotFoundError(PortalError):
    code = ErrorCode.NOT_FOUND
