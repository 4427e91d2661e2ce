from __future__ import annotations

from collections.abc import Callable
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlmodel import Session

from portal.domain.errors import ErrorCode, PortalError
from portal.domain.models import Identity
from portal.infra.auth import decode_session_token
from portal.infra.db import get_engine
from portal.infra.locks import KeyedLock, build_sync_lock
from portal.services.access_service import AccessEvaluator
from portal.services.identity_provider import DiscordIdentityProvider, IdentityProvider
from portal.services.sync_service import SyncOrchestrator

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

ERROR_STATUS: dict[ErrorCode, int] = {
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorCode.CONFIGURATION_ERROR: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.TOKEN_INVALID: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.PROVIDER_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def http_error(exc: PortalError) -> HTTPException:
    return HTTPException(
        status_code=ERROR_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST),
        detail=exc.as_dict(),
    )


@lru_cache(maxsize=1)
def get_sync_lock() -> KeyedLock:
    return build_sync_lock()


def get_identity_provider() -> IdentityProvider:
    return DiscordIdentityProvider()


def get_access_evaluator() -> AccessEvaluator:
    return AccessEvaluator()


def get_sync_orchestrator(
    provider: Annotated[IdentityProvider, Depends(get_identity_provider)],
) -> SyncOrchestrator:
    return SyncOrchestrator(provider=provider, lock=get_sync_lock())


def get_optional_identity(token: str | None = Depends(oauth2_scheme)) -> Identity | None:
    if not token:
        return None
    try:
        claims = decode_session_token(token)
    except Exception:
        return None
    with Session(get_engine(), expire_on_commit=False) as session:
        return session.get(Identity, claims["sub"])


def get_current_identity(
    identity: Annotated[Identity | None, Depends(get_optional_identity)],
) -> Identity:
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing session",
        )
    return identity


def require_perm(permission: str) -> Callable[..., Identity]:
    def _checker(
        identity: Annotated[Identity, Depends(get_current_identity)],
        evaluator: Annotated[AccessEvaluator, Depends(get_access_evaluator)],
    ) -> Identity:
        decision = evaluator.check_permission(identity, permission)
        if not decision.granted:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission: {permission}",
            )
        return identity

    return _checker
