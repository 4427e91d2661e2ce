from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from portal.api.deps import (
    get_access_evaluator,
    get_identity_provider,
    get_optional_identity,
    get_sync_orchestrator,
    http_error,
)
from portal.domain.errors import PortalError
from portal.domain.models import AuthStatusRead, Identity, LoginRequest, TokenResponse
from portal.infra.auth import create_session_token
from portal.services.access_service import AccessEvaluator
from portal.services.identity_provider import IdentityProvider
from portal.services.sync_service import SyncOrchestrator

router = APIRouter()

Provider = Annotated[IdentityProvider, Depends(get_identity_provider)]
Orchestrator = Annotated[SyncOrchestrator, Depends(get_sync_orchestrator)]
Evaluator = Annotated[AccessEvaluator, Depends(get_access_evaluator)]


@router.post("/login", response_model=TokenResponse)
async def login(payload: LoginRequest, provider: Provider, orchestrator: Orchestrator) -> TokenResponse:
    try:
        profile = await provider.fetch_profile(payload.access_token)
    except PortalError as exc:
        raise http_error(exc) from exc
    identity, _report = await orchestrator.login(profile, payload.access_token)
    return TokenResponse(access_token=create_session_token(user_id=identity.id))


@router.get("/status", response_model=AuthStatusRead)
def auth_status(
    identity: Annotated[Identity | None, Depends(get_optional_identity)],
    evaluator: Evaluator,
) -> AuthStatusRead:
    return AuthStatusRead(
        authenticated=identity is not None,
        bootstrap_mode=evaluator.bootstrap_mode(),
    )
