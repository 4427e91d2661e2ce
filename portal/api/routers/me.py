from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from portal.api.deps import get_current_identity, get_sync_orchestrator, http_error
from portal.domain.errors import PortalError
from portal.domain.models import Identity, IdentityRead, MembershipRead, SyncReportRead
from portal.services.membership_store import MembershipStore
from portal.services.sync_service import SyncOrchestrator

router = APIRouter()

CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]


@router.get("", response_model=IdentityRead)
def read_me(identity: CurrentIdentity) -> IdentityRead:
    return IdentityRead.model_validate(identity)


@router.get("/memberships", response_model=list[MembershipRead])
def list_my_memberships(identity: CurrentIdentity) -> list[MembershipRead]:
    rows = MembershipStore().list_for_user(identity.id)
    return [MembershipRead.model_validate(row) for row in rows]


@router.post("/sync", response_model=SyncReportRead)
async def sync_my_roles(
    identity: CurrentIdentity,
    orchestrator: Annotated[SyncOrchestrator, Depends(get_sync_orchestrator)],
) -> SyncReportRead:
    try:
        report = await orchestrator.refresh(identity.id)
    except PortalError as exc:
        raise http_error(exc) from exc
    return SyncReportRead(
        added=[MembershipRead.model_validate(row) for row in report.added],
        removed=[MembershipRead.model_validate(row) for row in report.removed],
        updated=[MembershipRead.model_validate(row) for row in report.updated],
        tier_changed=report.tier_changed,
    )
