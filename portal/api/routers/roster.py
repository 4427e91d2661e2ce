from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from portal.api.deps import get_access_evaluator, get_current_identity, http_error, require_perm
from portal.domain.errors import PortalError
from portal.domain.models import Identity, MembershipDetailsUpdate, MembershipRead
from portal.domain.staff import PERM_ADMIN
from portal.services.access_service import AccessEvaluator
from portal.services.membership_store import MembershipStore

router = APIRouter()


def get_membership_store() -> MembershipStore:
    return MembershipStore()


Store = Annotated[MembershipStore, Depends(get_membership_store)]


@router.get("/{department}", response_model=list[MembershipRead])
def list_roster(
    department: str,
    identity: Annotated[Identity, Depends(get_current_identity)],
    evaluator: Annotated[AccessEvaluator, Depends(get_access_evaluator)],
    store: Store,
) -> list[MembershipRead]:
    decision = evaluator.check_access(identity, department.lower())
    if not decision.granted:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"reason": decision.reason.value},
        )
    return [MembershipRead.model_validate(row) for row in store.list_roster(department.lower())]


@router.patch("/{department}/{user_id}", response_model=MembershipRead)
def update_roster_details(
    department: str,
    user_id: str,
    payload: MembershipDetailsUpdate,
    _admin: Annotated[Identity, Depends(require_perm(PERM_ADMIN))],
    store: Store,
) -> MembershipRead:
    try:
        row = store.update_details(user_id, department.lower(), payload)
    except PortalError as exc:
        raise http_error(exc) from exc
    return MembershipRead.model_validate(row)
