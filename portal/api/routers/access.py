from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from portal.api.deps import get_access_evaluator, get_optional_identity
from portal.domain.models import AccessDecisionRead, EligibilityRead, Identity
from portal.services.access_service import AccessEvaluator

router = APIRouter()

OptionalIdentity = Annotated[Identity | None, Depends(get_optional_identity)]
Evaluator = Annotated[AccessEvaluator, Depends(get_access_evaluator)]


@router.get("/permissions/{permission}", response_model=AccessDecisionRead)
def check_permission(permission: str, identity: OptionalIdentity, evaluator: Evaluator) -> AccessDecisionRead:
    decision = evaluator.check_permission(identity, permission)
    return AccessDecisionRead(department=permission, granted=decision.granted, reason=decision.reason)


@router.get("/{department}", response_model=AccessDecisionRead)
def check_department_access(department: str, identity: OptionalIdentity, evaluator: Evaluator) -> AccessDecisionRead:
    decision = evaluator.check_access(identity, department.lower())
    return AccessDecisionRead(department=department.lower(), granted=decision.granted, reason=decision.reason)


@router.get("/{department}/eligibility", response_model=EligibilityRead)
def application_eligibility(department: str, identity: OptionalIdentity, evaluator: Evaluator) -> EligibilityRead:
    eligibility = evaluator.application_eligibility(identity, department.lower())
    return EligibilityRead(
        department=department.lower(),
        granted=eligibility.access.granted,
        reason=eligibility.access.reason,
        open_application_id=eligibility.open_application_id,
        form_id=eligibility.form_id,
        can_apply=eligibility.can_apply,
    )
