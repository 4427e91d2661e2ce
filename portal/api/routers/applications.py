from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from portal.api.deps import get_access_evaluator, get_current_identity, http_error
from portal.domain.errors import PortalError
from portal.domain.models import (
    Application,
    ApplicationDecision,
    ApplicationRead,
    ApplicationSubmit,
    Identity,
)
from portal.services.access_service import AccessEvaluator
from portal.services.application_service import ApplicationService

router = APIRouter()


def get_application_service() -> ApplicationService:
    return ApplicationService()


CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]
Service = Annotated[ApplicationService, Depends(get_application_service)]
Evaluator = Annotated[AccessEvaluator, Depends(get_access_evaluator)]


def _ensure_reviewer(
    identity: Identity,
    application: Application,
    service: ApplicationService,
    evaluator: AccessEvaluator,
) -> None:
    form = service.get_form(application.form_id)
    if not evaluator.can_review(identity, form):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to review this application",
        )


@router.post("", response_model=ApplicationRead, status_code=status.HTTP_201_CREATED)
def submit_application(payload: ApplicationSubmit, identity: CurrentIdentity, service: Service) -> ApplicationRead:
    department_code = payload.department_code.lower() if payload.department_code else None
    try:
        application = service.submit(identity.id, department_code, payload.form_id, payload.answers)
    except PortalError as exc:
        raise http_error(exc) from exc
    return ApplicationRead.model_validate(application)


@router.get("/mine", response_model=list[ApplicationRead])
def list_my_applications(identity: CurrentIdentity, service: Service) -> list[ApplicationRead]:
    return [ApplicationRead.model_validate(item) for item in service.list_for_user(identity.id)]


@router.get("", response_model=list[ApplicationRead])
def list_open_applications(
    identity: CurrentIdentity,
    service: Service,
    evaluator: Evaluator,
    department: str | None = Query(default=None),
    form_id: str | None = Query(default=None),
) -> list[ApplicationRead]:
    applications = service.list_open(
        department_code=department.lower() if department else None,
        form_id=form_id,
    )
    forms = {item.form_id: service.get_form(item.form_id) for item in applications}
    return [
        ApplicationRead.model_validate(item)
        for item in applications
        if evaluator.can_review(identity, forms[item.form_id])
    ]


@router.get("/{application_id}", response_model=ApplicationRead)
def get_application(
    application_id: str,
    identity: CurrentIdentity,
    service: Service,
    evaluator: Evaluator,
) -> ApplicationRead:
    try:
        application = service.get(application_id)
        if application.user_id != identity.id:
            _ensure_reviewer(identity, application, service, evaluator)
    except PortalError as exc:
        raise http_error(exc) from exc
    return ApplicationRead.model_validate(application)


@router.post("/{application_id}/advance", response_model=ApplicationRead)
def advance_application(
    application_id: str,
    identity: CurrentIdentity,
    service: Service,
    evaluator: Evaluator,
) -> ApplicationRead:
    try:
        _ensure_reviewer(identity, service.get(application_id), service, evaluator)
        application = service.advance(application_id, identity.id)
    except PortalError as exc:
        raise http_error(exc) from exc
    return ApplicationRead.model_validate(application)


@router.post("/{application_id}/decide", response_model=ApplicationRead)
def decide_application(
    application_id: str,
    payload: ApplicationDecision,
    identity: CurrentIdentity,
    service: Service,
    evaluator: Evaluator,
) -> ApplicationRead:
    try:
        _ensure_reviewer(identity, service.get(application_id), service, evaluator)
        application = service.decide(application_id, identity.id, payload.outcome)
    except PortalError as exc:
        raise http_error(exc) from exc
    return ApplicationRead.model_validate(application)
