from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Response, status

from portal.api.deps import http_error, require_perm
from portal.domain.errors import PortalError
from portal.domain.models import (
    AdminSettingRead,
    AdminSettingUpdate,
    Identity,
    ResolvedAuthorizationRead,
    ResolvedRankRead,
    ResolveRequest,
    RoleCatalogEntryCreate,
    RoleCatalogEntryRead,
    WhitelistFormCreate,
    WhitelistFormRead,
)
from portal.domain.staff import PERM_ADMIN
from portal.services.catalog_service import CatalogService
from portal.services.role_resolver import resolve

router = APIRouter()


def get_catalog_service() -> CatalogService:
    return CatalogService()


Admin = Annotated[Identity, Depends(require_perm(PERM_ADMIN))]
Service = Annotated[CatalogService, Depends(get_catalog_service)]


@router.get("/entries", response_model=list[RoleCatalogEntryRead])
def list_entries(_admin: Admin, service: Service) -> list[RoleCatalogEntryRead]:
    try:
        catalog = service.list_role_catalog()
    except PortalError as exc:
        raise http_error(exc) from exc
    return [RoleCatalogEntryRead.model_validate(entry) for entry in catalog.entries]


@router.post("/entries", response_model=RoleCatalogEntryRead, status_code=status.HTTP_201_CREATED)
def create_entry(payload: RoleCatalogEntryCreate, admin: Admin, service: Service) -> RoleCatalogEntryRead:
    try:
        entry = service.create_entry(payload, actor_id=admin.id)
    except PortalError as exc:
        raise http_error(exc) from exc
    return RoleCatalogEntryRead.model_validate(entry)


@router.delete("/entries/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_entry(entry_id: str, admin: Admin, service: Service) -> Response:
    try:
        service.delete_entry(entry_id, actor_id=admin.id)
    except PortalError as exc:
        raise http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/resolve", response_model=ResolvedAuthorizationRead)
def resolve_groups(payload: ResolveRequest, _admin: Admin, service: Service) -> ResolvedAuthorizationRead:
    try:
        resolved = resolve(payload.external_group_ids, service.list_role_catalog())
    except PortalError as exc:
        raise http_error(exc) from exc
    return ResolvedAuthorizationRead(
        staff_tiers=list(resolved.staff_tiers),
        primary_staff_tier=resolved.primary_staff_tier,
        department_memberships={
            code: ResolvedRankRead(
                rank_name=rank.rank_name,
                priority=rank.priority,
                callsign_prefix=rank.callsign_prefix,
            )
            for code, rank in resolved.department_memberships.items()
        },
    )


@router.get("/forms", response_model=list[WhitelistFormRead])
def list_forms(service: Service, department: str | None = None) -> list[WhitelistFormRead]:
    forms = service.list_forms(department_code=department.lower() if department else None, active_only=True)
    return [WhitelistFormRead.model_validate(form) for form in forms]


@router.post("/forms", response_model=WhitelistFormRead, status_code=status.HTTP_201_CREATED)
def create_form(payload: WhitelistFormCreate, _admin: Admin, service: Service) -> WhitelistFormRead:
    try:
        form = service.create_form(payload)
    except PortalError as exc:
        raise http_error(exc) from exc
    return WhitelistFormRead.model_validate(form)


@router.put("/settings/{key}", response_model=AdminSettingRead)
def update_setting(key: str, payload: AdminSettingUpdate, admin: Admin, service: Service) -> AdminSettingRead:
    try:
        setting = service.set_setting(key, payload.value, actor_id=admin.id)
    except PortalError as exc:
        raise http_error(exc) from exc
    return AdminSettingRead.model_validate(setting)
