"""Access decisions for departments and the administrative capability.

Decisions are computed from the identity's stored staff tier and the live
membership rows on every call; nothing is cached here.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from sqlmodel import Session, col, select

from portal.domain.models import Application, Identity, WhitelistForm
from portal.domain.staff import PERM_ADMIN, is_override_tier, meets_staff_tier
from portal.domain.state_machine import OPEN_STATUSES
from portal.infra.db import get_engine
from portal.services.catalog_service import CatalogService
from portal.services.membership_store import MembershipStore


class AccessReason(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    STAFF_OVERRIDE = "staff-override"
    STAFF_TIER = "staff-tier"
    BOOTSTRAP = "bootstrap"
    MEMBERSHIP = "membership"
    NO_MEMBERSHIP = "no-membership"
    INSUFFICIENT_TIER = "insufficient-tier"


@dataclass(frozen=True)
class AccessDecision:
    granted: bool
    reason: AccessReason


@dataclass(frozen=True)
class Eligibility:
    access: AccessDecision
    open_application_id: str | None
    form_id: str | None

    @property
    def can_apply(self) -> bool:
        return (
            self.access.reason == AccessReason.NO_MEMBERSHIP
            and self.form_id is not None
            and self.open_application_id is None
        )


class AccessEvaluator:
    def __init__(
        self,
        memberships: MembershipStore | None = None,
        catalog: CatalogService | None = None,
    ) -> None:
        self._memberships = memberships or MembershipStore()
        self._catalog = catalog or CatalogService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def bootstrap_mode(self) -> bool:
        """True while no staff tier has been mapped in the role catalog."""
        return not self._catalog.has_staff_entries()

    def check_access(self, identity: Identity | None, department: str) -> AccessDecision:
        if identity is None:
            return AccessDecision(False, AccessReason.UNAUTHENTICATED)
        if is_override_tier(identity.staff_tier):
            return AccessDecision(True, AccessReason.STAFF_OVERRIDE)
        if department == PERM_ADMIN and self.bootstrap_mode():
            return AccessDecision(True, AccessReason.BOOTSTRAP)
        if self._memberships.exists(identity.id, department):
            return AccessDecision(True, AccessReason.MEMBERSHIP)
        return AccessDecision(False, AccessReason.NO_MEMBERSHIP)

    def check_permission(self, identity: Identity | None, permission: str) -> AccessDecision:
        if permission != PERM_ADMIN:
            return self.check_access(identity, permission)
        if identity is None:
            return AccessDecision(False, AccessReason.UNAUTHENTICATED)
        if is_override_tier(identity.staff_tier):
            return AccessDecision(True, AccessReason.STAFF_OVERRIDE)
        if meets_staff_tier(identity.staff_tier, self._catalog.admin_panel_tier()):
            return AccessDecision(True, AccessReason.STAFF_TIER)
        if self.bootstrap_mode():
            return AccessDecision(True, AccessReason.BOOTSTRAP)
        return AccessDecision(False, AccessReason.INSUFFICIENT_TIER)

    def open_application(self, user_id: str, department: str | None) -> Application | None:
        with self._session() as session:
            statement = (
                select(Application)
                .where(Application.user_id == user_id)
                .where(col(Application.status).in_(list(OPEN_STATUSES)))
            )
            if department is None:
                statement = statement.where(col(Application.department_code).is_(None))
            else:
                statement = statement.where(Application.department_code == department)
            return session.exec(statement.order_by(col(Application.created_at).desc())).first()

    def application_eligibility(self, identity: Identity | None, department: str) -> Eligibility:
        access = self.check_access(identity, department)
        if identity is None or access.granted:
            return Eligibility(access=access, open_application_id=None, form_id=None)
        open_app = self.open_application(identity.id, department)
        form = self._catalog.active_department_form(department)
        return Eligibility(
            access=access,
            open_application_id=open_app.id if open_app is not None else None,
            form_id=form.id if form is not None else None,
        )

    def can_review(self, identity: Identity | None, form: WhitelistForm) -> bool:
        if identity is None:
            return False
        if is_override_tier(identity.staff_tier):
            return True
        return identity.staff_tier is not None and identity.staff_tier in form.review_tiers
