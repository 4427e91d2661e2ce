from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine

from portal.domain.models import (
    Identity,
    Membership,
    RoleCatalogEntryCreate,
    RoleKind,
    WhitelistFormCreate,
)
from portal.domain.staff import PERM_ADMIN, SETTING_ADMIN_PANEL_TIER
from portal.infra import db
from portal.services.access_service import AccessEvaluator, AccessReason
from portal.services.application_service import ApplicationService
from portal.services.catalog_service import CatalogService, invalidate_catalog_cache


@pytest.fixture()
def access_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[object, None, None]:
    db_path = tmp_path / "access_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    invalidate_catalog_cache()
    yield test_engine
    invalidate_catalog_cache()


def _identity(external_id: str, staff_tier: str | None = None) -> Identity:
    identity = Identity(
        external_id=external_id,
        display_name=external_id,
        staff_tier=staff_tier,
        staff_tiers=[staff_tier] if staff_tier else [],
        is_staff=staff_tier is not None,
    )
    with Session(db.get_engine(), expire_on_commit=False) as session:
        session.add(identity)
        session.commit()
        session.refresh(identity)
    return identity


def _membership(user_id: str, department: str, rank: str) -> None:
    with Session(db.get_engine(), expire_on_commit=False) as session:
        session.add(Membership(user_id=user_id, department_code=department, rank_name=rank))
        session.commit()


def _map_staff_tier(group_id: str, tier: str) -> None:
    CatalogService().create_entry(
        RoleCatalogEntryCreate(
            external_group_id=group_id,
            kind=RoleKind.STAFF_TIER,
            staff_tier_name=tier,
        )
    )


def test_unauthenticated_is_denied_first(access_engine: object) -> None:
    evaluator = AccessEvaluator()
    decision = evaluator.check_access(None, "police")
    assert decision.granted is False
    assert decision.reason == AccessReason.UNAUTHENTICATED

    admin = evaluator.check_permission(None, PERM_ADMIN)
    assert admin.granted is False
    assert admin.reason == AccessReason.UNAUTHENTICATED


def test_override_tier_grants_any_department(access_engine: object) -> None:
    director = _identity("director-1", staff_tier="director")
    executive = _identity("executive-1", staff_tier="executive")
    evaluator = AccessEvaluator()

    for identity in (director, executive):
        decision = evaluator.check_access(identity, "police")
        assert decision.granted is True
        assert decision.reason == AccessReason.STAFF_OVERRIDE


def test_lower_staff_tier_does_not_override_membership(access_engine: object) -> None:
    moderator = _identity("moderator-1", staff_tier="moderator")
    decision = AccessEvaluator().check_access(moderator, "police")
    assert decision.granted is False
    assert decision.reason == AccessReason.NO_MEMBERSHIP


def test_membership_grants_only_its_department(access_engine: object) -> None:
    user = _identity("user-1")
    _membership(user.id, "police", "Officer")
    evaluator = AccessEvaluator()

    police = evaluator.check_access(user, "police")
    assert police.granted is True
    assert police.reason == AccessReason.MEMBERSHIP

    fire = evaluator.check_access(user, "fire")
    assert fire.granted is False
    assert fire.reason == AccessReason.NO_MEMBERSHIP


def test_bootstrap_grants_admin_until_a_staff_tier_is_mapped(access_engine: object) -> None:
    user = _identity("user-1")
    evaluator = AccessEvaluator()

    assert evaluator.bootstrap_mode() is True
    decision = evaluator.check_permission(user, PERM_ADMIN)
    assert decision.granted is True
    assert decision.reason == AccessReason.BOOTSTRAP

    # bootstrap never opens departments
    police = evaluator.check_access(user, "police")
    assert police.granted is False
    assert police.reason == AccessReason.NO_MEMBERSHIP

    _map_staff_tier("g-director", "director")
    assert evaluator.bootstrap_mode() is False
    decision = evaluator.check_permission(user, PERM_ADMIN)
    assert decision.granted is False
    assert decision.reason == AccessReason.INSUFFICIENT_TIER


def test_admin_panel_tier_setting_controls_admin(access_engine: object) -> None:
    _map_staff_tier("g-director", "director")
    manager = _identity("manager-1", staff_tier="manager")
    evaluator = AccessEvaluator()

    assert evaluator.check_permission(manager, PERM_ADMIN).reason == AccessReason.INSUFFICIENT_TIER

    CatalogService().set_setting(SETTING_ADMIN_PANEL_TIER, "manager")
    decision = evaluator.check_permission(manager, PERM_ADMIN)
    assert decision.granted is True
    assert decision.reason == AccessReason.STAFF_TIER

    support = _identity("support-1", staff_tier="support")
    assert evaluator.check_permission(support, PERM_ADMIN).granted is False


def test_non_admin_permission_is_a_department_check(access_engine: object) -> None:
    user = _identity("user-1")
    _membership(user.id, "ems", "Paramedic")
    decision = AccessEvaluator().check_permission(user, "ems")
    assert decision.granted is True
    assert decision.reason == AccessReason.MEMBERSHIP


def test_eligibility_reports_form_and_open_application(access_engine: object) -> None:
    user = _identity("user-1")
    form = CatalogService().create_form(
        WhitelistFormCreate(key="police-whitelist", title="Police", department_code="police")
    )
    evaluator = AccessEvaluator()

    eligibility = evaluator.application_eligibility(user, "police")
    assert eligibility.access.granted is False
    assert eligibility.form_id == form.id
    assert eligibility.open_application_id is None
    assert eligibility.can_apply is True

    application = ApplicationService().submit(user.id, "police", form.id, {"why": "serve"})
    eligibility = evaluator.application_eligibility(user, "police")
    assert eligibility.open_application_id == application.id
    assert eligibility.can_apply is False


def test_eligibility_without_form_cannot_apply(access_engine: object) -> None:
    user = _identity("user-1")
    eligibility = AccessEvaluator().application_eligibility(user, "fire")
    assert eligibility.form_id is None
    assert eligibility.can_apply is False


def test_eligibility_for_member_skips_application_lookup(access_engine: object) -> None:
    user = _identity("user-1")
    _membership(user.id, "police", "Officer")
    eligibility = AccessEvaluator().application_eligibility(user, "police")
    assert eligibility.access.granted is True
    assert eligibility.can_apply is False


def test_can_review_uses_form_review_tiers(access_engine: object) -> None:
    form = CatalogService().create_form(
        WhitelistFormCreate(
            key="fire-whitelist",
            title="Fire",
            department_code="fire",
            review_tiers=["moderator"],
        )
    )
    evaluator = AccessEvaluator()
    assert evaluator.can_review(_identity("mod-1", staff_tier="moderator"), form) is True
    assert evaluator.can_review(_identity("dir-1", staff_tier="director"), form) is True
    assert evaluator.can_review(_identity("sup-1", staff_tier="support"), form) is False
    assert evaluator.can_review(_identity("user-1"), form) is False
    assert evaluator.can_review(None, form) is False
