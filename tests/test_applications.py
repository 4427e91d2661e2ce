from __future__ import annotations

import threading
from collections.abc import Generator
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, select

from portal.domain.errors import ConflictError, ErrorCode, InvalidTransitionError, NotFoundError
from portal.domain.models import Application, EventRecord, Identity, WhitelistForm, WhitelistFormCreate
from portal.domain.state_machine import ApplicationStatus, can_transition, is_terminal
from portal.infra import db
from portal.services.application_service import ApplicationService, open_key_for
from portal.services.catalog_service import CatalogService, invalidate_catalog_cache


@pytest.fixture()
def app_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[object, None, None]:
    db_path = tmp_path / "applications_test.db"
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


def _identity(external_id: str) -> Identity:
    identity = Identity(external_id=external_id, display_name=external_id)
    with Session(db.get_engine(), expire_on_commit=False) as session:
        session.add(identity)
        session.commit()
        session.refresh(identity)
    return identity


def _form(key: str, department_code: str | None, *, is_active: bool = True) -> WhitelistForm:
    return CatalogService().create_form(
        WhitelistFormCreate(
            key=key,
            title=key.title(),
            department_code=department_code,
            is_active=is_active,
            review_tiers=["moderator"],
        )
    )


def _event_types() -> list[str]:
    with Session(db.get_engine()) as session:
        return [row.event_type for row in session.exec(select(EventRecord)).all()]


def test_state_machine_transitions() -> None:
    assert can_transition(ApplicationStatus.PENDING, ApplicationStatus.UNDER_REVIEW)
    assert can_transition(ApplicationStatus.PENDING, ApplicationStatus.APPROVED)
    assert can_transition(ApplicationStatus.UNDER_REVIEW, ApplicationStatus.DENIED)
    assert not can_transition(ApplicationStatus.UNDER_REVIEW, ApplicationStatus.PENDING)
    assert not can_transition(ApplicationStatus.APPROVED, ApplicationStatus.DENIED)
    assert not can_transition(ApplicationStatus.DENIED, ApplicationStatus.UNDER_REVIEW)
    assert is_terminal(ApplicationStatus.APPROVED)
    assert not is_terminal(ApplicationStatus.UNDER_REVIEW)


def test_fire_application_lifecycle(app_engine: object) -> None:
    applicant = _identity("applicant")
    reviewer = _identity("reviewer")
    form = _form("fire-whitelist", "fire")
    service = ApplicationService()

    application = service.submit(applicant.id, "fire", form.id, {"experience": "2 years"})
    assert application.status == ApplicationStatus.PENDING
    assert application.answers == {"experience": "2 years"}

    with pytest.raises(ConflictError) as exc_info:
        service.submit(applicant.id, "fire", form.id)
    assert exc_info.value.code == ErrorCode.CONFLICT

    advanced = service.advance(application.id, reviewer.id)
    assert advanced.status == ApplicationStatus.UNDER_REVIEW
    assert advanced.reviewed_by == reviewer.id

    denied = service.decide(application.id, reviewer.id, ApplicationStatus.DENIED)
    assert denied.status == ApplicationStatus.DENIED
    assert denied.decided_by == reviewer.id
    assert denied.decided_at is not None

    with pytest.raises(InvalidTransitionError) as transition_info:
        service.advance(application.id, reviewer.id)
    assert transition_info.value.code == ErrorCode.INVALID_TRANSITION

    assert _event_types() == [
        "application.submitted",
        "application.advanced",
        "application.decided",
    ]


def test_decide_twice_is_invalid_transition(app_engine: object) -> None:
    applicant = _identity("applicant")
    reviewer = _identity("reviewer")
    form = _form("police-whitelist", "police")
    service = ApplicationService()

    application = service.submit(applicant.id, "police", form.id)
    approved = service.decide(application.id, reviewer.id, ApplicationStatus.APPROVED)
    assert approved.status == ApplicationStatus.APPROVED

    with pytest.raises(InvalidTransitionError):
        service.decide(application.id, reviewer.id, ApplicationStatus.APPROVED)
    assert service.get(application.id).status == ApplicationStatus.APPROVED


def test_decide_rejects_non_terminal_outcome(app_engine: object) -> None:
    applicant = _identity("applicant")
    form = _form("police-whitelist", "police")
    service = ApplicationService()
    application = service.submit(applicant.id, "police", form.id)

    with pytest.raises(InvalidTransitionError):
        service.decide(application.id, "reviewer", ApplicationStatus.UNDER_REVIEW)
    assert service.get(application.id).status == ApplicationStatus.PENDING


def test_new_application_allowed_after_decision(app_engine: object) -> None:
    applicant = _identity("applicant")
    form = _form("fire-whitelist", "fire")
    service = ApplicationService()

    first = service.submit(applicant.id, "fire", form.id)
    service.decide(first.id, "reviewer", ApplicationStatus.DENIED)
    second = service.submit(applicant.id, "fire", form.id)

    assert second.id != first.id
    assert second.status == ApplicationStatus.PENDING
    assert [item.id for item in service.list_open(department_code="fire")] == [second.id]
    assert {item.id for item in service.list_for_user(applicant.id)} == {first.id, second.id}


def test_open_applications_are_per_department(app_engine: object) -> None:
    applicant = _identity("applicant")
    fire = _form("fire-whitelist", "fire")
    police = _form("police-whitelist", "police")
    service = ApplicationService()

    service.submit(applicant.id, "fire", fire.id)
    service.submit(applicant.id, "police", police.id)

    assert len(service.list_open()) == 2
    assert len(service.list_open(department_code="police")) == 1
    assert len(service.list_open(form_id=fire.id)) == 1


def test_general_applications_are_unique_per_form(app_engine: object) -> None:
    applicant = _identity("applicant")
    staff = _form("staff-application", None)
    developer = _form("developer-application", None)
    service = ApplicationService()

    service.submit(applicant.id, None, staff.id)
    service.submit(applicant.id, None, developer.id)
    with pytest.raises(ConflictError):
        service.submit(applicant.id, None, staff.id)


def test_open_key_format() -> None:
    assert open_key_for("u1", "fire", "f1") == "dept:u1:fire"
    assert open_key_for("u1", None, "f1") == "form:u1:f1"


def test_department_and_general_keys_never_collide(app_engine: object) -> None:
    applicant = _identity("applicant")
    general = _form("staff-application", None)
    # a department code that mimics the general key layout
    odd = _form("odd-whitelist", f":{general.id}")
    service = ApplicationService()

    first = service.submit(applicant.id, None, general.id)
    second = service.submit(applicant.id, f":{general.id}", odd.id)

    assert first.open_key != second.open_key
    assert len(service.list_for_user(applicant.id)) == 2


def test_concurrent_submits_admit_exactly_one(app_engine: object) -> None:
    applicant = _identity("applicant")
    form = _form("fire-whitelist", "fire")
    barrier = threading.Barrier(2)

    def _submit() -> object:
        barrier.wait()
        try:
            return ApplicationService().submit(applicant.id, "fire", form.id)
        except ConflictError as exc:
            return exc

    with ThreadPoolExecutor(max_workers=2) as pool:
        outcomes = list(pool.map(lambda _: _submit(), range(2)))

    assert sum(isinstance(item, Application) for item in outcomes) == 1
    assert sum(isinstance(item, ConflictError) for item in outcomes) == 1
    assert len(ApplicationService().list_open(department_code="fire")) == 1


def test_submit_rejects_unknown_or_mismatched_form(app_engine: object) -> None:
    applicant = _identity("applicant")
    fire = _form("fire-whitelist", "fire")
    closed = _form("ems-whitelist", "ems", is_active=False)
    service = ApplicationService()

    with pytest.raises(NotFoundError):
        service.submit(applicant.id, "police", fire.id)
    with pytest.raises(NotFoundError):
        service.submit(applicant.id, "ems", closed.id)
    with pytest.raises(NotFoundError):
        service.submit(applicant.id, "fire", "missing-form")
    with pytest.raises(NotFoundError):
        service.submit("missing-user", "fire", fire.id)


def test_transition_on_missing_application(app_engine: object) -> None:
    with pytest.raises(NotFoundError):
        ApplicationService().advance("missing", "reviewer")
