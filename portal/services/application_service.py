from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from portal.domain.errors import ConflictError, InvalidTransitionError, NotFoundError
from portal.domain.models import Application, Identity, WhitelistForm, now_utc
from portal.domain.state_machine import (
    DECISION_OUTCOMES,
    OPEN_STATUSES,
    ApplicationStatus,
    can_transition,
)
from portal.infra.db import get_engine
from portal.infra.events import event_bus

logger = logging.getLogger(__name__)


def open_key_for(user_id: str, department_code: str | None, form_id: str) -> str:
    # General applications are unique per form; department ones per department.
    if department_code is None:
        return f"form:{user_id}:{form_id}"
    return f"dept:{user_id}:{department_code}"


class ApplicationService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_application(self, session: Session, application_id: str) -> Application:
        application = session.get(Application, application_id)
        if application is None:
            raise NotFoundError("application not found")
        return application

    def get(self, application_id: str) -> Application:
        with self._session() as session:
            return self._get_application(session, application_id)

    def get_form(self, form_id: str) -> WhitelistForm:
        with self._session() as session:
            form = session.get(WhitelistForm, form_id)
        if form is None:
            raise NotFoundError("form not found")
        return form

    def submit(
        self,
        user_id: str,
        department_code: str | None,
        form_id: str,
        answers: dict[str, Any] | None = None,
    ) -> Application:
        with self._session() as session:
            if session.get(Identity, user_id) is None:
                raise NotFoundError("user not found")
            form = session.get(WhitelistForm, form_id)
            if form is None or not form.is_active:
                raise NotFoundError("form not found")
            if form.department_code != department_code:
                raise NotFoundError("form not found for department")

            application = Application(
                user_id=user_id,
                department_code=department_code,
                form_id=form_id,
                status=ApplicationStatus.PENDING,
                answers=dict(answers or {}),
                open_key=open_key_for(user_id, department_code, form_id),
            )
            session.add(application)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError(
                    "an open application already exists",
                    {"user_id": user_id, "department_code": department_code, "form_id": form_id},
                ) from exc
            session.refresh(application)

        logger.info("Application %s submitted by %s for %s", application.id, user_id, department_code or "general")
        event_bus.publish_dict(
            "application.submitted",
            {
                "application_id": application.id,
                "department_code": department_code,
                "form_id": form_id,
            },
            actor_id=user_id,
            subject_id=user_id,
        )
        return application

    def _transition(
        self,
        application_id: str,
        reviewer_id: str,
        target: ApplicationStatus,
    ) -> Application:
        with self._session() as session:
            application = self._get_application(session, application_id)
            source = application.status
            if not can_transition(source, target):
                raise InvalidTransitionError(
                    f"illegal transition: {source} -> {target}",
                    {"application_id": application_id, "from": source.value, "to": target.value},
                )
            now = now_utc()
            application.status = target
            application.updated_at = now
            if target == ApplicationStatus.UNDER_REVIEW:
                application.reviewed_by = reviewer_id
            if target in DECISION_OUTCOMES:
                application.decided_at = now
                application.decided_by = reviewer_id
                application.open_key = None
            session.add(application)
            session.commit()
            session.refresh(application)
        return application

    def advance(self, application_id: str, reviewer_id: str) -> Application:
        application = self._transition(application_id, reviewer_id, ApplicationStatus.UNDER_REVIEW)
        event_bus.publish_dict(
            "application.advanced",
            {"application_id": application.id, "status": application.status},
            actor_id=reviewer_id,
            subject_id=application.user_id,
        )
        return application

    def decide(self, application_id: str, reviewer_id: str, outcome: ApplicationStatus) -> Application:
        """Record a terminal decision.

        Approval does not grant membership; the matching provider group has to
        be assigned and picked up by the next sync.
        """
        if outcome not in DECISION_OUTCOMES:
            raise InvalidTransitionError(f"not a decision outcome: {outcome}")
        application = self._transition(application_id, reviewer_id, outcome)
        logger.info("Application %s %s by %s", application.id, outcome, reviewer_id)
        event_bus.publish_dict(
            "application.decided",
            {
                "application_id": application.id,
                "status": application.status,
                "department_code": application.department_code,
                "form_id": application.form_id,
            },
            actor_id=reviewer_id,
            subject_id=application.user_id,
        )
        return application

    def list_for_user(self, user_id: str) -> list[Application]:
        with self._session() as session:
            statement = (
                select(Application)
                .where(Application.user_id == user_id)
                .order_by(col(Application.created_at).desc())
            )
            return list(session.exec(statement).all())

    def list_open(self, department_code: str | None = None, form_id: str | None = None) -> list[Application]:
        with self._session() as session:
            statement = select(Application).where(col(Application.status).in_(list(OPEN_STATUSES)))
            if department_code is not None:
                statement = statement.where(Application.department_code == department_code)
            if form_id is not None:
                statement = statement.where(Application.form_id == form_id)
            return list(session.exec(statement.order_by(col(Application.created_at))).all())
