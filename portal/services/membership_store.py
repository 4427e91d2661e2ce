from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from portal.domain.errors import ConflictError, NotFoundError
from portal.domain.models import Membership, MembershipDetailsUpdate, now_utc
from portal.infra.db import get_engine
from portal.services.role_resolver import ResolvedRank

logger = logging.getLogger(__name__)


@dataclass
class MembershipDiff:
    added: list[Membership] = field(default_factory=list)
    updated: list[Membership] = field(default_factory=list)
    removed: list[Membership] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.updated or self.removed)


def next_callsign_number(used: set[int]) -> int:
    number = 1
    while number in used:
        number += 1
    return number


def _callsign_number(callsign: str | None, prefix: str) -> int | None:
    if not callsign or not callsign.startswith(prefix):
        return None
    suffix = callsign[len(prefix):]
    return int(suffix) if suffix.isdigit() else None


class MembershipStore:
    """Persisted department memberships.

    Rows are only written through ``reconcile`` (driven by a sync run, inside
    the caller's session) and ``update_details``; nothing else touches the table.
    Callsigns are unique per department and rank.
    """

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def list_for_user(self, user_id: str) -> list[Membership]:
        with self._session() as session:
            statement = (
                select(Membership)
                .where(Membership.user_id == user_id)
                .order_by(Membership.department_code)
            )
            return list(session.exec(statement).all())

    def get(self, user_id: str, department_code: str) -> Membership | None:
        with self._session() as session:
            statement = (
                select(Membership)
                .where(Membership.user_id == user_id)
                .where(Membership.department_code == department_code)
            )
            return session.exec(statement).first()

    def exists(self, user_id: str, department_code: str) -> bool:
        return self.get(user_id, department_code) is not None

    def list_roster(self, department_code: str) -> list[Membership]:
        with self._session() as session:
            statement = (
                select(Membership)
                .where(Membership.department_code == department_code)
                .order_by(Membership.rank_name, Membership.callsign)
            )
            return list(session.exec(statement).all())

    def _allocate_callsign(
        self,
        session: Session,
        user_id: str,
        department_code: str,
        rank: ResolvedRank,
    ) -> str | None:
        prefix = rank.callsign_prefix
        if not prefix:
            return None
        statement = (
            select(Membership.callsign)
            .where(Membership.department_code == department_code)
            .where(Membership.rank_name == rank.rank_name)
            .where(Membership.user_id != user_id)
            .where(col(Membership.callsign).is_not(None))
        )
        used = {
            number
            for number in (_callsign_number(value, prefix) for value in session.exec(statement).all())
            if number is not None
        }
        return f"{prefix}{next_callsign_number(used)}"

    def reconcile(
        self,
        session: Session,
        user_id: str,
        target: Mapping[str, ResolvedRank],
    ) -> MembershipDiff:
        """Bring the user's rows in line with the resolved department ranks.

        Departments missing from ``target`` are deleted. Callers must only pass
        a target computed from a successful provider fetch. Caller commits.
        """
        diff = MembershipDiff()
        current = {
            row.department_code: row
            for row in session.exec(select(Membership).where(Membership.user_id == user_id)).all()
        }

        for department_code in sorted(target):
            rank = target[department_code]
            row = current.get(department_code)
            if row is None:
                row = Membership(
                    user_id=user_id,
                    department_code=department_code,
                    rank_name=rank.rank_name,
                    callsign=self._allocate_callsign(session, user_id, department_code, rank),
                )
                session.add(row)
                diff.added.append(row)
                continue
            if row.rank_name != rank.rank_name:
                callsign = self._allocate_callsign(session, user_id, department_code, rank)
                row.rank_name = rank.rank_name
                row.callsign = callsign
                row.updated_at = now_utc()
                session.add(row)
                diff.updated.append(row)

        for department_code in sorted(set(current) - set(target)):
            row = current[department_code]
            session.delete(row)
            diff.removed.append(row)
        return diff

    def update_details(
        self,
        user_id: str,
        department_code: str,
        payload: MembershipDetailsUpdate,
    ) -> Membership:
        with self._session() as session:
            statement = (
                select(Membership)
                .where(Membership.user_id == user_id)
                .where(Membership.department_code == department_code)
            )
            row = session.exec(statement).first()
            if row is None:
                raise NotFoundError("membership not found")
            updates = payload.model_dump(exclude_unset=True)
            for key, value in updates.items():
                setattr(row, key, value)
            row.updated_at = now_utc()
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError(
                    "callsign already in use",
                    {"department_code": department_code, "callsign": updates.get("callsign")},
                ) from exc
            session.refresh(row)
        logger.info("Updated roster details for %s in %s: %s", user_id, department_code, sorted(updates))
        return row
