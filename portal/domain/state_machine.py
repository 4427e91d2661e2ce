from __future__ import annotations

from enum import StrEnum


class ApplicationStatus(StrEnum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    DENIED = "denied"


ALLOWED_TRANSITIONS: dict[ApplicationStatus, set[ApplicationStatus]] = {
    ApplicationStatus.PENDING: {
        ApplicationStatus.UNDER_REVIEW,
        ApplicationStatus.APPROVED,
        ApplicationStatus.DENIED,
    },
    ApplicationStatus.UNDER_REVIEW: {ApplicationStatus.APPROVED, ApplicationStatus.DENIED},
    ApplicationStatus.APPROVED: set(),
    ApplicationStatus.DENIED: set(),
}

OPEN_STATUSES = frozenset({ApplicationStatus.PENDING, ApplicationStatus.UNDER_REVIEW})
DECISION_OUTCOMES = frozenset({ApplicationStatus.APPROVED, ApplicationStatus.DENIED})


def can_transition(source: ApplicationStatus, target: ApplicationStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(source, set())


def is_terminal(status: ApplicationStatus) -> bool:
    return not ALLOWED_TRANSITIONS.get(status)
