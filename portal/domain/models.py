from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, Index, UniqueConstraint
from sqlmodel import Field, SQLModel

from portal.domain.state_machine import ApplicationStatus


def now_utc() -> datetime:
    return datetime.now(UTC)


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    subject_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class Identity(SQLModel, table=True):
    __tablename__ = "identities"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    external_id: str = Field(index=True, unique=True)
    display_name: str
    external_avatar_ref: str | None = None
    email: str | None = None
    raw_external_group_ids: list[str] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    staff_tier: str | None = Field(default=None, index=True)
    staff_tiers: list[str] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    is_staff: bool = Field(default=False)
    provider_access_token: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)
    last_synced_at: datetime | None = None


class RoleKind(StrEnum):
    STAFF_TIER = "staff_tier"
    DEPARTMENT_MEMBERSHIP = "department_membership"


class RoleCatalogEntry(SQLModel, table=True):
    __tablename__ = "role_catalog"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    external_group_id: str = Field(index=True, unique=True)
    external_group_name: str | None = None
    kind: RoleKind = Field(index=True)
    staff_tier_name: str | None = None
    department_code: str | None = Field(default=None, index=True)
    rank_name: str | None = None
    callsign_prefix: str | None = None
    priority: int = Field(default=0)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Membership(SQLModel, table=True):
    __tablename__ = "memberships"
    __table_args__ = (
        UniqueConstraint("user_id", "department_code", name="uq_memberships_user_department"),
        UniqueConstraint(
            "department_code",
            "rank_name",
            "callsign",
            name="uq_memberships_department_rank_callsign",
        ),
        Index("ix_memberships_department_rank", "department_code", "rank_name"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = Field(foreign_key="identities.id", index=True)
    department_code: str = Field(index=True)
    rank_name: str
    callsign: str | None = None
    external_record_id: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class WhitelistForm(SQLModel, table=True):
    __tablename__ = "whitelist_forms"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    key: str = Field(index=True, unique=True)
    department_code: str | None = Field(default=None, index=True)
    title: str
    description: str | None = None
    is_active: bool = Field(default=True)
    review_tiers: list[str] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Application(SQLModel, table=True):
    __tablename__ = "applications"
    __table_args__ = (
        UniqueConstraint("open_key", name="uq_applications_open_key"),
        Index("ix_applications_user_department_status", "user_id", "department_code", "status"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = Field(foreign_key="identities.id", index=True)
    department_code: str | None = Field(default=None, index=True)
    form_id: str = Field(foreign_key="whitelist_forms.id", index=True)
    status: ApplicationStatus = Field(default=ApplicationStatus.PENDING, index=True)
    answers: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    # Set while the application is non-terminal; cleared on decision.
    open_key: str | None = None
    reviewed_by: str | None = None
    decided_by: str | None = None
    decided_at: datetime | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class AdminSetting(SQLModel, table=True):
    __tablename__ = "admin_settings"

    key: str = Field(primary_key=True)
    value: str | None = None
    updated_by: str | None = None
    updated_at: datetime = Field(default_factory=now_utc)


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    subject_id: str | None = None
    payload: dict[str, Any]


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class ProviderProfile(BaseModel):
    external_id: str
    display_name: str
    external_avatar_ref: str | None = None
    email: str | None = None


class LoginRequest(BaseModel):
    access_token: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class AuthStatusRead(BaseModel):
    authenticated: bool
    bootstrap_mode: bool


class IdentityRead(ORMReadModel):
    id: str
    external_id: str
    display_name: str
    external_avatar_ref: str | None = None
    staff_tier: str | None = None
    staff_tiers: list[str]
    is_staff: bool
    created_at: datetime
    last_synced_at: datetime | None = None


class MembershipRead(ORMReadModel):
    id: str
    user_id: str
    department_code: str
    rank_name: str
    callsign: str | None = None
    external_record_id: str | None = None
    updated_at: datetime


class MembershipDetailsUpdate(BaseModel):
    callsign: str | None = None
    external_record_id: str | None = None


class RoleCatalogEntryCreate(BaseModel):
    external_group_id: str
    external_group_name: str | None = None
    kind: RoleKind
    staff_tier_name: str | None = None
    department_code: str | None = None
    rank_name: str | None = None
    callsign_prefix: str | None = None
    priority: int = 0


class RoleCatalogEntryRead(ORMReadModel):
    id: str
    external_group_id: str
    external_group_name: str | None = None
    kind: RoleKind
    staff_tier_name: str | None = None
    department_code: str | None = None
    rank_name: str | None = None
    callsign_prefix: str | None = None
    priority: int


class WhitelistFormCreate(BaseModel):
    key: str
    title: str
    department_code: str | None = None
    description: str | None = None
    is_active: bool = True
    review_tiers: list[str] = PydanticField(default_factory=list)


class WhitelistFormRead(ORMReadModel):
    id: str
    key: str
    department_code: str | None = None
    title: str
    description: str | None = None
    is_active: bool
    review_tiers: list[str]


class AdminSettingUpdate(BaseModel):
    value: str | None = None


class AdminSettingRead(ORMReadModel):
    key: str
    value: str | None = None
    updated_at: datetime


class ApplicationSubmit(BaseModel):
    form_id: str
    department_code: str | None = None
    answers: dict[str, Any] = PydanticField(default_factory=dict)


class ApplicationDecision(BaseModel):
    outcome: ApplicationStatus


class ApplicationRead(ORMReadModel):
    id: str
    user_id: str
    department_code: str | None = None
    form_id: str
    status: ApplicationStatus
    answers: dict[str, Any]
    reviewed_by: str | None = None
    decided_by: str | None = None
    decided_at: datetime | None = None
    created_at: datetime


class AccessDecisionRead(BaseModel):
    department: str
    granted: bool
    reason: str


class EligibilityRead(BaseModel):
    department: str
    granted: bool
    reason: str
    open_application_id: str | None = None
    form_id: str | None = None
    can_apply: bool


class SyncReportRead(BaseModel):
    added: list[MembershipRead]
    removed: list[MembershipRead]
    updated: list[MembershipRead]
    tier_changed: bool


class ResolveRequest(BaseModel):
    external_group_ids: list[str]


class ResolvedRankRead(BaseModel):
    rank_name: str
    priority: int
    callsign_prefix: str | None = None


class ResolvedAuthorizationRead(BaseModel):
    staff_tiers: list[str]
    primary_staff_tier: str | None = None
    department_memberships: dict[str, ResolvedRankRead]
