"""Pull provider roles for a user and reconcile local authorization state.

A sync run either completes fully or leaves the stored memberships and staff
tier untouched: the provider fetch and catalog resolution happen before any
write, so a timeout or configuration error never removes access. Memberships
and the identity row are then written in a single transaction.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from portal.domain.errors import ConflictError, NotFoundError, PortalError, ProviderUnavailableError
from portal.domain.models import Identity, Membership, ProviderProfile, now_utc
from portal.infra.db import get_engine
from portal.infra.events import event_bus
from portal.infra.locks import KeyedLock, build_sync_lock
from portal.services.catalog_service import CatalogService
from portal.services.identity_provider import (
    PROVIDER_TIMEOUT_SECONDS,
    DiscordIdentityProvider,
    IdentityProvider,
)
from portal.services.membership_store import MembershipDiff, MembershipStore
from portal.services.role_resolver import ResolvedAuthorization

logger = logging.getLogger(__name__)

SYNC_WRITE_ATTEMPTS = 3


@dataclass
class SyncReport:
    added: list[Membership] = field(default_factory=list)
    removed: list[Membership] = field(default_factory=list)
    updated: list[Membership] = field(default_factory=list)
    tier_changed: bool = False

    @property
    def has_changes(self) -> bool:
        return self.tier_changed or bool(self.added or self.removed or self.updated)


class SyncOrchestrator:
    def __init__(
        self,
        provider: IdentityProvider | None = None,
        catalog: CatalogService | None = None,
        memberships: MembershipStore | None = None,
        lock: KeyedLock | None = None,
        timeout: float = PROVIDER_TIMEOUT_SECONDS,
    ) -> None:
        self._provider = provider or DiscordIdentityProvider()
        self._catalog = catalog or CatalogService()
        self._memberships = memberships or MembershipStore()
        self._lock = lock or build_sync_lock()
        self._timeout = timeout

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _load_identity(self, user_id: str) -> Identity:
        with self._session() as session:
            identity = session.get(Identity, user_id)
        if identity is None:
            raise NotFoundError("user not found")
        return identity

    async def _fetch_groups(self, access_token: str | None) -> set[str]:
        try:
            return await asyncio.wait_for(
                self._provider.fetch_current_groups(access_token or ""),
                timeout=self._timeout,
            )
        except TimeoutError as exc:
            raise ProviderUnavailableError("identity provider timed out") from exc

    def _store_identity(
        self,
        session: Session,
        user_id: str,
        groups: set[str],
        resolved: ResolvedAuthorization,
    ) -> bool:
        identity = session.get(Identity, user_id)
        if identity is None:
            raise NotFoundError("user not found")
        tiers = list(resolved.staff_tiers)
        tier_changed = identity.staff_tier != resolved.primary_staff_tier or identity.staff_tiers != tiers
        raw_groups = sorted(groups)
        if identity.raw_external_group_ids != raw_groups:
            identity.raw_external_group_ids = raw_groups
            identity.updated_at = now_utc()
        if tier_changed:
            identity.staff_tier = resolved.primary_staff_tier
            identity.staff_tiers = tiers
            identity.is_staff = resolved.is_staff
            identity.updated_at = now_utc()
        identity.last_synced_at = now_utc()
        session.add(identity)
        return tier_changed

    def _write(
        self,
        user_id: str,
        groups: set[str],
        resolved: ResolvedAuthorization,
    ) -> tuple[MembershipDiff, bool]:
        """Apply memberships and the identity row in one transaction.

        A callsign taken by a concurrent run for another user shows up as an
        IntegrityError; the whole write is rolled back and recomputed.
        """
        conflict: IntegrityError | None = None
        for attempt in range(1, SYNC_WRITE_ATTEMPTS + 1):
            with self._session() as session:
                try:
                    diff = self._memberships.reconcile(session, user_id, resolved.department_memberships)
                    tier_changed = self._store_identity(session, user_id, groups, resolved)
                    session.commit()
                except IntegrityError as exc:
                    session.rollback()
                    conflict = exc
                    logger.warning("Membership write for %s conflicted (attempt %d)", user_id, attempt)
                    continue
                for row in [*diff.added, *diff.updated]:
                    session.refresh(row)

            if diff.has_changes:
                logger.info(
                    "Reconciled memberships for %s: +%d ~%d -%d",
                    user_id,
                    len(diff.added),
                    len(diff.updated),
                    len(diff.removed),
                )
            return diff, tier_changed
        raise ConflictError(
            "membership write kept conflicting",
            {"user_id": user_id, "attempts": SYNC_WRITE_ATTEMPTS},
        ) from conflict

    async def sync(self, identity: Identity) -> SyncReport:
        """Reconcile one user. Runs for the same user are serialized.

        Raises ProviderUnavailableError, TokenInvalidError or
        CatalogConfigurationError without writing anything, and ConflictError
        when the membership write keeps colliding with other runs.
        """
        async with self._lock.hold(identity.id):
            current = self._load_identity(identity.id)
            groups = await self._fetch_groups(current.provider_access_token)
            resolved = self._catalog.list_role_catalog().resolve(groups)

            diff, tier_changed = self._write(current.id, groups, resolved)

        report = SyncReport(
            added=diff.added,
            removed=diff.removed,
            updated=diff.updated,
            tier_changed=tier_changed,
        )
        if report.has_changes:
            event_bus.publish_dict(
                "membership.synced",
                {
                    "added": [row.department_code for row in report.added],
                    "removed": [row.department_code for row in report.removed],
                    "updated": [row.department_code for row in report.updated],
                    "staff_tier": resolved.primary_staff_tier,
                    "tier_changed": tier_changed,
                },
                subject_id=current.id,
            )
        return report

    async def refresh(self, user_id: str) -> SyncReport:
        """User-requested sync; failures propagate to the caller."""
        identity = self._load_identity(user_id)
        return await self.sync(identity)

    def upsert_identity(self, profile: ProviderProfile, access_token: str) -> Identity:
        with self._session() as session:
            identity = session.exec(
                select(Identity).where(Identity.external_id == profile.external_id)
            ).first()
            if identity is None:
                identity = Identity(
                    external_id=profile.external_id,
                    display_name=profile.display_name,
                )
            identity.display_name = profile.display_name
            identity.external_avatar_ref = profile.external_avatar_ref
            identity.email = profile.email
            identity.provider_access_token = access_token
            identity.updated_at = now_utc()
            session.add(identity)
            try:
                session.commit()
            except IntegrityError:
                # Concurrent first login for the same account; the other insert won.
                session.rollback()
                identity = session.exec(
                    select(Identity).where(Identity.external_id == profile.external_id)
                ).one()
                identity.provider_access_token = access_token
                session.add(identity)
                session.commit()
            session.refresh(identity)
        return identity

    async def login(self, profile: ProviderProfile, access_token: str) -> tuple[Identity, SyncReport | None]:
        """Record a successful provider login and try to sync roles.

        A failed sync does not block login; the stored memberships stay in
        effect until the next successful run.
        """
        identity = self.upsert_identity(profile, access_token)
        try:
            report = await self.sync(identity)
        except PortalError as exc:
            logger.warning("Role sync on login failed for %s (%s): %s", identity.id, exc.code, exc)
            return identity, None
        return self._load_identity(identity.id), report
