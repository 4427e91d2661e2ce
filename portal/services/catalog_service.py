from __future__ import annotations

import logging
import threading

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from portal.domain.errors import ConflictError, NotFoundError
from portal.domain.models import (
    AdminSetting,
    RoleCatalogEntry,
    RoleCatalogEntryCreate,
    WhitelistForm,
    WhitelistFormCreate,
    now_utc,
)
from portal.domain.staff import (
    DEFAULT_ADMIN_PANEL_TIER,
    SETTING_ADMIN_PANEL_TIER,
    is_staff_tier,
)
from portal.infra.db import get_engine
from portal.infra.events import event_bus
from portal.services.role_resolver import RoleCatalog

logger = logging.getLogger(__name__)

_cache_lock = threading.Lock()
_cached_catalog: RoleCatalog | None = None


def invalidate_catalog_cache() -> None:
    global _cached_catalog
    with _cache_lock:
        _cached_catalog = None


class CatalogService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _load_entries(self, session: Session) -> list[RoleCatalogEntry]:
        statement = select(RoleCatalogEntry).order_by(RoleCatalogEntry.external_group_id)
        return list(session.exec(statement).all())

    def list_role_catalog(self) -> RoleCatalog:
        """Return the validated catalog, loading it once until invalidated.

        Raises CatalogConfigurationError if the stored catalog is inconsistent.
        """
        global _cached_catalog
        with _cache_lock:
            if _cached_catalog is not None:
                return _cached_catalog
        with self._session() as session:
            catalog = RoleCatalog.load(self._load_entries(session))
        with _cache_lock:
            _cached_catalog = catalog
        logger.info("Loaded role catalog with %d entries", len(catalog))
        return catalog

    def has_staff_entries(self) -> bool:
        with self._session() as session:
            entries = self._load_entries(session)
        return RoleCatalog(entries).has_staff_entries()

    def create_entry(self, payload: RoleCatalogEntryCreate, actor_id: str | None = None) -> RoleCatalogEntry:
        entry = RoleCatalogEntry(
            external_group_id=payload.external_group_id,
            external_group_name=payload.external_group_name,
            kind=payload.kind,
            staff_tier_name=payload.staff_tier_name,
            department_code=payload.department_code.lower() if payload.department_code else None,
            rank_name=payload.rank_name,
            callsign_prefix=payload.callsign_prefix,
            priority=payload.priority,
        )
        with self._session() as session:
            existing = self._load_entries(session)
            if any(item.external_group_id == entry.external_group_id for item in existing):
                raise ConflictError(f"external group already mapped: {entry.external_group_id}")
            RoleCatalog.load([*existing, entry])
            session.add(entry)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("catalog entry create conflict") from exc
            session.refresh(entry)

        invalidate_catalog_cache()
        event_bus.publish_dict(
            "catalog.changed",
            {"action": "created", "entry_id": entry.id, "external_group_id": entry.external_group_id},
            actor_id=actor_id,
        )
        return entry

    def delete_entry(self, entry_id: str, actor_id: str | None = None) -> None:
        with self._session() as session:
            entry = session.get(RoleCatalogEntry, entry_id)
            if entry is None:
                raise NotFoundError("catalog entry not found")
            external_group_id = entry.external_group_id
            session.delete(entry)
            session.commit()

        invalidate_catalog_cache()
        event_bus.publish_dict(
            "catalog.changed",
            {"action": "deleted", "entry_id": entry_id, "external_group_id": external_group_id},
            actor_id=actor_id,
        )

    def create_form(self, payload: WhitelistFormCreate) -> WhitelistForm:
        unknown = [tier for tier in payload.review_tiers if not is_staff_tier(tier)]
        if unknown:
            raise ConflictError(f"unknown staff tiers: {', '.join(unknown)}")
        form = WhitelistForm(
            key=payload.key,
            title=payload.title,
            department_code=payload.department_code.lower() if payload.department_code else None,
            description=payload.description,
            is_active=payload.is_active,
            review_tiers=list(payload.review_tiers),
        )
        with self._session() as session:
            session.add(form)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError(f"form key already exists: {payload.key}") from exc
            session.refresh(form)
        return form

    def list_forms(self, department_code: str | None = None, active_only: bool = False) -> list[WhitelistForm]:
        with self._session() as session:
            statement = select(WhitelistForm)
            if department_code is not None:
                statement = statement.where(WhitelistForm.department_code == department_code)
            if active_only:
                statement = statement.where(WhitelistForm.is_active == True)  # noqa: E712
            return list(session.exec(statement.order_by(WhitelistForm.key)).all())

    def active_department_form(self, department_code: str) -> WhitelistForm | None:
        forms = self.list_forms(department_code=department_code, active_only=True)
        return forms[0] if forms else None

    def get_setting(self, key: str) -> AdminSetting | None:
        with self._session() as session:
            return session.get(AdminSetting, key)

    def set_setting(self, key: str, value: str | None, actor_id: str | None = None) -> AdminSetting:
        if key == SETTING_ADMIN_PANEL_TIER and value is not None and not is_staff_tier(value):
            raise ConflictError(f"unknown staff tier: {value}")
        with self._session() as session:
            setting = session.get(AdminSetting, key)
            if setting is None:
                setting = AdminSetting(key=key)
            setting.value = value
            setting.updated_by = actor_id
            setting.updated_at = now_utc()
            session.add(setting)
            session.commit()
            session.refresh(setting)
        return setting

    def admin_panel_tier(self) -> str:
        setting = self.get_setting(SETTING_ADMIN_PANEL_TIER)
        if setting is None or not is_staff_tier(setting.value):
            return DEFAULT_ADMIN_PANEL_TIER.value
        return str(setting.value)
