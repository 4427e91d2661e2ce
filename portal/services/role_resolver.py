"""Resolve provider group ids into staff tiers and department ranks.

Everything in this module is pure: no sessions, no network. The catalog is
validated once when loaded so that most configuration mistakes surface at
load time instead of in the middle of somebody's login.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType

from portal.domain.errors import CatalogConfigurationError
from portal.domain.models import RoleCatalogEntry, RoleKind
from portal.domain.staff import STAFF_HIERARCHY, is_staff_tier, tier_rank


@dataclass(frozen=True)
class ResolvedRank:
    rank_name: str
    priority: int
    callsign_prefix: str | None = None


@dataclass(frozen=True)
class ResolvedAuthorization:
    staff_tiers: tuple[str, ...] = ()
    department_memberships: Mapping[str, ResolvedRank] = field(
        default_factory=lambda: MappingProxyType({}),
    )

    @property
    def primary_staff_tier(self) -> str | None:
        return self.staff_tiers[0] if self.staff_tiers else None

    @property
    def is_staff(self) -> bool:
        return bool(self.staff_tiers)


EMPTY_AUTHORIZATION = ResolvedAuthorization()


def _check_entry_shape(entry: RoleCatalogEntry) -> None:
    detail = {"external_group_id": entry.external_group_id}
    has_tier = bool(entry.staff_tier_name)
    has_department_fields = bool(entry.department_code) or bool(entry.rank_name)
    has_department = bool(entry.department_code) and bool(entry.rank_name)
    if has_tier == has_department_fields:
        raise CatalogConfigurationError(
            "catalog entry must map to exactly one staff tier or one department rank",
            detail,
        )
    if entry.kind == RoleKind.STAFF_TIER and not has_tier:
        raise CatalogConfigurationError("staff tier entry has no tier name", detail)
    if entry.kind == RoleKind.DEPARTMENT_MEMBERSHIP and not has_department:
        raise CatalogConfigurationError(
            "department entry needs both department code and rank name",
            detail,
        )
    if has_tier and not is_staff_tier(entry.staff_tier_name):
        raise CatalogConfigurationError(f"unknown staff tier: {entry.staff_tier_name}", detail)


def _department_ties(entries: Iterable[RoleCatalogEntry]) -> dict[str, list[str]]:
    """Map department code to the group ids that share a priority."""
    buckets: dict[tuple[str, int], list[RoleCatalogEntry]] = defaultdict(list)
    for entry in entries:
        if entry.kind == RoleKind.DEPARTMENT_MEMBERSHIP and entry.department_code:
            buckets[(entry.department_code, entry.priority)].append(entry)

    ties: dict[str, list[str]] = {}
    for (department_code, _priority), bucket in buckets.items():
        if len(bucket) > 1:
            ties.setdefault(department_code, []).extend(
                sorted(item.external_group_id for item in bucket)
            )
    return ties


class RoleCatalog:
    """Validated, immutable view over the configured role catalog."""

    def __init__(self, entries: Sequence[RoleCatalogEntry]) -> None:
        self._entries = tuple(entries)
        self._by_group = {entry.external_group_id: entry for entry in self._entries}

    @classmethod
    def load(cls, entries: Iterable[RoleCatalogEntry]) -> RoleCatalog:
        items = list(entries)
        seen: set[str] = set()
        for entry in items:
            if entry.external_group_id in seen:
                raise CatalogConfigurationError(
                    f"duplicate external group id: {entry.external_group_id}",
                    {"external_group_id": entry.external_group_id},
                )
            seen.add(entry.external_group_id)
            _check_entry_shape(entry)

        ties = _department_ties(items)
        if ties:
            department_code = sorted(ties)[0]
            raise CatalogConfigurationError(
                f"ambiguous rank priority in department {department_code}",
                {"department_code": department_code, "external_group_ids": ties[department_code]},
            )
        return cls(items)

    @property
    def entries(self) -> tuple[RoleCatalogEntry, ...]:
        return self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, external_group_id: str) -> RoleCatalogEntry | None:
        return self._by_group.get(external_group_id)

    def has_staff_entries(self) -> bool:
        return any(entry.kind == RoleKind.STAFF_TIER for entry in self._entries)

    def resolve(self, external_group_ids: Iterable[str]) -> ResolvedAuthorization:
        return resolve(external_group_ids, self._entries)


def _staff_sort_key(entry: RoleCatalogEntry) -> tuple[int, int, str]:
    rank = tier_rank(entry.staff_tier_name)
    return (-entry.priority, rank if rank is not None else len(STAFF_HIERARCHY), entry.external_group_id)


def resolve(
    external_group_ids: Iterable[str],
    catalog: RoleCatalog | Sequence[RoleCatalogEntry],
) -> ResolvedAuthorization:
    """Compute staff tiers and department ranks for a set of group ids.

    Raises CatalogConfigurationError when two matched entries for one
    department share a priority.
    """
    groups = set(external_group_ids)
    if not groups:
        return EMPTY_AUTHORIZATION

    entries = catalog.entries if isinstance(catalog, RoleCatalog) else tuple(catalog)
    matched = [entry for entry in entries if entry.external_group_id in groups]
    if not matched:
        return EMPTY_AUTHORIZATION

    staff_entries = sorted(
        (entry for entry in matched if entry.kind == RoleKind.STAFF_TIER and entry.staff_tier_name),
        key=_staff_sort_key,
    )
    staff_tiers: list[str] = []
    for entry in staff_entries:
        if entry.staff_tier_name not in staff_tiers:
            staff_tiers.append(entry.staff_tier_name)

    by_department: dict[str, list[RoleCatalogEntry]] = defaultdict(list)
    for entry in matched:
        if entry.kind == RoleKind.DEPARTMENT_MEMBERSHIP and entry.department_code and entry.rank_name:
            by_department[entry.department_code].append(entry)

    memberships: dict[str, ResolvedRank] = {}
    for department_code in sorted(by_department):
        candidates = by_department[department_code]
        priorities = Counter(entry.priority for entry in candidates)
        tied = [entry for entry in candidates if priorities[entry.priority] > 1]
        if tied:
            raise CatalogConfigurationError(
                f"ambiguous rank priority in department {department_code}",
                {
                    "department_code": department_code,
                    "external_group_ids": sorted(entry.external_group_id for entry in tied),
                },
            )
        winner = max(candidates, key=lambda entry: entry.priority)
        memberships[department_code] = ResolvedRank(
            rank_name=winner.rank_name or "",
            priority=winner.priority,
            callsign_prefix=winner.callsign_prefix,
        )

    return ResolvedAuthorization(
        staff_tiers=tuple(staff_tiers),
        department_memberships=MappingProxyType(memberships),
    )
