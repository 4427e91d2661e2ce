from __future__ import annotations

from enum import StrEnum


class StaffTier(StrEnum):
    DIRECTOR = "director"
    EXECUTIVE = "executive"
    MANAGER = "manager"
    ADMINISTRATOR = "administrator"
    MODERATOR = "moderator"
    SUPPORT = "support"
    DEVELOPMENT = "development"


# Highest first.
STAFF_HIERARCHY: tuple[StaffTier, ...] = (
    StaffTier.DIRECTOR,
    StaffTier.EXECUTIVE,
    StaffTier.MANAGER,
    StaffTier.ADMINISTRATOR,
    StaffTier.MODERATOR,
    StaffTier.SUPPORT,
    StaffTier.DEVELOPMENT,
)

OVERRIDE_TIERS = frozenset({StaffTier.DIRECTOR, StaffTier.EXECUTIVE})

PERM_ADMIN = "admin"
SETTING_ADMIN_PANEL_TIER = "staff_access_admin_panel"
DEFAULT_ADMIN_PANEL_TIER = StaffTier.EXECUTIVE


def is_staff_tier(name: str | None) -> bool:
    return name in {tier.value for tier in STAFF_HIERARCHY}


def tier_rank(name: str | None) -> int | None:
    if not is_staff_tier(name):
        return None
    return STAFF_HIERARCHY.index(StaffTier(name))


def meets_staff_tier(user_tier: str | None, required_tier: str) -> bool:
    user_rank = tier_rank(user_tier)
    required_rank = tier_rank(required_tier)
    if user_rank is None or required_rank is None:
        return False
    return user_rank <= required_rank


def is_override_tier(name: str | None) -> bool:
    return name in OVERRIDE_TIERS
