from __future__ import annotations

from enum import Enum

from .models import User

# Cupula Directiva: rank orders 1-3
FULL_ACCESS_MAX_ORDER = 3


class UserRole(str, Enum):
    CUPULA = "CUPULA"
    SOBERANO = "SOBERANO"
    SUBDITO = "SUBDITO"
    GUEST = "GUEST"


def has_full_access(user: User | None) -> bool:
    return user is not None and int(user.rank.order) <= FULL_ACCESS_MAX_ORDER


def has_admin_access(user: User | None) -> bool:
    """Cupula members and sovereigns may use the admin panel."""
    if user is None:
        return False
    return has_full_access(user) or bool(user.is_sovereign)


def user_role(user: User | None) -> UserRole:
    if user is None:
        return UserRole.GUEST
    if has_full_access(user):
        return UserRole.CUPULA
    if bool(user.is_sovereign):
        return UserRole.SOBERANO
    return UserRole.SUBDITO


def is_subordinate(rank_order: int) -> bool:
    """Members who can be asked to log time (ranks 5-10)."""
    return 5 <= int(rank_order) <= 10


def can_be_sovereign(rank_order: int, lowest_order: int) -> bool:
    # neither the Cupula nor recruits on probation
    return FULL_ACCESS_MAX_ORDER < int(rank_order) < int(lowest_order)
