"""Authenticated actors and the capabilities they carry.

Identity is established outside the engine. The boundary builds an ``Actor``
once per request with ``Actor.resolve`` and the services only look at its
capability flags and id.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass


class UserRole(str, enum.Enum):
    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class UserType(str, enum.Enum):
    CUSTOMER = "customer"
    EXECUTOR = "executor"
    BOTH = "both"


STAFF_ROLES = frozenset({UserRole.MODERATOR, UserRole.ADMIN, UserRole.SUPER_ADMIN})


@dataclass(frozen=True)
class Capabilities:
    can_post_orders: bool = False
    can_bid: bool = False
    can_manage_categories: bool = False
    can_moderate_orders: bool = False


def resolve_capabilities(role: UserRole, user_type: UserType) -> Capabilities:
    is_staff = role in STAFF_ROLES
    return Capabilities(
        can_post_orders=user_type in (UserType.CUSTOMER, UserType.BOTH),
        can_bid=user_type in (UserType.EXECUTOR, UserType.BOTH),
        can_manage_categories=is_staff,
        can_moderate_orders=role in (UserRole.ADMIN, UserRole.SUPER_ADMIN),
    )


@dataclass(frozen=True)
class Actor:
    id: int
    role: UserRole
    user_type: UserType
    capabilities: Capabilities

    @classmethod
    def resolve(cls, id: int, role: UserRole | str, user_type: UserType | str) -> "Actor":
        role = UserRole(role)
        user_type = UserType(user_type)
        return cls(id=id, role=role, user_type=user_type, capabilities=resolve_capabilities(role, user_type))
