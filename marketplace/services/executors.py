"""Read-only access to executor profiles.

The engine never writes profiles. It works with immutable snapshots so that a
profile edited mid-request cannot change a visibility decision halfway through.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.models import ExecutorProfile, executor_categories
from marketplace.services.geo import Coordinates


@dataclass(frozen=True)
class ExecutorSnapshot:
    id: int
    user_id: int
    coordinates: Coordinates | None
    work_radius_km: float
    is_available: bool = True
    rating: float = 0.0
    # Empty means the executor takes orders in every category
    category_ids: frozenset[int] = frozenset()
    is_premium: bool = False
    is_verified: bool = False
    reviews_count: int = 0
    completed_orders: int = 0


@dataclass(frozen=True)
class ExecutorFilter:
    """Column filters for the executor directory; radius is applied by the caller."""

    min_rating: float | None = None
    only_available: bool = False
    only_verified: bool = False
    only_premium: bool = False
    category_ids: frozenset[int] = frozenset()
    require_location: bool = False


def snapshot_of(profile: ExecutorProfile) -> ExecutorSnapshot:
    return ExecutorSnapshot(
        id=profile.id,
        user_id=profile.user_id,
        coordinates=profile.coordinates,
        work_radius_km=float(profile.work_radius_km),
        is_available=bool(profile.is_available),
        rating=float(profile.rating or 0.0),
        category_ids=frozenset(category.id for category in profile.categories),
        is_premium=bool(profile.is_premium),
        is_verified=bool(profile.is_verified),
        reviews_count=profile.reviews_count or 0,
        completed_orders=profile.completed_orders or 0,
    )


class ExecutorProfileStore(Protocol):
    async def get(self, executor_id: int) -> ExecutorSnapshot | None: ...

    async def get_by_user(self, user_id: int) -> ExecutorSnapshot | None: ...

    async def list_available(self) -> list[ExecutorSnapshot]: ...

    async def find(self, criteria: ExecutorFilter) -> list[ExecutorSnapshot]: ...


class SqlExecutorProfileStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, executor_id: int) -> ExecutorSnapshot | None:
        profile = await self.session.get(ExecutorProfile, executor_id, populate_existing=True)
        return snapshot_of(profile) if profile else None

    async def get_by_user(self, user_id: int) -> ExecutorSnapshot | None:
        result = await self.session.execute(
            select(ExecutorProfile)
            .where(ExecutorProfile.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        profile = result.scalars().first()
        return snapshot_of(profile) if profile else None

    async def list_available(self) -> list[ExecutorSnapshot]:
        result = await self.session.execute(
            select(ExecutorProfile)
            .where(ExecutorProfile.is_available.is_(True))
            .order_by(ExecutorProfile.id)
            .execution_options(populate_existing=True)
        )
        return [snapshot_of(profile) for profile in result.scalars().all()]

    async def find(self, criteria: ExecutorFilter) -> list[ExecutorSnapshot]:
        """Matching profiles, premium first, then by rating, newest first."""
        query = select(ExecutorProfile)
        if criteria.min_rating is not None:
            query = query.where(ExecutorProfile.rating >= criteria.min_rating)
        if criteria.only_available:
            query = query.where(ExecutorProfile.is_available.is_(True))
        if criteria.only_verified:
            query = query.where(ExecutorProfile.is_verified.is_(True))
        if criteria.only_premium:
            query = query.where(ExecutorProfile.is_premium.is_(True))
        if criteria.require_location:
            query = query.where(
                ExecutorProfile.location_lat.is_not(None), ExecutorProfile.location_lng.is_not(None)
            )
        if criteria.category_ids:
            linked = select(executor_categories.c.executor_id).where(
                executor_categories.c.category_id.in_(sorted(criteria.category_ids))
            )
            # No categories means every category
            query = query.where(
                or_(
                    ExecutorProfile.id.in_(linked),
                    ExecutorProfile.id.not_in(select(executor_categories.c.executor_id)),
                )
            )

        result = await self.session.execute(
            query.order_by(
                ExecutorProfile.is_premium.desc(),
                ExecutorProfile.rating.desc(),
                ExecutorProfile.created_at.desc(),
                ExecutorProfile.id.desc(),
            ).execution_options(populate_existing=True)
        )
        return [snapshot_of(profile) for profile in result.scalars().all()]
