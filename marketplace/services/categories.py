"""Service-category hierarchy: creation, moves, deletion and read models."""
from __future__ import annotations

import logging
import re
from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, get_settings
from marketplace.actors import Actor
from marketplace.errors import (
    AuthorizationError,
    CategoryInUseError,
    CategoryNotFoundError,
    ConflictError,
    CyclicDependencyError,
    DuplicateSlugError,
    HasChildrenError,
    ParentNotFoundError,
    SelfParentError,
    ValidationError,
)
from marketplace.models import LOCALES, Order, ServiceCategory, executor_categories

logger = logging.getLogger(__name__)

# Columns a caller may set through create/update
EDITABLE_FIELDS = frozenset({
    "name_ru",
    "name_uz",
    "description_ru",
    "description_uz",
    "icon_url",
    "color",
    "parent_id",
    "is_active",
    "is_popular",
    "sort_order",
    "slug",
    "meta_title",
    "meta_description",
})

_WHITESPACE = re.compile(r"\s+")
_HYPHENS = re.compile(r"-+")

# Flags and ordering always have a value
NON_NULLABLE_FIELDS = ("is_active", "is_popular", "sort_order")


@dataclass(frozen=True)
class Breadcrumb:
    id: int
    name: str
    slug: str


@dataclass
class CategoryNode:
    id: int
    parent_id: int | None
    name: str
    description: str | None
    slug: str
    icon_url: str | None
    color: str | None
    sort_order: int
    is_active: bool
    is_popular: bool
    services_count: int
    children: list["CategoryNode"] = field(default_factory=list)

    @property
    def has_children(self) -> bool:
        return bool(self.children)


def generate_slug(name: str, max_length: int = 200) -> str:
    """Lower-case, strip non-alphanumerics, join words with single hyphens."""
    cleaned = "".join(ch for ch in name.lower() if ch.isalnum() or ch.isspace() or ch == "-")
    slug = _WHITESPACE.sub("-", cleaned.strip())
    slug = _HYPHENS.sub("-", slug).strip("-")
    return slug[:max_length].rstrip("-")


def check_locale(locale: str) -> str:
    if locale not in LOCALES:
        raise ValidationError(f"Unsupported locale '{locale}', expected one of {', '.join(LOCALES)}")
    return locale


def would_create_cycle(category_id: int, new_parent_id: int, parent_of: Mapping[int, int | None]) -> bool:
    """Walk up from ``new_parent_id`` and report whether ``category_id`` is met.

    A node missing from ``parent_of`` ends the walk (dangling reference, not a
    cycle). A loop that does not pass through ``category_id`` ends it too.
    """
    current: int | None = new_parent_id
    seen: set[int] = set()
    while current is not None:
        if current == category_id:
            return True
        if current in seen or current not in parent_of:
            return False
        seen.add(current)
        current = parent_of[current]
    return False


def ancestor_ids(category_id: int, parent_of: Mapping[int, int | None]) -> list[int]:
    """``category_id`` followed by its ancestors, nearest first."""
    chain: list[int] = []
    current: int | None = category_id
    while current is not None and current not in chain:
        chain.append(current)
        current = parent_of.get(current)
    return chain


def build_tree(nodes: Iterable[ServiceCategory], locale: str = "ru") -> list[CategoryNode]:
    """Materialize a forest from a flat list of categories.

    Siblings are ordered by ``sort_order`` then localized name. Nodes whose
    parent is not in ``nodes`` are not reachable from a root and are left out.
    """
    check_locale(locale)
    children_of: dict[int | None, list[ServiceCategory]] = defaultdict(list)
    for node in nodes:
        children_of[node.parent_id].append(node)
    for siblings in children_of.values():
        siblings.sort(key=lambda c: (c.sort_order or 0, c.get_name(locale).casefold()))

    visited: set[int] = set()

    def materialize(category: ServiceCategory) -> CategoryNode:
        visited.add(category.id)
        return CategoryNode(
            id=category.id,
            parent_id=category.parent_id,
            name=category.get_name(locale),
            description=category.get_description(locale),
            slug=category.slug,
            icon_url=category.icon_url,
            color=category.color,
            sort_order=category.sort_order or 0,
            is_active=category.is_active,
            is_popular=category.is_popular,
            services_count=category.services_count or 0,
            children=[
                materialize(child)
                for child in children_of.get(category.id, [])
                if child.id not in visited
            ],
        )

    return [materialize(root) for root in children_of.get(None, [])]


async def increment_services_count(session: AsyncSession, category_id: int) -> None:
    """Bump the denormalized counter inside the caller's transaction."""
    await session.execute(
        update(ServiceCategory)
        .where(ServiceCategory.id == category_id)
        .values(services_count=ServiceCategory.services_count + 1)
    )


class CategoryTree:
    """Maintains the category hierarchy on top of an async session."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()

    # Reads

    async def get(self, category_id: int) -> ServiceCategory:
        category = await self.session.get(ServiceCategory, category_id)
        if category is None:
            raise CategoryNotFoundError(category_id)
        return category

    async def get_by_slug(self, slug: str) -> ServiceCategory:
        result = await self.session.execute(select(ServiceCategory).where(ServiceCategory.slug == slug))
        category = result.scalars().first()
        if category is None:
            raise CategoryNotFoundError(slug)
        return category

    async def parent_map(self) -> dict[int, int | None]:
        result = await self.session.execute(select(ServiceCategory.id, ServiceCategory.parent_id))
        return {row.id: row.parent_id for row in result}

    async def tree(self, only_active: bool = True, locale: str | None = None) -> list[CategoryNode]:
        query = select(ServiceCategory)
        if only_active:
            query = query.where(ServiceCategory.is_active.is_(True))
        result = await self.session.execute(query)
        return build_tree(result.scalars().all(), locale or self.settings.default_locale)

    async def roots(self) -> list[ServiceCategory]:
        result = await self.session.execute(
            select(ServiceCategory)
            .where(ServiceCategory.parent_id.is_(None), ServiceCategory.is_active.is_(True))
            .order_by(ServiceCategory.sort_order, ServiceCategory.name_ru)
        )
        return list(result.scalars().all())

    async def popular(self, limit: int = 8) -> list[ServiceCategory]:
        result = await self.session.execute(
            select(ServiceCategory)
            .where(ServiceCategory.is_popular.is_(True), ServiceCategory.is_active.is_(True))
            .order_by(ServiceCategory.sort_order, ServiceCategory.services_count.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def breadcrumbs(self, category_id: int, locale: str | None = None) -> list[Breadcrumb]:
        """Root-to-node path; stops at a dangling parent or a corrupt loop."""
        locale = check_locale(locale or self.settings.default_locale)
        current: ServiceCategory | None = await self.get(category_id)
        path: list[Breadcrumb] = []
        seen: set[int] = set()
        while current is not None and current.id not in seen:
            seen.add(current.id)
            path.append(Breadcrumb(id=current.id, name=current.get_name(locale), slug=current.slug))
            if current.parent_id is None:
                break
            current = await self.session.get(ServiceCategory, current.parent_id)
        path.reverse()
        return path

    async def full_path(self, category_id: int, locale: str | None = None) -> str:
        return " > ".join(crumb.name for crumb in await self.breadcrumbs(category_id, locale))

    # Writes

    def _require_manager(self, actor: Actor) -> None:
        if not actor.capabilities.can_manage_categories:
            raise AuthorizationError("Only staff can manage categories")

    async def _ensure_slug_free(self, slug: str, exclude_id: int | None = None) -> None:
        query = select(ServiceCategory.id).where(ServiceCategory.slug == slug)
        if exclude_id is not None:
            query = query.where(ServiceCategory.id != exclude_id)
        if (await self.session.execute(query)).first() is not None:
            raise DuplicateSlugError(slug)

    async def _ensure_parent_exists(self, parent_id: int) -> None:
        if await self.session.get(ServiceCategory, parent_id) is None:
            raise ParentNotFoundError(parent_id)

    async def _commit(self, slug: str) -> None:
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            if "slug" in str(exc.orig):
                # Lost a race on the unique slug index
                raise DuplicateSlugError(slug) from exc
            raise ConflictError("Category changed concurrently, refresh and retry") from exc

    def _clean(self, data: Mapping[str, Any]) -> dict[str, Any]:
        unknown = set(data) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown category fields: {', '.join(sorted(unknown))}")
        values = dict(data)
        for name_field in ("name_ru", "name_uz"):
            if name_field in values:
                value = values[name_field]
                if value is None or not str(value).strip():
                    raise ValidationError(f"{name_field} must not be blank")
                values[name_field] = str(value).strip()
        for name in NON_NULLABLE_FIELDS:
            if name in values and values[name] is None:
                raise ValidationError(f"{name} must not be null")
        if values.get("slug") is not None:
            slug = str(values["slug"]).strip()
            if not slug:
                raise ValidationError("slug must not be blank")
            if len(slug) > self.settings.slug_max_length:
                raise ValidationError(f"slug longer than {self.settings.slug_max_length} characters")
            values["slug"] = slug
        return values

    async def create(self, actor: Actor, data: Mapping[str, Any]) -> ServiceCategory:
        self._require_manager(actor)
        values = self._clean(data)
        for name_field in ("name_ru", "name_uz"):
            if name_field not in values:
                raise ValidationError(f"{name_field} is required")

        if values.get("slug"):
            await self._ensure_slug_free(values["slug"])
        else:
            values["slug"] = generate_slug(values["name_ru"], self.settings.slug_max_length)
            if not values["slug"]:
                raise ValidationError("Cannot derive a slug from name_ru, provide one explicitly")
            await self._ensure_slug_free(values["slug"])

        if values.get("parent_id") is not None:
            await self._ensure_parent_exists(values["parent_id"])

        category = ServiceCategory(**values)
        self.session.add(category)
        await self._commit(values["slug"])
        logger.info(
            "Category created",
            extra={"category_id": category.id, "parent_id": category.parent_id, "slug": category.slug},
        )
        return category

    async def _check_move(self, category_id: int, new_parent_id: int) -> None:
        if new_parent_id == category_id:
            raise SelfParentError(category_id)
        await self._ensure_parent_exists(new_parent_id)
        if would_create_cycle(category_id, new_parent_id, await self.parent_map()):
            raise CyclicDependencyError(category_id, new_parent_id)

    async def reparent(self, actor: Actor, category_id: int, new_parent_id: int | None) -> ServiceCategory:
        self._require_manager(actor)
        category = await self.get(category_id)
        if new_parent_id is not None:
            await self._check_move(category_id, new_parent_id)
        category.parent_id = new_parent_id
        await self.session.commit()
        logger.info("Category moved", extra={"category_id": category_id, "parent_id": new_parent_id})
        return category

    async def update(self, actor: Actor, category_id: int, changes: Mapping[str, Any]) -> ServiceCategory:
        self._require_manager(actor)
        category = await self.get(category_id)
        values = self._clean(changes)

        if "slug" in values:
            if values["slug"] is None:
                raise ValidationError("slug cannot be removed")
            if values["slug"] != category.slug:
                await self._ensure_slug_free(values["slug"], exclude_id=category_id)
        if values.get("parent_id") is not None and values["parent_id"] != category.parent_id:
            await self._check_move(category_id, values["parent_id"])

        for key, value in values.items():
            setattr(category, key, value)
        await self._commit(category.slug)
        logger.info("Category updated", extra={"category_id": category_id, "count": len(values)})
        return category

    async def _is_referenced(self, category_id: int) -> bool:
        order = await self.session.execute(select(Order.id).where(Order.category_id == category_id).limit(1))
        if order.first() is not None:
            return True
        link = await self.session.execute(
            select(executor_categories.c.executor_id)
            .where(executor_categories.c.category_id == category_id)
            .limit(1)
        )
        return link.first() is not None

    async def delete(self, actor: Actor, category_id: int) -> None:
        self._require_manager(actor)
        category = await self.get(category_id)
        child = await self.session.execute(
            select(ServiceCategory.id).where(ServiceCategory.parent_id == category_id).limit(1)
        )
        if child.first() is not None:
            raise HasChildrenError(category_id)
        if await self._is_referenced(category_id):
            raise CategoryInUseError(category_id)
        await self.session.delete(category)
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            # Referenced after the check above
            raise CategoryInUseError(category_id) from exc
        logger.info("Category deleted", extra={"category_id": category_id})
