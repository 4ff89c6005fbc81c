from fastapi import APIRouter, Depends, Query, status

from api.deps import get_category_tree, get_current_actor
from api.schemas import (
    BreadcrumbResponse,
    CategoryCreate,
    CategoryResponse,
    CategoryTreeResponse,
    CategoryUpdate,
    ReparentRequest,
)
from marketplace.actors import Actor
from marketplace.services.categories import CategoryTree

router = APIRouter()


@router.get("", response_model=list[CategoryTreeResponse])
async def get_tree(
    locale: str | None = Query(None),
    only_active: bool = True,
    categories: CategoryTree = Depends(get_category_tree),
):
    """Дерево категорий с локализованными названиями."""
    return await categories.tree(only_active=only_active, locale=locale)


@router.get("/roots", response_model=list[CategoryResponse])
async def get_roots(categories: CategoryTree = Depends(get_category_tree)):
    return await categories.roots()


@router.get("/popular", response_model=list[CategoryResponse])
async def get_popular(
    limit: int = Query(8, ge=1, le=50),
    categories: CategoryTree = Depends(get_category_tree),
):
    return await categories.popular(limit=limit)


@router.get("/slug/{slug}", response_model=CategoryResponse)
async def get_by_slug(slug: str, categories: CategoryTree = Depends(get_category_tree)):
    return await categories.get_by_slug(slug)


@router.get("/{category_id}", response_model=CategoryResponse)
async def get_category(category_id: int, categories: CategoryTree = Depends(get_category_tree)):
    return await categories.get(category_id)


@router.get("/{category_id}/breadcrumbs", response_model=list[BreadcrumbResponse])
async def get_breadcrumbs(
    category_id: int,
    locale: str | None = Query(None),
    categories: CategoryTree = Depends(get_category_tree),
):
    return await categories.breadcrumbs(category_id, locale)


@router.post("", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED)
async def create_category(
    payload: CategoryCreate,
    actor: Actor = Depends(get_current_actor),
    categories: CategoryTree = Depends(get_category_tree),
):
    return await categories.create(actor, payload.model_dump(exclude_none=True))


@router.patch("/{category_id}", response_model=CategoryResponse)
async def update_category(
    category_id: int,
    payload: CategoryUpdate,
    actor: Actor = Depends(get_current_actor),
    categories: CategoryTree = Depends(get_category_tree),
):
    """Частичное обновление; перенос в другую ветку проверяется на циклы."""
    return await categories.update(actor, category_id, payload.model_dump(exclude_unset=True))


@router.post("/{category_id}/move", response_model=CategoryResponse)
async def move_category(
    category_id: int,
    payload: ReparentRequest,
    actor: Actor = Depends(get_current_actor),
    categories: CategoryTree = Depends(get_category_tree),
):
    return await categories.reparent(actor, category_id, payload.parent_id)


@router.delete("/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_category(
    category_id: int,
    actor: Actor = Depends(get_current_actor),
    categories: CategoryTree = Depends(get_category_tree),
):
    await categories.delete(actor, category_id)
