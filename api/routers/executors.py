from fastapi import APIRouter, Depends, Query

from api.deps import get_order_catalog
from api.schemas import ExecutorPageResponse, ExecutorResponse
from marketplace.services.catalog import (
    DEFAULT_PAGE_SIZE,
    DEFAULT_SEARCH_RADIUS_KM,
    MAX_PAGE_SIZE,
    ExecutorSearch,
    OrderCatalog,
)
from marketplace.services.geo import Coordinates

router = APIRouter()


@router.get("", response_model=ExecutorPageResponse)
async def search_executors(
    category_id: int | None = Query(None),
    min_rating: float | None = Query(None, ge=0, le=5),
    only_available: bool = False,
    only_verified: bool = False,
    only_premium: bool = False,
    lat: float | None = Query(None, ge=-90, le=90),
    lng: float | None = Query(None, ge=-180, le=180),
    radius: float = Query(DEFAULT_SEARCH_RADIUS_KM, gt=0, le=500),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    catalog: OrderCatalog = Depends(get_order_catalog),
):
    """Каталог исполнителей: сначала премиум, затем по рейтингу."""
    criteria = ExecutorSearch(
        category_id=category_id,
        min_rating=min_rating,
        only_available=only_available,
        only_verified=only_verified,
        only_premium=only_premium,
        lat=lat,
        lng=lng,
        radius_km=radius,
        page=page,
        limit=limit,
    )
    return await catalog.search_executors(criteria)


@router.get("/nearby", response_model=list[ExecutorResponse])
async def nearby_executors(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    radius: float = Query(DEFAULT_SEARCH_RADIUS_KM, gt=0, le=500),
    catalog: OrderCatalog = Depends(get_order_catalog),
):
    return await catalog.nearby_executors(Coordinates(lat, lng), radius)
