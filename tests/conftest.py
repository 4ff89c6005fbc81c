from contextlib import asynccontextmanager
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from marketplace.actors import Actor
from marketplace.events import InMemoryEventDispatcher
# Важно: импортируем все модели, чтобы они попали в Base.metadata
from marketplace.models import Base, ExecutorProfile, PriceType, ServiceCategory
from marketplace.services.applications import ApplicationWorkflow
from marketplace.services.lifecycle import OrderDraft, OrderLifecycle

TEST_DATABASE_URL = "sqlite+aiosqlite://"

CUSTOMER_ID = 100
OTHER_CUSTOMER_ID = 101
ADMIN_ID = 1
EXECUTOR_USER_IDS = (200, 201, 202)

# Ташкент, около 5.6 км от исполнителя по умолчанию
ORDER_POINT = (41.35, 69.25)
EXECUTOR_POINT = (41.30, 69.24)


@pytest_asyncio.fixture
async def test_engine():
    """Отдельная in-memory база на каждый тест"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def test_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def test_db_session(session_factory):
    """Фабрика сессий для тестов, которым нужно несколько независимых сессий:
    `async with test_db_session() as session:`
    """

    @asynccontextmanager
    async def _session_cm():
        async with session_factory() as session:
            yield session

    return _session_cm


@pytest.fixture
def dispatcher():
    return InMemoryEventDispatcher()


@pytest.fixture
def customer():
    return Actor.resolve(CUSTOMER_ID, "user", "customer")


@pytest.fixture
def other_customer():
    return Actor.resolve(OTHER_CUSTOMER_ID, "user", "customer")


@pytest.fixture
def admin():
    return Actor.resolve(ADMIN_ID, "admin", "customer")


@pytest.fixture
def executors():
    return [Actor.resolve(user_id, "user", "executor") for user_id in EXECUTOR_USER_IDS]


@pytest.fixture
def lifecycle(test_session, dispatcher):
    return OrderLifecycle(test_session, dispatcher)


@pytest.fixture
def workflow(test_session, dispatcher):
    return ApplicationWorkflow(test_session, dispatcher)


@pytest.fixture
def make_category(test_session):
    async def _make(name_ru="Сантехника", slug=None, parent_id=None, **fields):
        category = ServiceCategory(
            name_ru=name_ru,
            name_uz=fields.pop("name_uz", name_ru),
            slug=slug or f"cat-{name_ru.lower().replace(' ', '-')}",
            parent_id=parent_id,
            **fields,
        )
        test_session.add(category)
        await test_session.commit()
        return category

    return _make


@pytest.fixture
def make_executor(test_session):
    async def _make(user_id, point=EXECUTOR_POINT, radius_km=10.0, categories=(), **fields):
        lat, lng = point if point is not None else (None, None)
        profile = ExecutorProfile(
            user_id=user_id,
            location_lat=lat,
            location_lng=lng,
            work_radius_km=radius_km,
            categories=list(categories),
            **fields,
        )
        test_session.add(profile)
        await test_session.commit()
        return profile

    return _make


def full_draft(category_id, point=ORDER_POINT, **overrides):
    lat, lng = point if point is not None else (None, None)
    values = dict(
        category_id=category_id,
        title="Починить кран",
        description="Течёт кран на кухне",
        price_type=PriceType.FIXED,
        budget_from=Decimal("200000"),
        budget_to=Decimal("400000"),
        address="Ташкент, Чиланзар 5",
        location_lat=lat,
        location_lng=lng,
    )
    values.update(overrides)
    return OrderDraft(**values)


@pytest.fixture
def make_order(lifecycle, customer):
    async def _make(category_id, publish=True, actor=None, **overrides):
        draft = full_draft(category_id, publish=publish, **overrides)
        return await lifecycle.create_order(actor or customer, draft)

    return _make


@pytest.fixture
def order_draft():
    return full_draft
