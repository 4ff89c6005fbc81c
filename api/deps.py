"""Request-scoped dependencies: the caller's identity and the engine services."""
from __future__ import annotations

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.db import get_session
from marketplace.actors import Actor
from marketplace.events import CeleryEventDispatcher, EventDispatcher
from marketplace.services.applications import ApplicationWorkflow
from marketplace.services.catalog import OrderCatalog
from marketplace.services.categories import CategoryTree
from marketplace.services.lifecycle import OrderLifecycle

# Токены выпускает сервис аутентификации, здесь мы их только проверяем
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)


def get_dispatcher() -> EventDispatcher:
    return CeleryEventDispatcher()


async def get_current_actor(token: str = Depends(oauth2_scheme)) -> Actor:
    """Builds the actor from the bearer token's ``sub``, ``role`` and ``user_type`` claims."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
        subject = payload.get("sub")
        if subject is None:
            raise credentials_exception
        return Actor.resolve(int(subject), payload.get("role", "user"), payload.get("user_type", "customer"))
    except (JWTError, ValueError):
        raise credentials_exception


async def get_optional_actor(token: str | None = Depends(optional_oauth2_scheme)) -> Actor | None:
    """Like ``get_current_actor`` for public routes; no token means an anonymous caller."""
    if token is None:
        return None
    return await get_current_actor(token)


def get_category_tree(db: AsyncSession = Depends(get_session)) -> CategoryTree:
    return CategoryTree(db)


def get_order_lifecycle(
    db: AsyncSession = Depends(get_session),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
) -> OrderLifecycle:
    return OrderLifecycle(db, dispatcher)


def get_application_workflow(
    db: AsyncSession = Depends(get_session),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
) -> ApplicationWorkflow:
    return ApplicationWorkflow(db, dispatcher)


def get_order_catalog(db: AsyncSession = Depends(get_session)) -> OrderCatalog:
    return OrderCatalog(db)
