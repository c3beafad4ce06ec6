"""Dependency helpers for order service."""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenantpay.common import lifespan_session

from .repository import OrderRepository
from .services import Actor, OrderService


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """Yield an AsyncSession for the current request lifecycle."""

    session_factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with lifespan_session(session_factory) as session:
        yield session


def get_repository(session: AsyncSession = Depends(get_session)) -> OrderRepository:
    """Return a repository bound to the active session."""

    return OrderRepository(session)


def get_order_service(
    request: Request,
    repository: OrderRepository = Depends(get_repository),
) -> OrderService:
    return OrderService(
        repository,
        catalog=request.app.state.item_catalog,
        publisher=request.app.state.event_publisher,
    )


def get_actor(
    user_id: int | None = Header(default=None, alias="X-User-Id"),
    business_id: int | None = Header(default=None, alias="X-Business-Id"),
) -> Actor:
    """Caller identity forwarded by the authenticating gateway."""

    if user_id is None and business_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing caller identity")
    return Actor(user_id=user_id, business_id=business_id)


def get_customer(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return actor


def get_business(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.business_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Business-Id header")
    return actor
