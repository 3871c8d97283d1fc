from __future__ import annotations

import os

# Settings are read at import time; point them at throwaway values first.
os.environ.setdefault("DATABASE_URL_ASYNC", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET", "test-secret-with-enough-length-for-hs256")
os.environ.setdefault("LOG_FORMAT", "console")
os.environ.setdefault("LOG_LEVEL", "warning")

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from storedesk.db.session import get_db

# Ensure Base + models are registered before create_all
from storedesk.db.base import Base
import storedesk.models  # noqa: F401

from storedesk.core.roles import MembershipRole, MembershipStatus
from storedesk.crud import membership as membership_crud
from storedesk.crud import organization as organization_crud
from storedesk.models.membership import Membership


# ---------------------------------------------------------
# Engine: one SQLite file per test
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'storedesk.db'}",
        future=True,
        echo=False,
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture()
def sessionmaker(engine):
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )


# ---------------------------------------------------------
# DB session for services + assertions
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def db(sessionmaker):
    async with sessionmaker() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------
# FastAPI app + dependency override
# ---------------------------------------------------------
@pytest.fixture()
def app(sessionmaker):
    from storedesk.main import app as fastapi_app

    async def _override_get_db():
        async with sessionmaker() as session:
            yield session

    fastapi_app.dependency_overrides[get_db] = _override_get_db
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


# ---------------------------------------------------------
# HTTP client
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
    ) as ac:
        yield ac


# ---------------------------------------------------------
# Builders
# ---------------------------------------------------------
async def create_org(db, organization_id: str = "org-alpha", name: str = "Alpha Store"):
    org, _ = await organization_crud.upsert_organization(db, organization_id, name)
    return org


async def add_member(
    db,
    organization_id: str,
    email: str,
    role: MembershipRole = MembershipRole.CUSTOMER,
    status: MembershipStatus = MembershipStatus.ACTIVE,
    external_id: str | None = None,
) -> Membership:
    m = Membership(
        external_id=external_id or f"kp_{email.split('@')[0]}",
        email=email,
        organization_id=organization_id,
        role=role,
        status=status,
    )
    return await membership_crud.insert(db, m)
