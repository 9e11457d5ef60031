import os
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

os.environ.update(
    {
        "ENVIRONMENT": "development",
        "DATABASE_URL": "sqlite+aiosqlite:///:memory:",
        "JWT_SECRET": "test-access-secret-0123456789abcdef0123456789",
        "JWT_REFRESH_SECRET": "test-refresh-secret-0123456789abcdef012345678",
        "TOKEN_BLACKLIST_BACKEND": "memory",
        "ADMIN_API_KEY": "test-admin-key",
        "INTEGRATION_API_KEY": "test-integration-key",
        "BCRYPT_ROUNDS": "4",
        "CASHBACK_SWEEPER_ENABLED": "false",
        "OTEL_EXPORTER_OTLP_ENDPOINT": "",
    }
)


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from cashheros_api.app import create_app  # noqa: E402
from cashheros_api.db.base import Base  # noqa: E402
from cashheros_api.db.session import get_session  # noqa: E402
from cashheros_api.models.cashback import CashbackOffer  # noqa: E402
from cashheros_api.models.coupon import Coupon  # noqa: E402
from cashheros_api.models.store import Store  # noqa: E402
from cashheros_api.models.user import User, UserRoleEnum  # noqa: E402
from cashheros_api.services.auth import TokenService  # noqa: E402
from cashheros_api.services.auth.passwords import hash_password  # noqa: E402

DEFAULT_PASSWORD = "correct-horse-battery"


async def _build_factory(url: str, **engine_kwargs: Any):
    engine = create_async_engine(url, future=True, **engine_kwargs)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine, async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def session_factory():
    engine, factory = await _build_factory("sqlite+aiosqlite:///:memory:")
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """File-backed database so concurrent sessions use separate connections."""

    engine, factory = await _build_factory(
        f"sqlite+aiosqlite:///{tmp_path / 'cashheros.db'}",
        connect_args={"timeout": 30},
    )
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()
        app.state.token_blacklist.clear()


@pytest.fixture
def make_user():
    async def _make(
        session_factory,
        email: str | None = None,
        *,
        role: UserRoleEnum = UserRoleEnum.USER,
        password: str = DEFAULT_PASSWORD,
        **balances: Decimal,
    ) -> User:
        async with session_factory() as session:
            user = User(
                email=email or f"{os.urandom(4).hex()}@example.com",
                password_hash=hash_password(password),
                display_name="Test User",
                role=role.value,
                token_version=0,
                **balances,
            )
            session.add(user)
            await session.commit()
            await session.refresh(user)
            return user

    return _make


@pytest.fixture
def make_store():
    async def _make(session_factory, name: str | None = None, **fields: Any) -> Store:
        async with session_factory() as session:
            store = Store(
                name=name or f"Store {os.urandom(3).hex()}",
                categories=fields.pop("categories", ["fashion"]),
                cashback_percentage=fields.pop("cashback_percentage", Decimal("5.00")),
                **fields,
            )
            session.add(store)
            await session.commit()
            await session.refresh(store)
            return store

    return _make


@pytest.fixture
def make_coupon():
    async def _make(session_factory, store: Store, code: str | None = None, **fields: Any) -> Coupon:
        async with session_factory() as session:
            coupon = Coupon(
                code=code or os.urandom(4).hex().upper(),
                title=fields.pop("title", "Seasonal discount"),
                store_id=store.id,
                discount=fields.pop("discount", Decimal("20")),
                is_active=fields.pop("is_active", True),
                expiry_date=fields.pop("expiry_date", datetime.now(timezone.utc) + timedelta(days=7)),
                usage_limit=fields.pop("usage_limit", 100),
                usage_count=fields.pop("usage_count", 0),
                **fields,
            )
            session.add(coupon)
            await session.commit()
            await session.refresh(coupon)
            return coupon

    return _make


@pytest.fixture
def make_offer():
    async def _make(session_factory, store: Store, **fields: Any) -> CashbackOffer:
        async with session_factory() as session:
            offer = CashbackOffer(
                title=fields.pop("title", "Double cashback"),
                store_id=store.id,
                rate=fields.pop("rate", Decimal("8.00")),
                **fields,
            )
            session.add(offer)
            await session.commit()
            await session.refresh(offer)
            return offer

    return _make


@pytest.fixture
def auth_headers():
    """Bearer headers for ``user`` signed with the app's live configuration."""

    async def _headers(app, session_factory, user: User) -> dict[str, str]:
        async with session_factory() as session:
            tokens = TokenService(session, app.state.token_blacklist).issue(user)
        return {"Authorization": f"Bearer {tokens.access_token}"}

    return _headers
