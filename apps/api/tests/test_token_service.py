from datetime import datetime, timedelta, timezone

import jwt
import pytest

from cashheros_api.core.settings import settings
from cashheros_api.models.user import UserRoleEnum
from cashheros_api.services.auth import InMemoryTokenBlacklist, InvalidTokenError, TokenService


@pytest.mark.asyncio
async def test_issued_access_token_verifies_with_matching_claims(session_factory, make_user) -> None:
    user = await make_user(session_factory, "claims@example.com", role=UserRoleEnum.ADMIN)

    async with session_factory() as session:
        service = TokenService(session, InMemoryTokenBlacklist())
        pair = service.issue(user)
        claims = await service.verify_access(pair.access_token)

    assert claims.user_id == user.id
    assert claims.role == "admin"
    assert claims.is_admin
    assert claims.email == "claims@example.com"
    assert claims.token_version == 0


@pytest.mark.asyncio
async def test_access_and_refresh_tokens_use_distinct_secrets(session_factory, make_user) -> None:
    user = await make_user(session_factory)

    async with session_factory() as session:
        service = TokenService(session, InMemoryTokenBlacklist())
        pair = service.issue(user)

        with pytest.raises(InvalidTokenError):
            await service.verify_access(pair.refresh_token)
        with pytest.raises(InvalidTokenError):
            await service.refresh(pair.access_token)


@pytest.mark.asyncio
async def test_expired_access_token_is_rejected(session_factory, make_user) -> None:
    user = await make_user(session_factory)
    issued = datetime.now(timezone.utc) - timedelta(hours=1)

    async with session_factory() as session:
        service = TokenService(session, InMemoryTokenBlacklist(), clock=lambda: issued)
        pair = service.issue(user)

        with pytest.raises(InvalidTokenError) as excinfo:
            await service.verify_access(pair.access_token)
    assert excinfo.value.reason == "expired"


@pytest.mark.asyncio
async def test_tampered_token_is_rejected(session_factory, make_user) -> None:
    user = await make_user(session_factory)

    async with session_factory() as session:
        service = TokenService(session, InMemoryTokenBlacklist())
        pair = service.issue(user)
        payload = jwt.decode(pair.access_token, options={"verify_signature": False})
        payload["role"] = "admin"
        forged = jwt.encode(payload, "x" * 48, algorithm="HS256")

        with pytest.raises(InvalidTokenError):
            await service.verify_access(forged)


@pytest.mark.asyncio
async def test_logout_blacklists_token_and_is_idempotent(session_factory, make_user) -> None:
    user = await make_user(session_factory)
    blacklist = InMemoryTokenBlacklist()

    async with session_factory() as session:
        service = TokenService(session, blacklist)
        pair = service.issue(user)

        await service.logout(pair.access_token)
        await service.logout(pair.access_token)
        assert len(blacklist) == 1

        with pytest.raises(InvalidTokenError) as excinfo:
            await service.verify_access(pair.access_token)
        assert excinfo.value.reason == "revoked"

        await service.logout("not-a-jwt")
        assert len(blacklist) == 1


@pytest.mark.asyncio
async def test_logout_caps_blacklist_ttl_at_access_lifetime(session_factory, make_user) -> None:
    blacklist = InMemoryTokenBlacklist()
    recorded: list[float] = []

    async def record_add(token: str, ttl_seconds: float) -> None:
        recorded.append(ttl_seconds)

    blacklist.add = record_add  # type: ignore[method-assign]
    far_future = int((datetime.now(timezone.utc) + timedelta(days=365)).timestamp())
    forged = jwt.encode({"userId": "nobody", "exp": far_future}, "y" * 48, algorithm="HS256")

    async with session_factory() as session:
        await TokenService(session, blacklist).logout(forged)

    assert recorded and recorded[0] <= settings.access_token_ttl.total_seconds()


@pytest.mark.asyncio
async def test_revoke_all_invalidates_access_and_refresh_tokens(session_factory, make_user) -> None:
    user = await make_user(session_factory)

    async with session_factory() as session:
        service = TokenService(session, InMemoryTokenBlacklist())
        old_pair = service.issue(user)

        version = await service.revoke_all(user.id)
        assert version == 1

        with pytest.raises(InvalidTokenError):
            await service.verify_access(old_pair.access_token)
        with pytest.raises(InvalidTokenError):
            await service.refresh(old_pair.refresh_token)

        refreshed_user = await session.get(type(user), user.id, populate_existing=True)
        new_pair = service.issue(refreshed_user)
        claims = await service.verify_access(new_pair.access_token)
        assert claims.token_version == 1


@pytest.mark.asyncio
async def test_refresh_without_rotation_returns_only_access_token(session_factory, make_user) -> None:
    user = await make_user(session_factory)

    async with session_factory() as session:
        service = TokenService(session, InMemoryTokenBlacklist())
        pair = service.issue(user)
        result = await service.refresh(pair.refresh_token)

        assert result.refresh_token is None
        claims = await service.verify_access(result.access_token)
        assert claims.user_id == user.id


@pytest.mark.asyncio
async def test_refresh_with_rotation_returns_new_refresh_token(session_factory, make_user) -> None:
    user = await make_user(session_factory)
    rotating = settings.model_copy(update={"refresh_token_rotation": True})

    async with session_factory() as session:
        service = TokenService(session, InMemoryTokenBlacklist(), config=rotating)
        pair = service.issue(user)
        result = await service.refresh(pair.refresh_token)

    assert result.refresh_token is not None
    assert result.refresh_token != pair.refresh_token


@pytest.mark.asyncio
async def test_logout_of_one_session_keeps_same_second_session_valid(session_factory, make_user) -> None:
    user = await make_user(session_factory)
    issued = datetime.now(timezone.utc).replace(microsecond=0)

    async with session_factory() as session:
        service = TokenService(session, InMemoryTokenBlacklist(), clock=lambda: issued)
        laptop = service.issue(user)
        phone = service.issue(user)
        assert laptop.access_token != phone.access_token

        await service.logout(laptop.access_token)

        claims = await service.verify_access(phone.access_token)
        assert claims.user_id == user.id
        with pytest.raises(InvalidTokenError) as excinfo:
            await service.verify_access(laptop.access_token)
        assert excinfo.value.reason == "revoked"


@pytest.mark.asyncio
async def test_logout_ttl_follows_injected_clock(session_factory, make_user) -> None:
    user = await make_user(session_factory)
    blacklist = InMemoryTokenBlacklist()
    recorded: list[float] = []

    async def record_add(token: str, ttl_seconds: float) -> None:
        recorded.append(ttl_seconds)

    blacklist.add = record_add  # type: ignore[method-assign]
    issued = datetime.now(timezone.utc).replace(microsecond=0) - timedelta(minutes=5)

    async with session_factory() as session:
        service = TokenService(session, blacklist, clock=lambda: issued)
        pair = service.issue(user)
        await service.logout(pair.access_token)

    assert recorded == [settings.access_token_ttl.total_seconds()]
