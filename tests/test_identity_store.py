"""Tests for the identity store."""

from datetime import datetime, timezone

import pytest

from agentage.core.errors import UserNotFound
from agentage.schemas.user import ProviderLink


def _link(provider_id: str, email: str) -> ProviderLink:
    return ProviderLink(
        provider_id=provider_id,
        email=email,
        connected_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )


@pytest.mark.asyncio
async def test_create_normalises_email_and_finds_by_any_key(store):
    user = await store.create(
        email="  Ada@Example.COM ",
        name="Ada",
        providers={"github": _link("42", "Ada@Example.com")},
    )
    assert user.email == "ada@example.com"
    assert user.role == "user"
    assert user.is_active is True
    assert user.created_at == user.updated_at == user.last_login_at

    assert (await store.find_by_email("ADA@example.com")).id == user.id
    assert (await store.find_by_id(user.id)).id == user.id
    assert (await store.find_by_provider_id("github", "42")).id == user.id
    assert await store.find_by_provider_id("github", "43") is None
    assert await store.find_by_provider_id("google", "42") is None
    assert user.providers["github"].email == "ada@example.com"


@pytest.mark.asyncio
async def test_update_sets_and_unsets_provider_links(store):
    user = await store.create(email="bob@example.com", providers={"github": _link("1", "bob@example.com")})

    user = await store.update(user.id, providers={"google": _link("g-1", "bob@example.com")})
    assert sorted(user.providers) == ["github", "google"]

    user = await store.update(user.id, providers={"github": None})
    assert sorted(user.providers) == ["google"]
    assert await store.find_by_provider_id("github", "1") is None


@pytest.mark.asyncio
async def test_update_replaces_existing_link(store):
    user = await store.create(email="cy@example.com", providers={"github": _link("1", "cy@example.com")})
    user = await store.update(user.id, providers={"github": _link("2", "cy@example.com")})
    assert user.providers["github"].provider_id == "2"
    assert (await store.find_by_provider_id("github", "2")).id == user.id


@pytest.mark.asyncio
async def test_update_plain_fields(store, clock):
    user = await store.create(email="di@example.com", providers={"github": _link("1", "di@example.com")})
    clock.advance(60)
    user = await store.update(user.id, role="admin", updated_at=clock())
    assert user.role == "admin"
    assert user.updated_at == clock()


@pytest.mark.asyncio
async def test_update_rejects_unknown_fields(store):
    user = await store.create(email="ed@example.com", providers={"github": _link("1", "ed@example.com")})
    with pytest.raises(ValueError):
        await store.update(user.id, email="other@example.com")


@pytest.mark.asyncio
async def test_update_unknown_user(store):
    with pytest.raises(UserNotFound):
        await store.update("missing", name="x")


@pytest.mark.asyncio
async def test_list_users(store):
    await store.create(email="a@example.com", providers={"github": _link("1", "a@example.com")})
    await store.create(email="b@example.com", providers={"google": _link("2", "b@example.com")})
    total, users = await store.list_users()
    assert total == 2
    assert {u.email for u in users} == {"a@example.com", "b@example.com"}
