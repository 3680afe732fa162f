"""Tests for the Redis-backed key/value store (client mocked)."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from trade_mediator.infrastructure.redis_client import RedisKeyValueStore


@pytest.fixture
def client() -> AsyncMock:
    return AsyncMock()


class TestRedisKeyValueStore:
    @pytest.mark.asyncio
    async def test_set_with_ttl(self, client: AsyncMock) -> None:
        store = RedisKeyValueStore(client)
        await store.set("cooldown:ticket-open:1", "123.0", ttl_seconds=60)
        client.set.assert_awaited_once_with("mediator:cooldown:ticket-open:1", "123.0", ex=60)

    @pytest.mark.asyncio
    async def test_set_without_ttl(self, client: AsyncMock) -> None:
        store = RedisKeyValueStore(client, prefix="")
        await store.set("panel:trade:1", "m1")
        client.set.assert_awaited_once_with("panel:trade:1", "m1")

    @pytest.mark.asyncio
    async def test_get_decodes_bytes(self, client: AsyncMock) -> None:
        client.get.return_value = b"m1"
        store = RedisKeyValueStore(client)
        assert await store.get("panel:trade:1") == "m1"
        client.get.assert_awaited_once_with("mediator:panel:trade:1")

    @pytest.mark.asyncio
    async def test_missing_key(self, client: AsyncMock) -> None:
        client.get.return_value = None
        assert await RedisKeyValueStore(client).get("nope") is None

    @pytest.mark.asyncio
    async def test_delete(self, client: AsyncMock) -> None:
        await RedisKeyValueStore(client).delete("panel:trade:1")
        client.delete.assert_awaited_once_with("mediator:panel:trade:1")
