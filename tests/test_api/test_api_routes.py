"""REST API tests: routes driven through the ASGI app with in-process fakes.

The lifespan does not run under ASGITransport, so the fixture wires
app.state the way the lifespan would.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest
import pytest_asyncio

from conftest import (
    GUILD_ID,
    MIDDLEMAN_ID,
    OUTSIDER_ID,
    OWNER_ID,
    PARTNER_ID,
    FakeKeyValueStore,
)
from trade_mediator.api.middleware import status_code_for
from trade_mediator.domain.exceptions import (
    ChannelCleanupError,
    MediatorError,
    TicketCooldownError,
    TicketNotFoundError,
)
from trade_mediator.main import create_app

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from fastapi import FastAPI

    from conftest import FakeChatPlatform


class PingableStore(FakeKeyValueStore):
    async def ping(self) -> bool:
        return True


@pytest.fixture
def app(session_factory, store, lifecycle, review_service, middleman_service) -> FastAPI:
    app = create_app()
    app.state.session_factory = session_factory
    app.state.store = store
    app.state.lifecycle_service = lifecycle
    app.state.review_service = review_service
    app.state.middleman_service = middleman_service
    return app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def _open(client: httpx.AsyncClient) -> dict:
    response = await client.post(
        "/api/v1/tickets",
        json={"guild_id": GUILD_ID, "owner_id": OWNER_ID, "partner_tag": f"<@{PARTNER_ID}>"},
    )
    assert response.status_code == 201, response.text
    return response.json()


async def _register_middleman(client: httpx.AsyncClient) -> None:
    response = await client.put(
        f"/api/v1/middlemen/{MIDDLEMAN_ID}",
        json={"display_name": "Trusty", "external_username": "trusty_mm"},
    )
    assert response.status_code == 200, response.text


class TestErrorMapping:
    def test_kinds_map_to_status_codes(self) -> None:
        assert status_code_for(TicketNotFoundError(1)) == 404
        assert status_code_for(TicketCooldownError(5)) == 429
        assert status_code_for(ChannelCleanupError("1", RuntimeError(), RuntimeError())) == 502
        assert status_code_for(MediatorError("plain")) == 400


class TestHealth:
    @pytest.mark.asyncio
    async def test_without_redis_probe(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["database"] == "healthy"
        assert body["redis"] == "not configured"
        assert body["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_everything_healthy(self, app: FastAPI, client: httpx.AsyncClient) -> None:
        app.state.store = PingableStore()

        body = (await client.get("/health")).json()

        assert body["status"] == "ok"
        assert body["redis"] == "healthy"


class TestTicketRoutes:
    @pytest.mark.asyncio
    async def test_full_lifecycle(self, client: httpx.AsyncClient, chat: FakeChatPlatform) -> None:
        await _register_middleman(client)
        opened = await _open(client)
        ticket_id = opened["ticket_id"]
        base = f"/api/v1/tickets/{ticket_id}"

        for user_id in (OWNER_ID, PARTNER_ID):
            response = await client.put(
                f"{base}/trades/{user_id}",
                json={"external_username": f"player{user_id}", "offer_description": "One golden sword"},
            )
            assert response.status_code == 200, response.text
            assert response.json()["status"] == "PENDING"
            assert response.json()["offer_description"] == "One golden sword"

        for user_id in (OWNER_ID, PARTNER_ID):
            response = await client.post(f"{base}/trades/{user_id}/confirm")
            assert response.json() == {"ticket_confirmed": False, "already_confirmed": False}

        claim = await client.post(f"{base}/claim", json={"actor_id": MIDDLEMAN_ID})
        assert claim.json()["status"] == "CONFIRMED"

        closure = await client.post(f"{base}/closure-request", json={"actor_id": MIDDLEMAN_ID})
        assert closure.json() == {"completed": False, "already_pending": False, "participant_count": 2}

        pending = await client.post(f"{base}/close", json={"actor_id": MIDDLEMAN_ID})
        assert pending.json() == {"closed": False, "pending": True}

        for user_id in (OWNER_ID, PARTNER_ID):
            response = await client.post(f"{base}/finalization/{user_id}")
            assert response.status_code == 200
        assert response.json() == {"changed": True, "completed": True}

        closed = await client.post(f"{base}/close", json={"actor_id": MIDDLEMAN_ID})
        assert closed.json() == {"closed": True, "pending": False}

        overview = (await client.get(base)).json()
        assert overview["status"] == "CLOSED"
        assert overview["assigned_middleman_id"] == MIDDLEMAN_ID
        assert overview["allowed_events"] == []
        assert {trade["status"] for trade in overview["trades"]} == {"COMPLETED"}

        review = await client.post(
            f"{base}/reviews",
            json={"reviewer_id": OWNER_ID, "middleman_id": MIDDLEMAN_ID, "rating": 5},
        )
        assert review.status_code == 201, review.text
        assert review.json()["average_rating"] == 5.0

        [invite_id] = [
            message_id
            for message_id, (_, message) in chat.messages.items()
            if message.title == "How did it go?"
        ]
        invite = (await client.get(f"/api/v1/review-invites/{invite_id}")).json()
        assert invite == {"message_id": invite_id, "ticket_id": ticket_id, "middleman_id": MIDDLEMAN_ID}

        profile = (await client.get(f"/api/v1/middlemen/{MIDDLEMAN_ID}")).json()
        assert profile["closed_tickets"] == 1
        assert profile["average_rating"] == 5.0

        stats = (await client.get(f"/api/v1/members/{MIDDLEMAN_ID}/stats")).json()
        assert stats["trades_completed"] == 1

    @pytest.mark.asyncio
    async def test_overview_lists_allowed_events(self, client: httpx.AsyncClient) -> None:
        opened = await _open(client)

        overview = (await client.get(f"/api/v1/tickets/{opened['ticket_id']}")).json()

        assert overview["status"] == "OPEN"
        assert overview["allowed_events"] == ["claim"]
        assert [p["role"] for p in overview["participants"]] == ["OWNER", "PARTNER"]
        assert overview["finalization"]["size"] == 2

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/health", headers={"X-Request-ID": "trace-123"})
        assert response.headers["X-Request-ID"] == "trace-123"


class TestTicketErrors:
    @pytest.mark.asyncio
    async def test_unknown_ticket(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/tickets/999")

        assert response.status_code == 404
        assert response.json()["error"] == "TICKET_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_invalid_partner_tag(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/tickets",
            json={"guild_id": GUILD_ID, "owner_id": OWNER_ID, "partner_tag": "@bob"},
        )

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "VALIDATION_FAILED"
        assert "partner_tag" in body["details"]

    @pytest.mark.asyncio
    async def test_open_ticket_cap(self, client: httpx.AsyncClient) -> None:
        for _ in range(3):
            await _open(client)

        response = await client.post(
            "/api/v1/tickets",
            json={"guild_id": GUILD_ID, "owner_id": OWNER_ID, "partner_tag": str(PARTNER_ID)},
        )

        assert response.status_code == 429
        assert response.json()["error"] == "TOO_MANY_OPEN_TICKETS"

    @pytest.mark.asyncio
    async def test_claim_errors(self, client: httpx.AsyncClient) -> None:
        opened = await _open(client)
        url = f"/api/v1/tickets/{opened['ticket_id']}/claim"

        unregistered = await client.post(url, json={"actor_id": MIDDLEMAN_ID})
        assert unregistered.status_code == 403
        assert unregistered.json()["details"] == {"action": "middleman:claim"}

        await _register_middleman(client)
        assert (await client.post(url, json={"actor_id": MIDDLEMAN_ID})).status_code == 200

        second = await client.post(url, json={"actor_id": MIDDLEMAN_ID})
        assert second.status_code == 409
        assert second.json()["error"] == "TICKET_ALREADY_CLAIMED"

    @pytest.mark.asyncio
    async def test_outsider_trade_data(self, client: httpx.AsyncClient) -> None:
        opened = await _open(client)
        response = await client.put(
            f"/api/v1/tickets/{opened['ticket_id']}/trades/{OUTSIDER_ID}",
            json={"external_username": "outsider", "offer_description": "Nothing at all"},
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_channel_creation_failure(
        self, client: httpx.AsyncClient, chat: FakeChatPlatform
    ) -> None:
        chat.fail_create_channel = RuntimeError("missing permissions")

        response = await client.post(
            "/api/v1/tickets",
            json={"guild_id": GUILD_ID, "owner_id": OWNER_ID, "partner_tag": str(PARTNER_ID)},
        )

        assert response.status_code == 502
        assert response.json()["error"] == "CHANNEL_CREATION_FAILED"

    @pytest.mark.asyncio
    async def test_unexpected_error(self, client: httpx.AsyncClient, chat: FakeChatPlatform) -> None:
        chat.fail_send = RuntimeError("boom")

        response = await client.post(
            "/api/v1/tickets",
            json={"guild_id": GUILD_ID, "owner_id": OWNER_ID, "partner_tag": str(PARTNER_ID)},
        )

        assert response.status_code == 500
        assert response.json()["error"] == "INTERNAL_ERROR"

    @pytest.mark.asyncio
    async def test_review_rating_out_of_range(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/tickets/1/reviews",
            json={"reviewer_id": OWNER_ID, "middleman_id": MIDDLEMAN_ID, "rating": 9},
        )
        assert response.status_code == 422
        assert [error["loc"][-1] for error in response.json()["detail"]] == ["rating"]

    @pytest.mark.asyncio
    async def test_unknown_review_invite(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/review-invites/123")

        assert response.status_code == 404
        assert response.json()["error"] == "REVIEW_INVITE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_unknown_middleman(self, client: httpx.AsyncClient) -> None:
        response = await client.get(f"/api/v1/middlemen/{OUTSIDER_ID}")
        assert response.status_code == 404
