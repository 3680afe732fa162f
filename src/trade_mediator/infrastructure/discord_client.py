"""Discord REST adapter implementing the ChatPlatform port.

Talks to the Discord HTTP API v10 with an httpx.AsyncClient. Rate limits (429),
server errors (5xx) and transport failures are retried with exponential
backoff; any other non-2xx response raises DiscordAPIError immediately.

Usage:
    platform = DiscordRestChatPlatform.from_settings(settings)
    channel_id = await platform.create_channel(spec)
    await platform.aclose()
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from trade_mediator.logging_config import get_logger

if TYPE_CHECKING:
    from trade_mediator.config import Settings
    from trade_mediator.domain.ports import (
        ChannelSpec,
        OutboundMessage,
        PermissionGrant,
    )

logger = get_logger(__name__)

# --- Permission bits (https://discord.com/developers/docs/topics/permissions) ---
MANAGE_CHANNELS = 1 << 4
VIEW_CHANNEL = 1 << 10
SEND_MESSAGES = 1 << 11
READ_MESSAGE_HISTORY = 1 << 16

GUILD_TEXT_CHANNEL = 0
OVERWRITE_ROLE = 0
OVERWRITE_MEMBER = 1

_BUTTON_STYLES = {"primary": 1, "secondary": 2, "success": 3, "danger": 4}
_EMBED_COLOR = 0x5865F2


class DiscordAPIError(Exception):
    """A non-retryable (or retries exhausted) Discord API failure."""

    def __init__(self, status_code: int, method: str, path: str, body: str = "") -> None:
        self.status_code = status_code
        self.method = method
        self.path = path
        self.body = body
        super().__init__(f"Discord API {method} {path} failed with {status_code}: {body[:200]}")


class _RetryableResponse(DiscordAPIError):
    """429 or 5xx; retried by the request loop."""


def permission_bits(grant: PermissionGrant) -> int:
    bits = 0
    if grant.view:
        bits |= VIEW_CHANNEL
    if grant.send:
        bits |= SEND_MESSAGES
    if grant.read_history:
        bits |= READ_MESSAGE_HISTORY
    if grant.manage:
        bits |= MANAGE_CHANNELS
    return bits


def build_channel_payload(spec: ChannelSpec) -> dict[str, Any]:
    """Private text channel: @everyone denied, each grant allowed explicitly."""
    overwrites: list[dict[str, Any]] = [
        {
            # The @everyone role shares the guild's id
            "id": str(spec.guild_id),
            "type": OVERWRITE_ROLE,
            "allow": "0",
            "deny": str(VIEW_CHANNEL),
        }
    ]
    for grant in spec.grants:
        overwrites.append(
            {
                "id": str(grant.user_id),
                "type": OVERWRITE_MEMBER,
                "allow": str(permission_bits(grant)),
                "deny": "0",
            }
        )

    payload: dict[str, Any] = {
        "name": spec.name,
        "type": GUILD_TEXT_CHANNEL,
        "permission_overwrites": overwrites,
    }
    if spec.topic:
        payload["topic"] = spec.topic
    if spec.parent_id:
        payload["parent_id"] = spec.parent_id
    return payload


def build_message_payload(message: OutboundMessage) -> dict[str, Any]:
    """Map an OutboundMessage to a message create/edit body."""
    embed: dict[str, Any] = {"title": message.title, "color": _EMBED_COLOR}
    if message.description:
        embed["description"] = message.description
    if message.fields:
        embed["fields"] = [
            {"name": f.name, "value": f.value, "inline": f.inline} for f in message.fields
        ]
    if message.attachment is not None:
        embed["image"] = {"url": f"attachment://{message.attachment.filename}"}

    components: list[dict[str, Any]] = []
    if message.controls:
        components.append(
            {
                "type": 1,
                "components": [
                    {
                        "type": 2,
                        "style": _BUTTON_STYLES.get(control.style, 1),
                        "label": control.label,
                        "custom_id": control.custom_id,
                        "disabled": control.disabled,
                    }
                    for control in message.controls
                ],
            }
        )

    return {
        "content": message.content or "",
        "embeds": [embed],
        "components": components,
        "allowed_mentions": {"parse": [], "users": [str(uid) for uid in message.mentions]},
    }


class DiscordRestChatPlatform:
    """ChatPlatform over the Discord REST API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        max_retries: int = 3,
        backoff_min: float = 0.5,
        backoff_max: float = 8.0,
    ) -> None:
        self._client = client
        self._max_retries = max(1, max_retries)
        self._backoff_min = backoff_min
        self._backoff_max = backoff_max

    @classmethod
    def from_settings(cls, settings: Settings) -> DiscordRestChatPlatform:
        client = httpx.AsyncClient(
            base_url=settings.discord_api_base_url,
            headers={
                "Authorization": f"Bot {settings.discord_bot_token}",
                "User-Agent": "DiscordBot (trade-mediator, 0.1.0)",
            },
            timeout=settings.discord_timeout_seconds,
        )
        return cls(client, max_retries=settings.discord_max_retries)

    async def aclose(self) -> None:
        await self._client.aclose()

    # --- Transport ---

    async def _request(
        self,
        method: str,
        path: str,
        *,
        reason: str | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        headers = kwargs.pop("headers", {})
        if reason:
            headers["X-Audit-Log-Reason"] = reason

        retrying = AsyncRetrying(
            retry=retry_if_exception_type((_RetryableResponse, httpx.TransportError)),
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(multiplier=1, min=self._backoff_min, max=self._backoff_max),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                response = await self._client.request(method, path, headers=headers, **kwargs)
                if response.status_code == 429 or response.status_code >= 500:
                    logger.warning(
                        "discord.retryable_response",
                        method=method,
                        path=path,
                        status_code=response.status_code,
                        attempt=attempt.retry_state.attempt_number,
                    )
                    raise _RetryableResponse(response.status_code, method, path, response.text)
                if response.status_code >= 400:
                    raise DiscordAPIError(response.status_code, method, path, response.text)
                return response
        raise RuntimeError("unreachable")  # pragma: no cover

    async def _send_payload(
        self,
        method: str,
        path: str,
        message: OutboundMessage,
    ) -> httpx.Response:
        payload = build_message_payload(message)
        if message.attachment is None:
            return await self._request(method, path, json=payload)

        attachment = message.attachment
        payload["attachments"] = [{"id": 0, "filename": attachment.filename}]
        return await self._request(
            method,
            path,
            data={"payload_json": json.dumps(payload)},
            files={
                "files[0]": (attachment.filename, attachment.content, attachment.content_type)
            },
        )

    # --- ChatPlatform ---

    async def create_channel(self, spec: ChannelSpec) -> str:
        response = await self._request(
            "POST",
            f"/guilds/{spec.guild_id}/channels",
            json=build_channel_payload(spec),
            reason=spec.reason,
        )
        channel_id = str(response.json()["id"])
        logger.info("discord.channel_created", channel_id=channel_id, guild_id=spec.guild_id)
        return channel_id

    async def delete_channel(self, channel_id: str, reason: str | None = None) -> None:
        await self._request("DELETE", f"/channels/{channel_id}", reason=reason)
        logger.info("discord.channel_deleted", channel_id=channel_id)

    async def send_message(self, channel_id: str, message: OutboundMessage) -> str:
        response = await self._send_payload("POST", f"/channels/{channel_id}/messages", message)
        return str(response.json()["id"])

    async def edit_message(
        self, channel_id: str, message_id: str, message: OutboundMessage
    ) -> None:
        await self._send_payload(
            "PATCH", f"/channels/{channel_id}/messages/{message_id}", message
        )

    async def set_member_permissions(
        self, channel_id: str, user_id: int, grant: PermissionGrant
    ) -> None:
        await self._request(
            "PUT",
            f"/channels/{channel_id}/permissions/{user_id}",
            json={"allow": str(permission_bits(grant)), "deny": "0", "type": OVERWRITE_MEMBER},
        )

    async def fetch_display_name(self, guild_id: int, user_id: int) -> str | None:
        try:
            response = await self._request("GET", f"/guilds/{guild_id}/members/{user_id}")
            member = response.json()
        except Exception:
            logger.warning("discord.display_name_failed", guild_id=guild_id, user_id=user_id)
            return None
        user = member.get("user") or {}
        return member.get("nick") or user.get("global_name") or user.get("username")
