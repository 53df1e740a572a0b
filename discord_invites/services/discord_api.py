"""Async Discord REST client for channel invites."""
from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Optional

import aiohttp
from aiohttp import ClientError

from ..config import Settings
from ..errors import ConfigurationError, MalformedUpstreamResponse, UpstreamError


DEFAULT_API_BASE = "https://discord.com/api/v10"


class DiscordInviteClient:
    def __init__(
        self,
        token: Optional[str],
        channel_id: Optional[str],
        api_base: str = DEFAULT_API_BASE,
        timeout: float = 10.0,
    ):
        if not token:
            raise ConfigurationError("DISCORD_BOT_TOKEN is not set")
        if not channel_id:
            raise ConfigurationError("DISCORD_CHANNEL_ID is not set")

        self.token = token
        self.channel_id = channel_id
        self.api_base = api_base.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def invites_url(self) -> str:
        return f"{self.api_base}/channels/{self.channel_id}/invites"

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def create_invite(
        self,
        max_age_seconds: int,
        max_uses: int = 1,
        temporary: bool = False,
        unique: bool = True,
    ) -> Dict[str, Any]:
        """Create a channel invite and return the decoded response body.

        Raises ``UpstreamError`` for non-success statuses and transport failures
        and ``MalformedUpstreamResponse`` when the body is not a JSON object
        carrying a ``code``. Nothing is retried.
        """
        payload = {
            "max_age": max_age_seconds,
            "max_uses": max_uses,
            "temporary": temporary,
            "unique": unique,
        }
        headers = {
            "Authorization": f"Bot {self.token}",
            "Content-Type": "application/json",
        }

        session = self._session
        owns_session = session is None or session.closed
        if owns_session:
            session = aiohttp.ClientSession(timeout=self._timeout)
        try:
            async with session.post(self.invites_url, json=payload, headers=headers) as resp:
                body = await resp.text(errors="replace")
                status = resp.status
        except (ClientError, asyncio.TimeoutError) as e:
            # connection details stay in the chained exception
            raise UpstreamError(status=502) from e
        finally:
            if owns_session:
                await session.close()

        if status < 200 or status >= 300:
            raise UpstreamError(status=status, details=body)

        try:
            data = json.loads(body)
        except ValueError as e:
            raise MalformedUpstreamResponse(details=f"Response is not JSON: {e}") from e
        if not isinstance(data, dict) or not data.get("code"):
            raise MalformedUpstreamResponse(details="Response has no invite code")
        return data


def create_discord_client_from_settings(settings: Settings) -> DiscordInviteClient:
    return DiscordInviteClient(
        token=settings.DISCORD_BOT_TOKEN,
        channel_id=settings.DISCORD_CHANNEL_ID,
        api_base=settings.DISCORD_API_BASE,
        timeout=settings.DISCORD_TIMEOUT_SECONDS,
    )
