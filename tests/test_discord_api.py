import logging

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from discord_invites.errors import ConfigurationError, MalformedUpstreamResponse, UpstreamError
from discord_invites.services.discord_api import DiscordInviteClient


class FakeDiscordApi:
    """Minimal stand-in for the channel invites endpoint."""

    def __init__(self):
        self.requests = []
        self.status = 200
        self.body = '{"code": "AbCdEf", "max_age": 120, "max_uses": 1}'

    async def create_invite(self, request: web.Request) -> web.Response:
        self.requests.append(
            {
                "channel_id": request.match_info["channel_id"],
                "authorization": request.headers.get("Authorization"),
                "json": await request.json(),
            }
        )
        return web.Response(status=self.status, text=self.body, content_type="application/json")

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/channels/{channel_id}/invites", self.create_invite)
        return app


@pytest.mark.asyncio
async def test_create_invite_sends_expected_request():
    api = FakeDiscordApi()
    async with TestServer(api.app()) as server:
        client = DiscordInviteClient("secret", "42", api_base=f"http://{server.host}:{server.port}")
        await client.start()
        try:
            data = await client.create_invite(max_age_seconds=120)
        finally:
            await client.close()

    assert data["code"] == "AbCdEf"
    assert api.requests == [
        {
            "channel_id": "42",
            "authorization": "Bot secret",
            "json": {"max_age": 120, "max_uses": 1, "temporary": False, "unique": True},
        }
    ]


@pytest.mark.asyncio
async def test_create_invite_without_started_session():
    api = FakeDiscordApi()
    async with TestServer(api.app()) as server:
        client = DiscordInviteClient("secret", "42", api_base=f"http://{server.host}:{server.port}/")
        data = await client.create_invite(max_age_seconds=60)

    assert data["code"] == "AbCdEf"
    assert api.requests[0]["json"]["max_age"] == 60


@pytest.mark.asyncio
async def test_non_success_status_raises_upstream_error():
    api = FakeDiscordApi()
    api.status = 403
    api.body = '{"message": "Missing Permissions", "code": 50013}'
    async with TestServer(api.app()) as server:
        client = DiscordInviteClient("secret", "42", api_base=f"http://{server.host}:{server.port}")
        with pytest.raises(UpstreamError) as exc:
            await client.create_invite(max_age_seconds=120)

    assert exc.value.status == 403
    assert "Missing Permissions" in exc.value.details
    assert len(api.requests) == 1


@pytest.mark.asyncio
async def test_missing_code_raises_malformed():
    api = FakeDiscordApi()
    api.body = '{"max_age": 120}'
    async with TestServer(api.app()) as server:
        client = DiscordInviteClient("secret", "42", api_base=f"http://{server.host}:{server.port}")
        with pytest.raises(MalformedUpstreamResponse) as exc:
            await client.create_invite(max_age_seconds=120)

    assert exc.value.status == 500


@pytest.mark.asyncio
async def test_non_json_body_raises_malformed():
    api = FakeDiscordApi()
    api.body = "<html>gateway</html>"
    async with TestServer(api.app()) as server:
        client = DiscordInviteClient("secret", "42", api_base=f"http://{server.host}:{server.port}")
        with pytest.raises(MalformedUpstreamResponse):
            await client.create_invite(max_age_seconds=120)


@pytest.mark.asyncio
async def test_unreachable_api_raises_upstream_error():
    client = DiscordInviteClient("secret", "42", api_base="http://127.0.0.1:1", timeout=2.0)
    with pytest.raises(UpstreamError) as exc:
        await client.create_invite(max_age_seconds=120)

    assert exc.value.status == 502
    assert exc.value.details is None
    assert exc.value.__cause__ is not None


def test_missing_credentials_fail_construction():
    with pytest.raises(ConfigurationError):
        DiscordInviteClient(None, "42")
    with pytest.raises(ConfigurationError):
        DiscordInviteClient("secret", "")


@pytest.mark.asyncio
async def test_undecodable_error_body_keeps_upstream_status():
    async def rate_limited(request: web.Request) -> web.Response:
        return web.Response(status=429, body=b"\xff\xfe rate limited", content_type="application/json")

    app = web.Application()
    app.router.add_post("/channels/{channel_id}/invites", rate_limited)
    async with TestServer(app) as server:
        client = DiscordInviteClient("secret", "42", api_base=f"http://{server.host}:{server.port}")
        with pytest.raises(UpstreamError) as exc:
            await client.create_invite(max_age_seconds=120)

    assert exc.value.status == 429
    assert "rate limited" in exc.value.details


@pytest.mark.asyncio
async def test_client_leaves_error_logging_to_caller(caplog):
    api = FakeDiscordApi()
    api.status = 500
    api.body = '{"message": "Internal Server Error"}'
    async with TestServer(api.app()) as server:
        client = DiscordInviteClient("secret", "42", api_base=f"http://{server.host}:{server.port}")
        with caplog.at_level(logging.ERROR, logger="discord_invites"):
            with pytest.raises(UpstreamError):
                await client.create_invite(max_age_seconds=120)

    assert [r for r in caplog.records if r.name.startswith("discord_invites")] == []
