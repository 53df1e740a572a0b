import os
import tempfile
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from discord_invites.config import IssuerConfig, Settings
from discord_invites.errors import CacheStoreError
from discord_invites.services.invites import InviteIssuer
from discord_invites.services.kv_store import MemoryKVStore, SqliteKVStore


BROWSER_UA = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/126.0 Safari/537.36"
START_MS = 1_700_000_000_000


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now_ms: int = START_MS):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def seconds(self) -> float:
        return self.now_ms / 1000

    def advance(self, ms: int) -> None:
        self.now_ms += ms


class FakeDiscord:
    def __init__(self):
        self.calls = []
        self.fail_with = None
        self.response = None

    async def create_invite(self, max_age_seconds, max_uses=1, temporary=False, unique=True):
        self.calls.append(
            {"max_age_seconds": max_age_seconds, "max_uses": max_uses, "temporary": temporary, "unique": unique}
        )
        if self.fail_with is not None:
            raise self.fail_with
        if self.response is not None:
            return self.response
        return {"code": f"code-{len(self.calls)}", "max_age": max_age_seconds}


class RecordingStore(MemoryKVStore):
    def __init__(self, clock):
        super().__init__(clock=clock)
        self.gets = []
        self.puts = []
        self.deletes = []

    async def get(self, key):
        self.gets.append(key)
        return await super().get(key)

    async def put(self, key, value, ttl_seconds):
        self.puts.append((key, value, ttl_seconds))
        await super().put(key, value, ttl_seconds)

    async def delete(self, key):
        self.deletes.append(key)
        await super().delete(key)


class FailingStore:
    """Every operation fails like an unreachable backend."""

    def __init__(self):
        self.calls = 0

    async def get(self, key):
        self.calls += 1
        raise CacheStoreError("store unreachable")

    async def put(self, key, value, ttl_seconds):
        self.calls += 1
        raise CacheStoreError("store unreachable")

    async def delete(self, key):
        self.calls += 1
        raise CacheStoreError("store unreachable")


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def discord() -> FakeDiscord:
    return FakeDiscord()


@pytest.fixture()
def store(clock: FakeClock) -> RecordingStore:
    return RecordingStore(clock=clock.seconds)


@pytest.fixture()
def issuer_config() -> IssuerConfig:
    return IssuerConfig(bot_token="test-token", channel_id="123456789")


@pytest.fixture()
def issuer(issuer_config, discord, store, clock) -> InviteIssuer:
    return InviteIssuer(config=issuer_config, client=discord, store=store, clock=clock)


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        _env_file=None,
        DISCORD_BOT_TOKEN="test-token",
        DISCORD_CHANNEL_ID="123456789",
        CACHE_BACKEND="memory",
    )


@pytest_asyncio.fixture()
async def temp_db_path() -> AsyncGenerator[str, None]:
    # Use a real temp file on disk so aiosqlite can reopen connections
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "cache", "test.db")
        yield path


@pytest_asyncio.fixture()
async def sqlite_store(temp_db_path: str, clock: FakeClock) -> AsyncGenerator[SqliteKVStore, None]:
    kv = SqliteKVStore(temp_db_path, clock=clock.seconds)
    await kv.init_db()
    yield kv
