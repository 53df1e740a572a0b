"""Invite lifecycle: cache consultation, issuance and persistence.

One ``InviteIssuer.handle`` call resolves the client identifier, returns a
cached invite while it still has more than the validity buffer left, and
otherwise asks Discord for a fresh single-use invite and caches it for the
rest of its lifetime.

Concurrent requests for the same identifier are not serialized: both may
miss the cache and mint distinct invites, and the last cache write wins.
Discord enforces single use per code.
"""
from __future__ import annotations

import enum
import logging
import time
import uuid as uuid_lib
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Protocol

from ..config import IssuerConfig
from ..errors import CacheStoreError, MalformedUpstreamResponse
from .kv_store import KVStore


Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)


def _iso(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


@dataclass(frozen=True)
class InviteRecord:
    uuid: str
    code: str
    createdAt: int
    expiresAt: int

    def __post_init__(self) -> None:
        if self.expiresAt <= self.createdAt:
            raise ValueError("expiresAt must be later than createdAt")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InviteRecord":
        """Rebuild a record from its cached JSON form.

        Raises ``ValueError`` when a field is missing or has the wrong type.
        """
        try:
            uuid, code = data["uuid"], data["code"]
            created_at, expires_at = data["createdAt"], data["expiresAt"]
        except KeyError as e:
            raise ValueError(f"Cached invite is missing field {e}") from e
        if not isinstance(uuid, str) or not isinstance(code, str) or not code:
            raise ValueError("Cached invite has invalid uuid/code")
        for value in (created_at, expires_at):
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError("Cached invite has non-integer timestamps")
        return cls(uuid=uuid, code=code, createdAt=created_at, expiresAt=expires_at)


def is_valid(record: InviteRecord, now: int, buffer_ms: int) -> bool:
    """A record may be handed out only with strictly more than ``buffer_ms`` left."""
    return record.expiresAt - now > buffer_ms


class CacheStatus(enum.Enum):
    HIT_VALID = "hit_valid"
    HIT_STALE = "hit_stale"
    MISS = "miss"
    STORE_UNAVAILABLE = "store_unavailable"


@dataclass(frozen=True)
class CacheLookup:
    status: CacheStatus
    record: Optional[InviteRecord] = None


@dataclass(frozen=True)
class IssueResult:
    record: InviteRecord
    cached: bool
    server_time: int

    def to_response(self) -> Dict[str, Any]:
        return {
            "uuid": self.record.uuid,
            "code": self.record.code,
            "expiresAt": self.record.expiresAt,
            "cached": self.cached,
            "serverTime": self.server_time,
        }


class InviteClient(Protocol):
    async def create_invite(
        self,
        max_age_seconds: int,
        max_uses: int = 1,
        temporary: bool = False,
        unique: bool = True,
    ) -> Dict[str, Any]: ...


class InviteIssuer:
    def __init__(
        self,
        config: IssuerConfig,
        client: InviteClient,
        store: Optional[KVStore] = None,
        clock: Clock = now_ms,
        id_factory: Callable[[], str] = lambda: str(uuid_lib.uuid4()),
    ):
        self.config = config
        self.client = client
        self.store = store
        self._clock = clock
        self._id_factory = id_factory

    def cache_key(self, client_id: str) -> str:
        return f"{self.config.key_prefix}{client_id}"

    async def lookup(self, client_id: str, now: int) -> CacheLookup:
        """Classify the cached state for ``client_id``; never raises on cache faults."""
        log = logging.getLogger(__name__)
        if self.store is None:
            return CacheLookup(CacheStatus.MISS)
        try:
            data = await self.store.get(self.cache_key(client_id))
            if data is None:
                return CacheLookup(CacheStatus.MISS)
            record = InviteRecord.from_dict(data)
        except (CacheStoreError, ValueError) as e:
            log.warning(
                "Cache lookup failed, treating as miss: %s",
                e,
                extra={"uuid": client_id, "operation": "invite_lookup"},
            )
            return CacheLookup(CacheStatus.STORE_UNAVAILABLE)

        if is_valid(record, now, self.config.validity_buffer_ms):
            return CacheLookup(CacheStatus.HIT_VALID, record)
        return CacheLookup(CacheStatus.HIT_STALE, record)

    async def _discard(self, client_id: str) -> None:
        if self.store is None:
            return
        key = self.cache_key(client_id)
        try:
            await self.store.delete(key)
        except CacheStoreError as e:
            logging.getLogger(__name__).warning(
                "Failed to delete stale invite %s: %s",
                key,
                e,
                extra={"uuid": client_id, "operation": "invite_discard"},
            )
            return
        logging.getLogger(__name__).info(
            "Deleted stale invite from cache: %s", key, extra={"uuid": client_id, "operation": "invite_discard"}
        )

    async def _persist(self, record: InviteRecord, now: int) -> None:
        if self.store is None:
            return
        ttl_seconds = (record.expiresAt - now) // 1000
        try:
            await self.store.put(self.cache_key(record.uuid), record.to_dict(), ttl_seconds)
        except CacheStoreError as e:
            logging.getLogger(__name__).warning(
                "Failed to store invite in cache: %s",
                e,
                extra={"uuid": record.uuid, "operation": "invite_persist"},
            )
            return
        logging.getLogger(__name__).info(
            "Stored invite in cache with %ss TTL",
            ttl_seconds,
            extra={"uuid": record.uuid, "operation": "invite_persist"},
        )

    async def handle(self, client_id: Optional[str] = None) -> IssueResult:
        """Return a usable invite for ``client_id``, minting one if needed.

        Only ``UpstreamError`` (and its subclasses) escapes; every cache fault
        degrades to issuing a new invite.
        """
        log = logging.getLogger(__name__)
        now = self._clock()

        if client_id:
            found = await self.lookup(client_id, now)
            if found.status is CacheStatus.HIT_VALID and found.record is not None:
                remaining = found.record.expiresAt - now
                log.info(
                    "Returning cached invite %s, expires at %s, %ss remaining",
                    found.record.code,
                    _iso(found.record.expiresAt),
                    remaining // 1000,
                    extra={"uuid": client_id, "operation": "invite_cache_hit"},
                )
                return IssueResult(record=found.record, cached=True, server_time=now)
            if found.status is CacheStatus.HIT_STALE and found.record is not None:
                log.info(
                    "Cached invite expired or expiring soon (%ss remaining), generating new one",
                    (found.record.expiresAt - now) // 1000,
                    extra={"uuid": client_id, "operation": "invite_cache_stale"},
                )
                await self._discard(client_id)
        else:
            client_id = self._id_factory()

        log.info("Generating new Discord invite", extra={"uuid": client_id, "operation": "invite_issue"})
        data = await self.client.create_invite(
            max_age_seconds=self.config.max_age_seconds,
            max_uses=1,
            temporary=False,
            unique=True,
        )
        code = data.get("code") if isinstance(data, dict) else None
        if not code:
            raise MalformedUpstreamResponse(details="Response has no invite code")

        record = InviteRecord(
            uuid=client_id,
            code=str(code),
            createdAt=now,
            expiresAt=now + self.config.max_age_ms,
        )
        await self._persist(record, now)

        log.info(
            "Generated new single-use invite %s, expires at %s",
            record.code,
            _iso(record.expiresAt),
            extra={"uuid": client_id, "operation": "invite_issue"},
        )
        return IssueResult(record=record, cached=False, server_time=now)
