from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..config import Settings
from .discord_api import DiscordInviteClient
from .invites import InviteIssuer
from .kv_store import KVStore


@dataclass
class ServiceContainer:
    settings: Settings
    store: Optional[KVStore] = None
    discord: Optional[DiscordInviteClient] = None
    # None when Discord credentials are missing; requests then fail with 500
    issuer: Optional[InviteIssuer] = None


_container: Optional[ServiceContainer] = None


def set_container(container: ServiceContainer) -> None:
    global _container
    _container = container


def get_container() -> ServiceContainer:
    if _container is None:
        raise RuntimeError("Service container is not initialized")
    return _container
