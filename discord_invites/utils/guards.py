"""Stateless request filters applied before the invite issuer runs."""
from __future__ import annotations

import re
from typing import Optional


BOT_USER_AGENT_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"bot",
        r"crawler",
        r"spider",
        r"scraper",
        r"curl",
        r"wget",
        r"python",
        r"go-http",
        r"java",
    )
]


def is_cross_origin(origin: Optional[str], referer: Optional[str], allowed_origin: str) -> bool:
    """True when Origin differs from, or Referer does not start with, the allowed origin.

    Missing headers are not a violation; same-origin GETs often omit Origin.
    """
    if origin and origin != allowed_origin:
        return True
    if referer and not referer.startswith(allowed_origin):
        return True
    return False


def is_honeypot_triggered(value: Optional[str]) -> bool:
    # hidden form field; only bots fill it
    return bool(value)


def is_bot_user_agent(user_agent: Optional[str]) -> bool:
    ua = user_agent or ""
    return any(pattern.search(ua) for pattern in BOT_USER_AGENT_PATTERNS)
