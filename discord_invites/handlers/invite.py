import logging

from aiohttp import web

from ..errors import MalformedUpstreamResponse, UpstreamError
from ..services.container import get_container
from ..utils.guards import is_bot_user_agent, is_cross_origin, is_honeypot_triggered


routes = web.RouteTableDef()


def _error(message: str, status: int, details=None) -> web.Response:
    body = {"error": message}
    if details is not None:
        body["details"] = details
    return web.json_response(body, status=status)


@routes.get("/api/invite")
async def get_invite(request: web.Request) -> web.Response:
    """Return a single-use Discord invite, reusing the cached one for a known uuid."""
    log = logging.getLogger(__name__)
    container = get_container()

    # Same-origin check
    origin = request.headers.get("Origin")
    referer = request.headers.get("Referer")
    allowed_origin = container.settings.ALLOWED_ORIGIN or str(request.url.origin())
    if is_cross_origin(origin, referer, allowed_origin):
        log.warning(
            "CORS violation detected: origin=%s referer=%s allowed=%s",
            origin,
            referer,
            allowed_origin,
            extra={"operation": "invite_guard_cors"},
        )
        return _error("Forbidden", 403)

    issuer = container.issuer
    if issuer is None:
        return _error("Missing Discord bot configuration", 500)

    honeypot = request.query.get("email")
    if is_honeypot_triggered(honeypot):
        log.warning(
            "Honeypot triggered - potential bot detected: %s", honeypot, extra={"operation": "invite_guard_honeypot"}
        )
        return _error("Invalid request", 400)

    user_agent = request.headers.get("User-Agent", "")
    if is_bot_user_agent(user_agent):
        log.warning("Bot User-Agent detected: %s", user_agent, extra={"operation": "invite_guard_user_agent"})
        return _error("Invalid request", 403)

    client_id = request.query.get("uuid") or None
    try:
        result = await issuer.handle(client_id)
    except MalformedUpstreamResponse as e:
        log.error("Invalid response from Discord API: %s", e.details, extra={"uuid": client_id or "-", "operation": "invite"})
        return _error("Invalid response from Discord API", 500)
    except UpstreamError as e:
        log.error(
            "Failed to generate invite (status=%s): %s",
            e.status,
            e.details or e.__cause__,
            extra={"uuid": client_id or "-", "operation": "invite"},
        )
        return _error("Failed to generate invite", e.status, details=e.details)
    except Exception:
        log.exception("Error generating invite", extra={"uuid": client_id or "-", "operation": "invite"})
        return _error("Internal server error", 500)

    return web.json_response(result.to_response())


@routes.get("/healthz")
async def healthz(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})
