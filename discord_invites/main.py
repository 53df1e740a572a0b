import logging
from typing import Optional

from aiohttp import web

from .config import IssuerConfig, Settings, get_settings
from .errors import CacheStoreError, ConfigurationError
from .handlers.invite import routes as invite_routes
from .logging_config import setup_logging
from .services.container import ServiceContainer, set_container
from .services.discord_api import create_discord_client_from_settings
from .services.invites import InviteIssuer
from .services.kv_store import create_store_from_settings


async def build_container(settings: Settings) -> ServiceContainer:
    """Wire the cache store, Discord client and issuer from settings.

    Missing Discord credentials leave ``issuer`` unset instead of raising, so
    the endpoint can answer with a configuration error.
    """
    log = logging.getLogger(__name__)
    try:
        store = await create_store_from_settings(settings)
    except CacheStoreError as e:
        # serve uncached
        log.exception("Cache store unavailable, running without cache: %s", e)
        store = None

    container = ServiceContainer(settings=settings, store=store)
    try:
        config = IssuerConfig.from_settings(settings)
        discord = create_discord_client_from_settings(settings)
    except ConfigurationError as e:
        log.error("Invite issuer disabled: %s", e, extra={"operation": "startup"})
        return container

    container.discord = discord
    container.issuer = InviteIssuer(config=config, client=discord, store=store)
    return container


async def create_app(settings: Optional[Settings] = None) -> web.Application:
    settings = settings or get_settings()
    container = await build_container(settings)
    set_container(container)

    app = web.Application()
    app.add_routes(invite_routes)

    async def on_startup(_app: web.Application) -> None:
        if container.discord is not None:
            await container.discord.start()

    async def on_cleanup(_app: web.Application) -> None:
        if container.discord is not None:
            await container.discord.close()

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)
    return app


def main() -> None:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)

    # Optional: Sentry init
    if settings.SENTRY_DSN:
        try:
            import sentry_sdk  # type: ignore
            sentry_sdk.init(dsn=settings.SENTRY_DSN, traces_sample_rate=0.0)
            logging.getLogger(__name__).info("Sentry initialized")
        except Exception as e:
            logging.getLogger(__name__).warning("Sentry init failed: %s", e)

    try:
        IssuerConfig.from_settings(settings)
    except ConfigurationError as e:
        raise RuntimeError(f"{e}. Please configure your .env or environment variables.") from e

    logging.getLogger(__name__).info("Starting invite server on %s:%s", settings.HOST, settings.PORT)
    web.run_app(create_app(settings), host=settings.HOST, port=settings.PORT, print=None)


if __name__ == "__main__":
    try:
        main()
    except (KeyboardInterrupt, SystemExit):
        logging.getLogger(__name__).info("Server stopped")
