import logging
import os
from time import time
from typing import Optional

import aiohttp
import aiohttp_jinja2
import jinja2
import redis.asyncio as redis
import sentry_sdk
from aiohttp import web
from sentry_sdk.integrations.aiohttp import AioHttpIntegration

from social.lingosky.app.config import (
    MetricsClientAppKey,
    OAuthStoreAppKey,
    RedisClientAppKey,
    SessionAppKey,
    Settings,
    SettingsAppKey,
)
from social.lingosky.app.cors import get_cors_headers
from social.lingosky.app.handlers.auth import handle_auth_logout, handle_auth_me
from social.lingosky.app.handlers.bsky import handle_bsky_repo, handle_bsky_session
from social.lingosky.app.handlers.dev import handle_debug_state, handle_dev_callback
from social.lingosky.app.handlers.internal import handle_health
from social.lingosky.app.handlers.oauth import handle_atproto_init, handle_atproto_token
from social.lingosky.app.metrics import MetricsClient, create_metrics_client
from social.lingosky.model.store import OAuthStore

logger = logging.getLogger(__name__)

TEMPLATES_DIR = os.path.join(os.path.dirname(__file__), "templates")


def create_trace_config(debug: bool) -> aiohttp.TraceConfig:
    trace_config = aiohttp.TraceConfig()

    if debug:

        async def on_request_start(
            session, trace_config_ctx, params: aiohttp.TraceRequestStartParams
        ):
            logger.debug("Starting request: %s %s", params.method, params.url)

        async def on_request_end(
            session, trace_config_ctx, params: aiohttp.TraceRequestEndParams
        ):
            logger.debug(
                "Ending request: %s %s status=%s",
                params.method,
                params.url,
                params.response.status,
            )

        trace_config.on_request_start.append(on_request_start)
        trace_config.on_request_end.append(on_request_end)

    return trace_config


async def background_tasks(app):
    logger.info("Starting up")
    settings: Settings = app[SettingsAppKey]

    owns_http_session = SessionAppKey not in app
    if owns_http_session:
        app[SessionAppKey] = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=settings.http_timeout),
            trace_configs=[create_trace_config(settings.debug)],
        )

    owns_redis_client = RedisClientAppKey not in app
    if owns_redis_client:
        app[RedisClientAppKey] = redis.Redis.from_url(str(settings.redis_dsn))

    app[OAuthStoreAppKey] = OAuthStore(app[RedisClientAppKey], settings.encryption_key)

    await app[MetricsClientAppKey].connect()

    logger.info("Startup complete")

    yield

    logger.info("Shutting down")

    if owns_http_session:
        await app[SessionAppKey].close()
    if owns_redis_client:
        await app[RedisClientAppKey].aclose()
    await app[MetricsClientAppKey].close()


@web.middleware
async def cors_middleware(request: web.Request, handler):
    settings = request.app[SettingsAppKey]
    cors_headers = get_cors_headers(
        request.headers.get("Origin"), settings.allowed_origin_list
    )

    if request.method == "OPTIONS":
        return web.Response(status=204, headers=cors_headers)

    try:
        response = await handler(request)
    except web.HTTPException as e:
        e.headers.update(cors_headers)
        raise
    response.headers.update(cors_headers)
    return response


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPNotFound:
        return web.json_response({"error": "Not Found"}, status=404)
    except web.HTTPException:
        raise
    except Exception:
        logger.exception("Unhandled exception for %s %s", request.method, request.path)
        return web.json_response({"error": "Internal Server Error"}, status=500)


@web.middleware
async def sentry_middleware(request: web.Request, handler):
    try:
        response = await handler(request)
        return response
    except web.HTTPException:
        raise
    except Exception as e:
        sentry_sdk.capture_exception(e)
        raise e


@web.middleware
async def statsd_middleware(request: web.Request, handler):
    metrics_client = request.app[MetricsClientAppKey]
    request_method: str = request.method
    request_path = request.path

    start_time: float = time()
    response_status_code = 0

    try:
        response = await handler(request)
        response_status_code = response.status
        return response
    except web.HTTPException as e:
        response_status_code = e.status
        raise
    except Exception as e:
        metrics_client.increment(
            "lingosky.server.request.exception",
            1,
            tag_dict={
                "exception": type(e).__name__,
                "path": request_path,
                "method": request_method,
            },
        )
        raise e
    finally:
        metrics_client.timer(
            "lingosky.server.request.time",
            time() - start_time,
            tag_dict={"path": request_path, "method": request_method},
        )
        metrics_client.increment(
            "lingosky.server.request.count",
            1,
            tag_dict={
                "path": request_path,
                "method": request_method,
                "status": response_status_code,
            },
        )


async def start_web_server(
    settings: Optional[Settings] = None,
    redis_client: Optional[redis.Redis] = None,
    metrics_client: Optional[MetricsClient] = None,
    http_session: Optional[aiohttp.ClientSession] = None,
):
    """
    Build the gateway application.

    Settings are validated before anything else is created. The Redis client,
    metrics client and HTTP session may be supplied by the caller; otherwise
    they are created from settings and closed on shutdown.
    """

    if settings is None:
        settings = Settings()  # type: ignore
    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            send_default_pii=False,
            environment=settings.environment,
            integrations=[AioHttpIntegration()],
        )

    app = web.Application(
        middlewares=[cors_middleware, statsd_middleware, error_middleware, sentry_middleware]
    )

    app[SettingsAppKey] = settings
    app[MetricsClientAppKey] = metrics_client or create_metrics_client(
        settings.metrics_backend,
        host=settings.statsd_host,
        port=settings.statsd_port,
        debug=settings.debug,
    )
    if redis_client is not None:
        app[RedisClientAppKey] = redis_client
    if http_session is not None:
        app[SessionAppKey] = http_session

    app.add_routes([web.get("/health", handle_health)])

    app.add_routes(
        [
            web.get("/api/atprotocol/init", handle_atproto_init),
            web.post("/api/atprotocol/init", handle_atproto_init),
            web.post("/api/atprotocol/token", handle_atproto_token),
        ]
    )

    app.add_routes(
        [
            web.get("/api/auth/me", handle_auth_me),
            web.post("/api/auth/logout", handle_auth_logout),
        ]
    )

    app.add_routes(
        [
            web.get("/api/bsky/session", handle_bsky_session),
            web.get("/api/bsky/repo", handle_bsky_repo),
        ]
    )

    if settings.dev_routes_enabled:
        app.add_routes(
            [
                web.get("/dev/callback", handle_dev_callback),
                web.get("/debug/state", handle_debug_state),
            ]
        )

    _ = aiohttp_jinja2.setup(
        app,
        enable_async=True,
        autoescape=True,
        loader=jinja2.FileSystemLoader(TEMPLATES_DIR),
    )

    app.cleanup_ctx.append(background_tasks)

    return app
