import logging
from typing import Mapping, Optional

from aiohttp import web

from social.lingosky.app.config import (
    MetricsClientAppKey,
    SessionAppKey,
    SettingsAppKey,
)
from social.lingosky.app.handlers.helpers import error_response, require_session
from social.lingosky.atproto.errors import OAuthFlowError
from social.lingosky.atproto.pds import fetch_protected, session_subject, upstream_error_body
from social.lingosky.model.oauth import OAuthSession

logger = logging.getLogger(__name__)


async def proxy_xrpc(
    request: web.Request,
    session: OAuthSession,
    method: str,
    params: Optional[Mapping[str, str]] = None,
) -> web.Response:
    """
    Call an XRPC method on the session's PDS and wrap the result.

    Returns:
        `{ok: true, data}` on success, otherwise the upstream error body with
        the upstream status
    """
    settings = request.app[SettingsAppKey]
    http_session = request.app[SessionAppKey]
    metrics_client = request.app[MetricsClientAppKey]

    response = await fetch_protected(
        http_session, settings, session, "GET", f"/xrpc/{method}", params
    )
    metrics_client.increment(
        "lingosky.pds.request",
        1,
        tag_dict={"method": method, "status": response.status},
    )

    if not response.ok:
        return web.json_response(upstream_error_body(response), status=response.status)
    return web.json_response({"ok": True, "data": response.json})


async def handle_bsky_session(request: web.Request):
    """Proxy com.atproto.server.getSession for the bearer session."""
    try:
        session = await require_session(request)
        return await proxy_xrpc(request, session, "com.atproto.server.getSession")
    except OAuthFlowError as e:
        return error_response(e)


async def handle_bsky_repo(request: web.Request):
    """
    Proxy com.atproto.repo.describeRepo for the bearer session.

    Query Parameters:
        repo: DID or handle; defaults to the session's own DID
    """
    try:
        session = await require_session(request)

        repo = (request.query.get("repo") or "").strip() or session_subject(session)
        if not repo:
            raise OAuthFlowError.validation("repo is required")

        return await proxy_xrpc(
            request, session, "com.atproto.repo.describeRepo", {"repo": repo}
        )
    except OAuthFlowError as e:
        return error_response(e)
