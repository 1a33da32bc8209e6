import logging

from aiohttp import web

from social.lingosky.app.config import OAuthStoreAppKey
from social.lingosky.app.handlers.helpers import get_bearer_token, session_helper

logger = logging.getLogger(__name__)


async def handle_auth_me(request: web.Request):
    """
    Report whether the bearer session id belongs to a live session.

    Never fails for a missing, unknown or unreadable session: those are
    reported as `{"authenticated": false}`. The session body is the public
    view, without tokens or the private key.
    """
    session = await session_helper(request)
    if session is None:
        return web.json_response({"authenticated": False})
    return web.json_response({"authenticated": True, "session": session.public_view()})


async def handle_auth_logout(request: web.Request):
    """Delete the bearer session, if any. Always succeeds."""
    session_id = get_bearer_token(request.headers.get("Authorization"))
    if session_id is not None:
        await request.app[OAuthStoreAppKey].delete_session(session_id)
        logger.info("handle_auth_logout: session removed")
    return web.json_response({"ok": True})
