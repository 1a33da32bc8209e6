import logging
from typing import Optional

from aiohttp import web

from social.lingosky.app.config import OAuthStoreAppKey
from social.lingosky.atproto.errors import OAuthFlowError
from social.lingosky.model.oauth import OAuthSession

logger = logging.getLogger(__name__)


def get_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """
    Extract the session id from an `Authorization: Bearer <sessionId>` header.

    Returns None when the header is missing, uses another scheme or carries an
    empty token.
    """
    if authorization is None or not authorization.startswith("Bearer "):
        return None
    token = authorization[7:].strip()
    return token or None


async def session_helper(request: web.Request) -> Optional[OAuthSession]:
    """
    Resolve the request's bearer session id to its stored session.

    Returns:
        The session, or None when there is no bearer token or no live session
    """
    session_id = get_bearer_token(request.headers.get("Authorization"))
    if session_id is None:
        return None
    return await request.app[OAuthStoreAppKey].get_session(session_id)


async def require_session(request: web.Request) -> OAuthSession:
    """
    Like session_helper, but a missing session is an error.

    Raises:
        OAuthFlowError: AUTH_REQUIRED
    """
    session = await session_helper(request)
    if session is None:
        raise OAuthFlowError.auth_required()
    return session


def error_response(error: OAuthFlowError) -> web.Response:
    return web.json_response(error.to_dict(), status=error.status)
