import logging
from typing import Any, Dict

from aiohttp import web
import sentry_sdk

from social.lingosky.app.config import (
    MetricsClientAppKey,
    OAuthStoreAppKey,
    SessionAppKey,
    SettingsAppKey,
)
from social.lingosky.app.handlers.helpers import error_response
from social.lingosky.atproto.errors import OAuthFlowError
from social.lingosky.atproto.oauth import oauth_exchange_code, oauth_init

logger = logging.getLogger(__name__)


async def handle_atproto_init(request: web.Request):
    """
    Handle GET or POST request to start the OAuth flow.

    Stores a PKCE record under a new state and returns the authorize URL the
    UI should send the user to.

    Query Parameters:
        redirect: `dev` selects the development redirect URI when configured

    Args:
        request: HTTP request object

    Returns:
        JSON response with authorize_url, state, redirect_uri and client_id
    """
    settings = request.app[SettingsAppKey]
    store = request.app[OAuthStoreAppKey]
    metrics_client = request.app[MetricsClientAppKey]

    use_dev_redirect = request.query.get("redirect") == "dev"

    result = await oauth_init(settings, store, use_dev_redirect=use_dev_redirect)
    metrics_client.increment(
        "lingosky.oauth.init", 1, tag_dict={"dev": str(use_dev_redirect).lower()}
    )
    return web.json_response(result.model_dump())


async def handle_atproto_token(request: web.Request):
    """
    Handle POST request exchanging an authorization code for a session.

    Request Body (JSON):
        code: Authorization code from the redirect
        state: OAuth state from the redirect

    Args:
        request: HTTP request object

    Returns:
        JSON response `{ok, sessionId, expires_in, token_type}` on success, or
        `{error, message, status}` with the matching HTTP status on failure

    Flow:
        1. Parse the JSON body; an unreadable body counts as missing fields
        2. Exchange the code with oauth_exchange_code
        3. Record the outcome and return the session id
    """
    settings = request.app[SettingsAppKey]
    http_session = request.app[SessionAppKey]
    store = request.app[OAuthStoreAppKey]
    metrics_client = request.app[MetricsClientAppKey]

    body: Dict[str, Any] = {}
    try:
        parsed = await request.json()
        if isinstance(parsed, dict):
            body = parsed
    except ValueError:
        pass

    try:
        result = await oauth_exchange_code(
            settings, http_session, store, body.get("code"), body.get("state")
        )
    except OAuthFlowError as e:
        metrics_client.increment(
            "lingosky.oauth.token.exchange", 1, tag_dict={"outcome": e.error}
        )
        if e.status >= 500:
            sentry_sdk.capture_exception(e)
        return error_response(e)

    metrics_client.increment(
        "lingosky.oauth.token.exchange", 1, tag_dict={"outcome": "ok"}
    )
    return web.json_response(result.to_response())
