"""
OAuth 2.0 Authorization Code Flow with PKCE and DPoP

This module starts and completes the OAuth flow against the AT Protocol
authorization server.

Flow:
1. oauth_init: generate state and a PKCE verifier, store the PKCE record under
   the state and build the authorize URL carrying only the S256 challenge.
2. The user authenticates and is redirected back with a code and the state.
3. oauth_exchange_code: validate the input, consume the PKCE record, generate a
   DPoP keypair and POST the code with the verifier to the token endpoint, answering
   at most one DPoP nonce challenge.
4. On success the token response is normalized, the granted scope is checked and
   a session holding the token and the keypair is stored.

No session is written unless every step succeeds, and the PKCE record is deleted
only once the session exists.
"""

import asyncio
import base64
import hashlib
import logging
import re
import secrets
import uuid
from typing import Tuple
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from aiohttp import ClientError, ClientSession

from social.lingosky.app.config import Settings
from social.lingosky.atproto.dpop import dpop_request
from social.lingosky.atproto.errors import TOKEN_EXCHANGE_FAILED, OAuthFlowError
from social.lingosky.atproto.jwt import generate_dpop_key
from social.lingosky.atproto.redact import mask_secret, redact_secrets
from social.lingosky.model.oauth import (
    OAuthInitResult,
    OAuthSession,
    PKCERecord,
    TokenExchangeResult,
    TokenResponse,
)
from social.lingosky.model.store import OAuthStore

logger = logging.getLogger(__name__)

MAX_CODE_LENGTH = 2048
AUTHORIZE_URL_AS_CODE = re.compile(r"^https?://", re.IGNORECASE)


def generate_pkce_verifier() -> Tuple[str, str]:
    """
    Generate PKCE (Proof Key for Code Exchange) verifier and challenge.

    This implements the PKCE extension to OAuth 2.0 (RFC 7636). The verifier is
    a base64url string without padding, 107 characters long, well inside the
    43 to 128 characters RFC 7636 allows.

    Returns:
        Tuple[str, str]: A tuple containing (pkce_verifier, pkce_challenge)
        - pkce_verifier: The secret verifier sent only in the token request
        - pkce_challenge: base64url(SHA-256(verifier)), sent in the authorize URL
    """
    pkce_token = secrets.token_urlsafe(80)

    hashed = hashlib.sha256(pkce_token.encode("ascii")).digest()
    encoded = base64.urlsafe_b64encode(hashed)
    pkce_challenge = encoded.decode("ascii").rstrip("=")
    return (pkce_token, pkce_challenge)


def build_authorize_url(
    authorization_endpoint: str,
    client_id: str,
    redirect_uri: str,
    scope: str,
    state: str,
    code_challenge: str,
) -> str:
    """Add the authorization request parameters to the authorize endpoint URL."""
    parsed_authorization_endpoint = urlparse(authorization_endpoint)
    query = dict(parse_qsl(parsed_authorization_endpoint.query))
    query.update(
        {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": scope,
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
    )
    parsed_authorization_endpoint = parsed_authorization_endpoint._replace(
        query=urlencode(query)
    )
    return str(urlunparse(parsed_authorization_endpoint))


async def oauth_init(
    settings: Settings,
    store: OAuthStore,
    use_dev_redirect: bool = False,
) -> OAuthInitResult:
    """
    Start the OAuth flow.

    The dev redirect URI is used only when requested and configured, and the dev
    client id only together with it. The PKCE record is stored before the URL is
    returned, so a redirect can never reach the token endpoint without one.

    Args:
        settings: Application settings
        store: PKCE record and session store
        use_dev_redirect: Whether the caller asked for the development redirect

    Returns:
        OAuthInitResult: authorize URL plus the state, redirect URI and client id
    """
    redirect_uri = settings.redirect_uri
    client_id = settings.client_id
    if use_dev_redirect and settings.dev_redirect_uri:
        redirect_uri = settings.dev_redirect_uri
        if settings.dev_client_id:
            client_id = settings.dev_client_id

    state = str(uuid.uuid4())
    (pkce_verifier, pkce_challenge) = generate_pkce_verifier()

    await store.save_pkce_record(
        PKCERecord(
            state=state,
            code_verifier=pkce_verifier,
            redirect_uri=redirect_uri,
            client_id=client_id,
        )
    )

    authorize_url = build_authorize_url(
        settings.authorize_endpoint_url,
        client_id,
        redirect_uri,
        settings.scope,
        state,
        pkce_challenge,
    )

    logger.info(
        "oauth_init: state=%s redirect_uri=%s client_id=%s",
        state,
        redirect_uri,
        client_id,
    )

    return OAuthInitResult(
        authorize_url=authorize_url,
        state=state,
        redirect_uri=redirect_uri,
        client_id=client_id,
    )


def validate_authorization_code(code: object, state: object) -> Tuple[str, str]:
    """
    Check the token request input before any I/O.

    Returns:
        Tuple[str, str]: the trimmed code and state

    Raises:
        OAuthFlowError: VALIDATION_ERROR for missing values, a pasted authorize
            URL instead of a code, or an oversized code.
    """
    code = code.strip() if isinstance(code, str) else ""
    state = state.strip() if isinstance(state, str) else ""

    if not code or not state:
        raise OAuthFlowError.validation("code and state are required")

    if AUTHORIZE_URL_AS_CODE.search(code) or "oauth/authorize" in code.lower():
        raise OAuthFlowError.validation(
            "code must be the short authorization code, not the authorize URL"
        )

    if len(code) > MAX_CODE_LENGTH:
        raise OAuthFlowError.validation("code is unexpectedly long")

    return code, state


async def oauth_exchange_code(
    settings: Settings,
    http_session: ClientSession,
    store: OAuthStore,
    code: object,
    state: object,
) -> TokenExchangeResult:
    """
    Exchange an authorization code for a DPoP-bound session.

    Args:
        settings: Application settings
        http_session: Shared client session
        store: PKCE record and session store
        code: Authorization code from the redirect
        state: OAuth state from the redirect

    Returns:
        TokenExchangeResult: the new session id with the token lifetime and type

    Raises:
        OAuthFlowError: VALIDATION_ERROR, STATE_EXPIRED, DPOP_KEY_ERROR,
            TOKEN_EXCHANGE_NETWORK, DPOP_NONCE_RETRY_FAILED, INSUFFICIENT_SCOPE,
            or the provider's error code for a rejected exchange.
    """
    (code, state) = validate_authorization_code(code, state)

    pkce_record = await store.get_pkce_record(state)
    if pkce_record is None:
        logger.info("oauth_exchange_code: unknown or expired state=%s", state)
        raise OAuthFlowError.state_expired()

    keypair = generate_dpop_key()

    token_endpoint = settings.token_endpoint_url
    form = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": pkce_record.redirect_uri,
        "client_id": pkce_record.client_id,
        "code_verifier": pkce_record.code_verifier,
    }

    logger.debug(
        "oauth_exchange_code: token request to %s form=%s",
        token_endpoint,
        redact_secrets(form),
    )

    try:
        response = await dpop_request(
            http_session,
            "POST",
            token_endpoint,
            keypair,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            data=urlencode(form),
            nonce_statuses=(400,),
        )
    except (ClientError, asyncio.TimeoutError) as e:
        logger.warning(
            "oauth_exchange_code: token endpoint %s unreachable: %s",
            token_endpoint,
            type(e).__name__,
        )
        raise OAuthFlowError.network() from e

    if not response.ok:
        body = response.json if isinstance(response.json, dict) else {}
        logger.warning(
            "oauth_exchange_code: token endpoint rejected exchange status=%s body=%s",
            response.status,
            redact_secrets(body),
        )
        error = body.get("error")
        message = body.get("error_description")
        raise OAuthFlowError.exchange_failed(
            error if isinstance(error, str) and error else TOKEN_EXCHANGE_FAILED,
            message if isinstance(message, str) and message
            else (response.text or "Token exchange failed"),
            response.status,
        )

    payload = response.json if isinstance(response.json, dict) else {}
    token_response = TokenResponse.from_provider(payload)

    if token_response.access_token is None:
        raise OAuthFlowError.exchange_failed(
            TOKEN_EXCHANGE_FAILED, "No access_token in response", 500
        )

    if not token_response.has_scope(settings.required_scope):
        logger.warning(
            "oauth_exchange_code: granted scope %r lacks %r",
            token_response.scope,
            settings.required_scope,
        )
        raise OAuthFlowError.insufficient_scope(
            token_response.scope, settings.required_scope
        )

    session = OAuthSession(
        issuer=settings.bsky_issuer,
        access_token=token_response.access_token,
        token_type=token_response.token_type,
        expires_in=token_response.expires_in,
        dpop_private_jwk=keypair.private_jwk,
        dpop_public_jwk=keypair.public_jwk,
        scope=token_response.scope,
        sub=token_response.sub,
        refresh_token=token_response.refresh_token,
    )
    session_id = await store.create_session(session)
    await store.delete_pkce_record(state)

    logger.info(
        "oauth_exchange_code: session created state=%s access_token=%s expires_in=%s",
        state,
        mask_secret(token_response.access_token),
        token_response.expires_in,
    )

    return TokenExchangeResult(
        session_id=session_id,
        expires_in=token_response.expires_in,
        token_type=token_response.token_type,
    )
