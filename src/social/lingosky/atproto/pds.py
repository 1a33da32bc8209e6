"""
DPoP-bound requests to the user's Personal Data Server.

The PDS is located from the access token's subject DID. When the DID document
cannot be read, or the subject is not a DID, the token's audience and issuer are
tried, and finally the configured authorization server issuer.
"""

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode

from aiohttp import ClientError, ClientSession
import sentry_sdk

from social.lingosky.app.config import Settings, is_http_url
from social.lingosky.atproto.dpop import DpopResponse, dpop_request
from social.lingosky.atproto.errors import UPSTREAM_ERROR, OAuthFlowError
from social.lingosky.atproto.jwt import DpopKeyPair, decode_unverified_claims
from social.lingosky.model.oauth import OAuthSession
from social.lingosky.resolve.did import resolve_did

logger = logging.getLogger(__name__)


def session_subject(session: OAuthSession) -> Optional[str]:
    """The DID a session acts for: the stored sub, else the token's sub claim."""
    if session.sub:
        return session.sub
    sub = decode_unverified_claims(session.access_token).get("sub")
    return sub if isinstance(sub, str) and sub else None


async def resolve_resource_server(
    http_session: ClientSession,
    settings: Settings,
    access_token: str,
    subject: Optional[str] = None,
) -> str:
    """
    Find the base URL of the resource server an access token is meant for.

    Resolution order:
    1. The PDS listed in the DID document of the subject (did:plc via the PLC
       directory, did:web via did.json). The subject is the given one, else the
       token's sub claim
    2. The token's aud claim, when it is an http(s) URL
    3. The token's iss claim, when it is an http(s) URL
    4. The configured issuer

    Returns:
        str: base URL without a trailing slash
    """
    claims = decode_unverified_claims(access_token)
    if subject is None:
        subject = claims.get("sub")

    if isinstance(subject, str) and subject.startswith("did:"):
        try:
            resolved = await resolve_did(http_session, settings.plc_directory_url, subject)
        except (ClientError, asyncio.TimeoutError, ValueError) as e:
            sentry_sdk.capture_exception(e)
            logger.warning("resolve_resource_server: lookup of %s failed: %s", subject, e)
            resolved = None
        if resolved is not None:
            return resolved.pds.rstrip("/")

    for claim in ("aud", "iss"):
        value = claims.get(claim)
        if isinstance(value, str) and is_http_url(value):
            return value.rstrip("/")

    return settings.bsky_issuer


async def fetch_protected(
    http_session: ClientSession,
    settings: Settings,
    session: OAuthSession,
    method: str,
    path: str,
    params: Optional[Mapping[str, str]] = None,
) -> DpopResponse:
    """
    Call the user's PDS with the session's access token and DPoP key.

    The proof is bound to the exact request URL, query string included, and to
    the access token through ath. A nonce challenge answered with 400 or 401 is
    retried once.

    Args:
        http_session: Shared client session
        settings: Application settings
        session: Session whose token and keypair are used
        method: HTTP method
        path: Path on the resource server, e.g. /xrpc/com.atproto.server.getSession
        params: Optional query parameters

    Returns:
        DpopResponse: the upstream response, successful or not

    Raises:
        OAuthFlowError: TOKEN_EXCHANGE_NETWORK when the PDS cannot be reached
    """
    base_url = await resolve_resource_server(
        http_session, settings, session.access_token, session_subject(session)
    )
    url = f"{base_url}{path}"
    if params:
        url = f"{url}?{urlencode(params)}"

    keypair = DpopKeyPair(
        public_jwk=session.dpop_public_jwk, private_jwk=session.dpop_private_jwk
    )

    try:
        response = await dpop_request(
            http_session,
            method,
            url,
            keypair,
            headers={"Authorization": f"DPoP {session.access_token}"},
            access_token=session.access_token,
            nonce_statuses=(400, 401),
        )
    except (ClientError, asyncio.TimeoutError) as e:
        logger.warning("fetch_protected: %s %s unreachable: %s", method, url, type(e).__name__)
        raise OAuthFlowError.network("Failed to reach resource server") from e

    if not response.ok:
        logger.info("fetch_protected: %s %s status=%s", method, url, response.status)

    return response


def upstream_error_body(response: DpopResponse) -> Dict[str, Any]:
    """Compose the error body returned for a failed upstream call."""
    body = response.json if isinstance(response.json, dict) else {}

    error = body.get("error")
    message = body.get("message") or body.get("error_description") or response.text
    return {
        "error": error if isinstance(error, str) and error else UPSTREAM_ERROR,
        "message": message if isinstance(message, str) and message else "Upstream request failed",
        "status": response.status,
    }
