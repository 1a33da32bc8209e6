"""
DPoP requests with nonce challenge handling.

Authorization and resource servers may reject a DPoP proof that does not carry a
server issued nonce. The server signals this with a `use_dpop_nonce` error, a
`DPoP-Nonce` header or a `WWW-Authenticate` header with a nonce parameter. The
request is then sent once more with a freshly signed proof carrying the nonce.
A second rejection is returned to the caller as is.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from aiohttp import ClientSession, hdrs
from multidict import CIMultiDict, CIMultiDictProxy

from social.lingosky.atproto.errors import OAuthFlowError
from social.lingosky.atproto.jwt import DpopKeyPair, create_dpop_jwt

logger = logging.getLogger(__name__)

WWW_AUTHENTICATE_NONCE = re.compile(r'(?:dpop_)?nonce="([^"]+)"', re.IGNORECASE)


@dataclass
class DpopResponse:
    """
    A fully read upstream response.

    The body is read before the connection is released so that callers can
    inspect it after the request context has closed.
    """

    status: int
    headers: CIMultiDictProxy[str] = field(
        default_factory=lambda: CIMultiDictProxy(CIMultiDict())
    )
    text: str = ""
    json: Optional[Any] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def error_code(self) -> Optional[str]:
        if isinstance(self.json, dict):
            error = self.json.get("error")
            if isinstance(error, str):
                return error
        return None


def www_authenticate_nonce(response: DpopResponse) -> Optional[str]:
    """The first nonce parameter across all WWW-Authenticate challenges."""
    for challenge in response.headers.getall(hdrs.WWW_AUTHENTICATE, []):
        match = WWW_AUTHENTICATE_NONCE.search(challenge)
        if match:
            return match.group(1)
    return None


def extract_dpop_nonce(response: DpopResponse) -> Optional[str]:
    """Return the nonce a server asked for, if it sent one.

    The quoted WWW-Authenticate value is preferred, then the DPoP-Nonce header,
    then a `nonce` string in the JSON error body.
    """
    nonce = www_authenticate_nonce(response)
    if nonce is not None:
        return nonce

    dpop_nonce = response.headers.get("DPoP-Nonce")
    if dpop_nonce:
        return dpop_nonce

    if isinstance(response.json, dict):
        nonce = response.json.get("nonce")
        if isinstance(nonce, str) and nonce:
            return nonce

    return None


def requires_dpop_nonce(response: DpopResponse) -> bool:
    """Whether a failed response is a nonce challenge."""
    if response.ok:
        return False
    if response.error_code == "use_dpop_nonce":
        return True
    if response.headers.get("DPoP-Nonce"):
        return True
    return www_authenticate_nonce(response) is not None


async def send_request(
    http_session: ClientSession,
    method: str,
    url: str,
    headers: Mapping[str, str],
    data: Optional[str] = None,
) -> DpopResponse:
    async with http_session.request(method, url, headers=dict(headers), data=data) as resp:
        text = await resp.text(errors="replace")
        body: Optional[Any] = None
        if text:
            try:
                body = json.loads(text)
            except ValueError:
                body = None
        return DpopResponse(
            status=resp.status,
            headers=resp.headers,
            text=text,
            json=body,
        )


async def dpop_request(
    http_session: ClientSession,
    method: str,
    url: str,
    keypair: DpopKeyPair,
    *,
    headers: Optional[Mapping[str, str]] = None,
    data: Optional[str] = None,
    access_token: Optional[str] = None,
    nonce_statuses: Iterable[int] = (400,),
) -> DpopResponse:
    """Send a DPoP-signed request, answering one nonce challenge.

    The first attempt carries a proof without a nonce. When the response is a
    nonce challenge with a status in nonce_statuses, a new proof with the
    supplied nonce is signed and the identical request is sent once more.
    Exactly one or two upstream calls are made.

    Args:
        http_session: Shared client session
        method: HTTP method
        url: Target URL, bound into the proof as htu
        keypair: Keypair the proofs are signed with
        headers: Extra request headers
        data: Pre-encoded request body, resent unchanged on retry
        access_token: Access token to bind with ath
        nonce_statuses: Statuses on which a nonce challenge is honoured

    Returns:
        DpopResponse: the last response received

    Raises:
        OAuthFlowError: DPOP_KEY_ERROR when the first proof cannot be signed,
            DPOP_NONCE_RETRY_FAILED when the retry proof cannot be signed.
        aiohttp.ClientError, asyncio.TimeoutError: transport failures
    """
    request_headers = dict(headers or {})

    request_headers["DPoP"] = create_dpop_jwt(
        keypair, method, url, access_token=access_token
    )
    response = await send_request(http_session, method, url, request_headers, data)

    if response.status not in tuple(nonce_statuses) or not requires_dpop_nonce(response):
        return response

    nonce = extract_dpop_nonce(response)
    logger.debug(
        "dpop_request: nonce challenge from %s status=%s nonce=%s",
        url,
        response.status,
        nonce is not None,
    )

    try:
        request_headers["DPoP"] = create_dpop_jwt(
            keypair, method, url, nonce=nonce, access_token=access_token
        )
    except OAuthFlowError as e:
        raise OAuthFlowError.nonce_retry_failed() from e

    return await send_request(http_session, method, url, request_headers, data)
