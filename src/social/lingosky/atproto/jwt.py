"""
JWT and DPoP utilities for AT Protocol authentication.

Provides helper functions for creating DPoP (Demonstrating Proof of Possession) proofs
as described by RFC 9449. A proof is a short lived ES256 JWT that binds one HTTP request
(method and URL) and optionally one access token to the key that signed it.
"""

import base64
import hashlib
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from jwcrypto import jwk, jwt
from jwcrypto.common import JWException, base64url_decode
from ulid import ULID

from social.lingosky.atproto.errors import OAuthFlowError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DpopKeyPair:
    """
    An ES256 keypair used to sign DPoP proofs.

    The pair is created once per authentication attempt and stored with the
    resulting session, so every later request for that session is signed with
    the key the access token was bound to. It is passed explicitly to whoever
    signs a proof and never kept in module state.

    Attributes:
        public_jwk: Public JWK embedded in every proof header
        private_jwk: Full JWK including the private scalar
    """

    public_jwk: Dict[str, Any]
    private_jwk: Dict[str, Any]

    def signing_key(self) -> jwk.JWK:
        return jwk.JWK(**self.private_jwk)


def check_dpop_key(public_jwk: Dict[str, Any]) -> None:
    """Fail loudly unless the key is an EC P-256 key."""
    if public_jwk.get("kty") != "EC" or public_jwk.get("crv") != "P-256":
        raise OAuthFlowError.dpop_key_error(
            f"DPoP key must be EC P-256, got kty={public_jwk.get('kty')} crv={public_jwk.get('crv')}"
        )


def generate_dpop_key() -> DpopKeyPair:
    """Generate a new DPoP key pair for token binding.

    Creates an ECDSA P-256 key pair suitable for DPoP JWT signing with a unique
    key identifier for tracking.

    Returns:
        DpopKeyPair: exported public and private JWKs

    Raises:
        OAuthFlowError: DPOP_KEY_ERROR when generation or export fails, or the
            exported key is not EC P-256.
    """
    try:
        dpop_key = jwk.JWK.generate(kty="EC", crv="P-256", kid=str(ULID()), alg="ES256")
        public_jwk = dpop_key.export_public(as_dict=True)
        private_jwk = dpop_key.export_private(as_dict=True)
    except (JWException, ValueError, TypeError) as e:
        logger.exception("generate_dpop_key: key generation failed")
        raise OAuthFlowError.dpop_key_error() from e

    check_dpop_key(public_jwk)
    public_jwk["alg"] = "ES256"
    return DpopKeyPair(public_jwk=public_jwk, private_jwk=private_jwk)


def access_token_hash(access_token: str) -> str:
    """Compute the ath claim: base64url SHA-256 of the access token without padding."""
    digest = hashlib.sha256(access_token.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_jti() -> str:
    # uuid4 reads os.urandom and raises if no secure source is available.
    return str(uuid.uuid4())


def create_dpop_header(public_key_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Create DPoP JWT header with embedded public key."""
    return {
        "alg": "ES256",
        "jwk": public_key_dict,
        "typ": "dpop+jwt",
    }


def create_dpop_claims(
    http_method: str,
    http_uri: str,
    issued_at: Optional[datetime] = None,
    nonce: Optional[str] = None,
    access_token: Optional[str] = None,
) -> Dict[str, Any]:
    """Create DPoP JWT claims for request binding.

    Args:
        http_method: HTTP method, upper-cased into htm
        http_uri: Target URL, used as htu exactly as the request will be sent
        issued_at: Proof issuance time (defaults to current UTC time)
        nonce: Server provided nonce from a previous challenge
        access_token: Access token the request carries, hashed into ath

    Returns:
        Dict[str, Any]: DPoP JWT claims including a fresh jti
    """
    if issued_at is None:
        issued_at = datetime.now(timezone.utc)

    claims: Dict[str, Any] = {
        "htm": http_method.upper(),
        "htu": http_uri,
        "iat": int(issued_at.timestamp()),
        "jti": generate_jti(),
    }

    if access_token is not None:
        claims["ath"] = access_token_hash(access_token)

    if nonce is not None:
        claims["nonce"] = nonce

    return claims


def create_dpop_jwt(
    keypair: DpopKeyPair,
    http_method: str,
    http_uri: str,
    nonce: Optional[str] = None,
    access_token: Optional[str] = None,
    issued_at: Optional[datetime] = None,
) -> str:
    """Create a complete DPoP proof for one HTTP request.

    Every call produces a new jti and iat, so a proof is never reused even when
    the same request is retried.

    Args:
        keypair: Keypair the proof is signed with
        http_method: HTTP method for request binding
        http_uri: Target URI for request binding
        nonce: Optional server nonce
        access_token: Optional access token to bind with ath
        issued_at: Proof issuance time (defaults to current UTC time)

    Returns:
        str: Compact serialized proof for the DPoP header

    Usage:
        ```python
        keypair = generate_dpop_key()
        headers["DPoP"] = create_dpop_jwt(
            keypair, "POST", "https://bsky.social/oauth/token"
        )
        ```
    """
    header = create_dpop_header(keypair.public_jwk)
    claims = create_dpop_claims(http_method, http_uri, issued_at, nonce, access_token)

    try:
        dpop_jwt = jwt.JWT(header=header, claims=claims)
        dpop_jwt.make_signed_token(keypair.signing_key())
        return dpop_jwt.serialize()
    except (JWException, ValueError, TypeError) as e:
        logger.exception("create_dpop_jwt: signing failed")
        raise OAuthFlowError.dpop_key_error("Failed to sign DPoP proof") from e


def decode_unverified_claims(token: str) -> Dict[str, Any]:
    """Decode the payload of a compact JWT without verifying its signature.

    Only used to read routing hints (sub, aud, iss) from an access token the
    gateway received directly from the authorization server. Returns an empty
    dict for anything that is not a JWT with a JSON object payload.
    """
    parts = token.split(".")
    if len(parts) != 3:
        return {}
    try:
        payload = json.loads(base64url_decode(parts[1]))
    except (ValueError, UnicodeDecodeError):
        return {}
    if not isinstance(payload, dict):
        return {}
    return payload
