"""
Records produced and consumed by the OAuth flow.

PKCERecord lives between the authorize redirect and the token exchange. OAuthSession
is what a session id resolves to. TokenResponse is the single normalized view of
whatever the authorization server returned.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Sequence

from pydantic import BaseModel, Field

DEFAULT_TOKEN_TYPE = "DPoP"
DEFAULT_EXPIRES_IN = 3600

ACCESS_TOKEN_ALIASES: Sequence[str] = ("access_token", "accessJwt", "accessToken")
"""Keys searched for the access token, highest priority first."""

REFRESH_TOKEN_ALIASES: Sequence[str] = ("refresh_token", "refreshJwt", "refreshToken")
"""Keys searched for the refresh token, highest priority first."""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PKCERecord(BaseModel):
    """Verifier and redirect context stored under the OAuth state."""

    state: str
    code_verifier: str
    redirect_uri: str
    client_id: str
    created_at: datetime = Field(default_factory=utc_now)


class OAuthSession(BaseModel):
    """
    An authenticated session.

    Holds the DPoP-bound access token together with the exact keypair the token
    was bound to. Only public_view() leaves the gateway.
    """

    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = Field(default_factory=utc_now)
    issuer: str
    access_token: str
    token_type: str = DEFAULT_TOKEN_TYPE
    expires_in: int = DEFAULT_EXPIRES_IN
    dpop_private_jwk: Dict[str, Any]
    dpop_public_jwk: Dict[str, Any]
    scope: str = ""
    sub: Optional[str] = None
    refresh_token: Optional[str] = None

    def public_view(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "created_at": self.created_at.isoformat(),
            "issuer": self.issuer,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "scope": self.scope,
            "sub": self.sub,
            "dpop_public_jwk": self.dpop_public_jwk,
        }


def first_string(payload: Mapping[str, Any], keys: Sequence[str]) -> Optional[str]:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def coerce_expires_in(value: Any) -> int:
    if isinstance(value, bool):
        return DEFAULT_EXPIRES_IN
    try:
        expires_in = int(value)
    except (TypeError, ValueError, OverflowError):
        return DEFAULT_EXPIRES_IN
    return expires_in or DEFAULT_EXPIRES_IN


class TokenResponse(BaseModel):
    """A token endpoint response normalized to one shape."""

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_type: str = DEFAULT_TOKEN_TYPE
    expires_in: int = DEFAULT_EXPIRES_IN
    scope: str = ""
    sub: Optional[str] = None

    @classmethod
    def from_provider(cls, payload: Mapping[str, Any]) -> "TokenResponse":
        """
        Map a raw provider payload.

        Access and refresh tokens are taken from the first non-empty alias in
        ACCESS_TOKEN_ALIASES and REFRESH_TOKEN_ALIASES. token_type defaults to
        DPoP. expires_in defaults to 3600 when missing, non-numeric or zero;
        negative values are kept and the session TTL floor applies to them.
        """
        token_type = payload.get("token_type")
        scope = payload.get("scope")
        sub = payload.get("sub")
        return cls(
            access_token=first_string(payload, ACCESS_TOKEN_ALIASES),
            refresh_token=first_string(payload, REFRESH_TOKEN_ALIASES),
            token_type=token_type if isinstance(token_type, str) and token_type else DEFAULT_TOKEN_TYPE,
            expires_in=coerce_expires_in(payload.get("expires_in")),
            scope=scope if isinstance(scope, str) else "",
            sub=sub if isinstance(sub, str) and sub else None,
        )

    def has_scope(self, required: str) -> bool:
        return has_required_scope(self.scope, required)


def has_required_scope(scope: str, required: str) -> bool:
    return required in scope.split()


class OAuthInitResult(BaseModel):
    authorize_url: str
    state: str
    redirect_uri: str
    client_id: str


class TokenExchangeResult(BaseModel):
    ok: bool = True
    session_id: str
    expires_in: int
    token_type: str

    def to_response(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "sessionId": self.session_id,
            "expires_in": self.expires_in,
            "token_type": self.token_type,
        }
