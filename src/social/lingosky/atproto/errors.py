"""
Error taxonomy for the OAuth flow.

Every failure a caller of the OAuth flow can observe is an OAuthFlowError with a
machine readable code, a human readable message and the HTTP status the gateway
answers with. Handlers render errors with to_dict().
"""

from typing import Any, Dict


VALIDATION_ERROR = "VALIDATION_ERROR"
STATE_EXPIRED = "STATE_EXPIRED"
DPOP_KEY_ERROR = "DPOP_KEY_ERROR"
TOKEN_EXCHANGE_NETWORK = "TOKEN_EXCHANGE_NETWORK"
TOKEN_EXCHANGE_FAILED = "TOKEN_EXCHANGE_FAILED"
DPOP_NONCE_RETRY_FAILED = "DPOP_NONCE_RETRY_FAILED"
AUTH_REQUIRED = "AUTH_REQUIRED"
INSUFFICIENT_SCOPE = "INSUFFICIENT_SCOPE"
UPSTREAM_ERROR = "UPSTREAM_ERROR"


class OAuthFlowError(Exception):
    """
    Exception raised for OAuth flow failures.

    This exception class provides static methods for creating specific
    failure instances with the error code and HTTP status they map to.
    Extra keyword arguments are carried into the rendered error body.
    """

    def __init__(self, error: str, message: str, status: int = 400, **extra: Any):
        super().__init__(f"{error}: {message}")
        self.error = error
        self.message = message
        self.status = status
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.error, "message": self.message}
        body.update(self.extra)
        body["status"] = self.status
        return body

    @staticmethod
    def validation(message: str) -> "OAuthFlowError":
        """Request input is missing or malformed."""
        return OAuthFlowError(VALIDATION_ERROR, message, 400)

    @staticmethod
    def state_expired() -> "OAuthFlowError":
        """No PKCE record exists for the state; the flow must be restarted."""
        return OAuthFlowError(STATE_EXPIRED, "state not found or expired", 400)

    @staticmethod
    def dpop_key_error(message: str = "Failed to generate or export DPoP keys") -> "OAuthFlowError":
        """The DPoP keypair could not be generated, exported or used for signing."""
        return OAuthFlowError(DPOP_KEY_ERROR, message, 500)

    @staticmethod
    def network(message: str = "Failed to reach token endpoint") -> "OAuthFlowError":
        """The upstream server could not be reached."""
        return OAuthFlowError(TOKEN_EXCHANGE_NETWORK, message, 502)

    @staticmethod
    def exchange_failed(error: str, message: str, status: int) -> "OAuthFlowError":
        """The authorization server rejected the token request."""
        return OAuthFlowError(error or TOKEN_EXCHANGE_FAILED, message, status)

    @staticmethod
    def nonce_retry_failed(message: str = "Failed to sign DPoP proof for nonce retry") -> "OAuthFlowError":
        """The proof for the nonce challenge retry could not be produced."""
        return OAuthFlowError(DPOP_NONCE_RETRY_FAILED, message, 400)

    @staticmethod
    def auth_required() -> "OAuthFlowError":
        """The request carries no valid session id."""
        return OAuthFlowError(AUTH_REQUIRED, "Authentication required", 401)

    @staticmethod
    def insufficient_scope(scope: str, required: str) -> "OAuthFlowError":
        """The granted token lacks the scope the application requires."""
        return OAuthFlowError(
            INSUFFICIENT_SCOPE,
            f"Token response is missing required scope '{required}'",
            400,
            scope=scope,
        )
