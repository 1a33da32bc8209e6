"""Masking helpers for secrets that would otherwise end up in logs."""

from typing import Any, Optional

SECRET_FIELDS = frozenset(
    {
        "code",
        "code_verifier",
        "access_token",
        "accessJwt",
        "accessToken",
        "refresh_token",
        "refreshJwt",
        "refreshToken",
        "dpop_private_jwk",
        "d",
    }
)


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    """Keep a short prefix and suffix of a secret, enough to correlate log lines."""
    if value is None:
        return "<none>"
    if len(value) <= visible * 3:
        return "***"
    return f"{value[:visible]}...{value[-visible:]}"


def redact_secrets(value: Any) -> Any:
    """Return a copy of a JSON-like value with every secret field masked."""
    if isinstance(value, dict):
        redacted = {}
        for key, item in value.items():
            if key in SECRET_FIELDS:
                redacted[key] = mask_secret(item) if isinstance(item, str) else "***"
            else:
                redacted[key] = redact_secrets(item)
        return redacted
    if isinstance(value, list):
        return [redact_secrets(item) for item in value]
    return value
