"""
AT Protocol OAuth primitives.

- errors: the OAuth flow error taxonomy
- jwt: DPoP key generation and proof signing
- dpop: DPoP requests with a single nonce challenge retry
- oauth: PKCE, authorize URL construction and the token exchange
- pds: resource server resolution and DPoP-bound resource fetches
- redact: masking of secrets before they reach the logs
"""
