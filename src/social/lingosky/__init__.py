"""
Lingosky - AT Protocol authentication gateway

This package implements the authentication gateway of the Lingosky language-learning
application. It obtains AT Protocol access tokens through OAuth 2.0 with PKCE and DPoP,
wraps them in opaque application session ids, and proxies authenticated calls to the
user's Personal Data Server (PDS) with proof-of-possession bound requests.

Key Components:
- app: Web application layer with request handlers and server configuration
- atproto: OAuth, PKCE and DPoP primitives and the PDS resource fetcher
- model: Session and PKCE records and their Redis-backed store
- resolve: DID resolution used to locate the user's PDS

Authentication Flow:
1. The UI asks for an authorize URL; a PKCE record is stored under the OAuth state.
2. The user signs in with the authorization server and is redirected back with a code.
3. The code is exchanged for a DPoP-bound token using a freshly generated ES256 key.
4. A session holding the token and the key is stored and its id returned to the UI.
5. Later calls to the PDS are signed with the same key.
"""
