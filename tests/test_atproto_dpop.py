"""
Tests for DPoP requests and nonce challenge handling.

Nonce extraction and challenge detection are tested on DpopResponse values;
dpop_request is tested against the fake upstream PDS.
"""

from unittest.mock import patch

import aiohttp
import pytest
from multidict import CIMultiDict, CIMultiDictProxy

from social.lingosky.atproto.dpop import (
    DpopResponse,
    dpop_request,
    extract_dpop_nonce,
    requires_dpop_nonce,
)
from social.lingosky.atproto.errors import DPOP_NONCE_RETRY_FAILED, OAuthFlowError
from social.lingosky.atproto.jwt import create_dpop_jwt, generate_dpop_key

from conftest import ScriptedResponse, decode_proof


def make_headers(*pairs):
    """Create CIMultiDictProxy from (name, value) tuples."""
    return CIMultiDictProxy(CIMultiDict(pairs))


class TestExtractDpopNonce:
    """Test nonce extraction order."""

    def test_www_authenticate_preferred(self):
        response = DpopResponse(
            status=401,
            headers=make_headers(
                ("WWW-Authenticate", 'DPoP error="use_dpop_nonce", nonce="from-www"'),
                ("DPoP-Nonce", "from-header"),
            ),
        )
        assert extract_dpop_nonce(response) == "from-www"

    def test_www_authenticate_dpop_nonce_parameter(self):
        response = DpopResponse(
            status=401, headers=make_headers(("www-authenticate", 'DPoP dpop_nonce="xyz"'))
        )
        assert extract_dpop_nonce(response) == "xyz"

    def test_nonce_in_second_challenge(self):
        response = DpopResponse(
            status=401,
            headers=make_headers(
                ("WWW-Authenticate", 'Bearer realm="pds"'),
                ("WWW-Authenticate", 'DPoP error="use_dpop_nonce", nonce="n-2"'),
            ),
        )
        assert extract_dpop_nonce(response) == "n-2"

    def test_dpop_nonce_header(self):
        response = DpopResponse(status=400, headers=make_headers(("dpop-nonce", "abc123")))
        assert extract_dpop_nonce(response) == "abc123"

    def test_body_nonce(self):
        response = DpopResponse(
            status=400, json={"error": "use_dpop_nonce", "nonce": "from-body"}
        )
        assert extract_dpop_nonce(response) == "from-body"

    def test_no_nonce(self):
        assert extract_dpop_nonce(DpopResponse(status=400, json={"error": "x"})) is None


class TestRequiresDpopNonce:
    """Test nonce challenge detection."""

    def test_body_error(self):
        assert requires_dpop_nonce(DpopResponse(status=400, json={"error": "use_dpop_nonce"}))

    def test_header(self):
        assert requires_dpop_nonce(
            DpopResponse(status=401, headers=make_headers(("DPoP-Nonce", "n")))
        )

    def test_www_authenticate(self):
        assert requires_dpop_nonce(
            DpopResponse(status=401, headers=make_headers(("WWW-Authenticate", 'DPoP nonce="n"')))
        )

    def test_www_authenticate_among_several(self):
        assert requires_dpop_nonce(
            DpopResponse(
                status=401,
                headers=make_headers(
                    ("WWW-Authenticate", 'DPoP nonce="n"'),
                    ("WWW-Authenticate", 'Bearer realm="pds"'),
                ),
            )
        )

    def test_ordinary_error(self):
        assert not requires_dpop_nonce(
            DpopResponse(status=400, json={"error": "invalid_grant"})
        )

    def test_success_is_never_a_challenge(self):
        assert not requires_dpop_nonce(
            DpopResponse(status=200, headers=make_headers(("DPoP-Nonce", "n")))
        )


class TestDpopRequest:
    """Test the two-step request sequence."""

    @pytest.mark.asyncio
    async def test_success_without_challenge(self, upstream):
        upstream.xrpc_responses.append(ScriptedResponse(200, {"did": "did:plc:abc"}))
        keypair = generate_dpop_key()
        url = f"{upstream.base_url}/xrpc/com.atproto.server.getSession"

        async with aiohttp.ClientSession() as session:
            response = await dpop_request(session, "GET", url, keypair, access_token="at")

        assert response.ok
        assert response.json == {"did": "did:plc:abc"}
        assert len(upstream.requests) == 1
        claims = decode_proof(upstream.requests[0].headers["DPoP"])["claims"]
        assert claims["htu"] == url
        assert claims["htm"] == "GET"
        assert "ath" in claims
        assert "nonce" not in claims

    @pytest.mark.asyncio
    async def test_nonce_challenge_retried_once(self, upstream):
        upstream.xrpc_responses.extend(
            [
                ScriptedResponse(401, {"error": "use_dpop_nonce"}, {"DPoP-Nonce": "abc123"}),
                ScriptedResponse(200, {"ok": 1}),
            ]
        )
        keypair = generate_dpop_key()
        url = f"{upstream.base_url}/xrpc/com.atproto.server.getSession"

        async with aiohttp.ClientSession() as session:
            response = await dpop_request(
                session, "GET", url, keypair, nonce_statuses=(400, 401)
            )

        assert response.status == 200
        assert len(upstream.requests) == 2
        first = decode_proof(upstream.requests[0].headers["DPoP"])["claims"]
        second = decode_proof(upstream.requests[1].headers["DPoP"])["claims"]
        assert "nonce" not in first
        assert second["nonce"] == "abc123"
        assert first["jti"] != second["jti"]

    @pytest.mark.asyncio
    async def test_second_challenge_is_terminal(self, upstream):
        for _ in range(3):
            upstream.xrpc_responses.append(
                ScriptedResponse(401, {"error": "use_dpop_nonce"}, {"DPoP-Nonce": "n"})
            )
        keypair = generate_dpop_key()
        url = f"{upstream.base_url}/xrpc/com.atproto.server.getSession"

        async with aiohttp.ClientSession() as session:
            response = await dpop_request(
                session, "GET", url, keypair, nonce_statuses=(400, 401)
            )

        assert response.status == 401
        assert len(upstream.requests) == 2

    @pytest.mark.asyncio
    async def test_status_outside_nonce_statuses_not_retried(self, upstream):
        upstream.xrpc_responses.append(
            ScriptedResponse(401, {"error": "use_dpop_nonce"}, {"DPoP-Nonce": "n"})
        )
        keypair = generate_dpop_key()
        url = f"{upstream.base_url}/xrpc/com.atproto.server.getSession"

        async with aiohttp.ClientSession() as session:
            response = await dpop_request(session, "GET", url, keypair)

        assert response.status == 401
        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_retry_signing_failure(self, upstream):
        upstream.xrpc_responses.append(
            ScriptedResponse(400, {"error": "use_dpop_nonce"}, {"DPoP-Nonce": "n"})
        )
        keypair = generate_dpop_key()
        url = f"{upstream.base_url}/xrpc/com.atproto.server.getSession"

        calls = {"count": 0}

        def sign_once(*args, **kwargs):
            calls["count"] += 1
            if calls["count"] > 1:
                raise OAuthFlowError.dpop_key_error("Failed to sign DPoP proof")
            return create_dpop_jwt(*args, **kwargs)

        with patch("social.lingosky.atproto.dpop.create_dpop_jwt", side_effect=sign_once):
            async with aiohttp.ClientSession() as session:
                with pytest.raises(OAuthFlowError) as excinfo:
                    await dpop_request(session, "GET", url, keypair)

        assert excinfo.value.error == DPOP_NONCE_RETRY_FAILED
        assert excinfo.value.status == 400
        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_nonce_in_one_of_several_challenges(self, upstream):
        upstream.xrpc_responses.extend(
            [
                ScriptedResponse(
                    401,
                    {"error": "invalid_token"},
                    [
                        ("WWW-Authenticate", 'DPoP error="use_dpop_nonce", nonce="n-1"'),
                        ("WWW-Authenticate", 'Bearer realm="pds"'),
                    ],
                ),
                ScriptedResponse(200, {"ok": 1}),
            ]
        )
        keypair = generate_dpop_key()
        url = f"{upstream.base_url}/xrpc/com.atproto.server.getSession"

        async with aiohttp.ClientSession() as session:
            response = await dpop_request(session, "GET", url, keypair, nonce_statuses=(401,))

        assert response.status == 200
        assert len(upstream.requests) == 2
        second = decode_proof(upstream.requests[1].headers["DPoP"])["claims"]
        assert second["nonce"] == "n-1"

    @pytest.mark.asyncio
    async def test_undecodable_body(self, upstream):
        upstream.xrpc_responses.append(ScriptedResponse(502, b"\xff\xfe bad"))
        keypair = generate_dpop_key()
        url = f"{upstream.base_url}/xrpc/com.atproto.server.getSession"

        async with aiohttp.ClientSession() as session:
            response = await dpop_request(session, "GET", url, keypair)

        assert response.status == 502
        assert response.json is None
        assert response.text.endswith(" bad")
