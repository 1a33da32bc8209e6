"""
Unit tests for request helpers and CORS headers.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from social.lingosky.app.config import OAuthStoreAppKey
from social.lingosky.app.cors import get_cors_headers
from social.lingosky.app.handlers.helpers import (
    get_bearer_token,
    require_session,
    session_helper,
)
from social.lingosky.atproto.errors import AUTH_REQUIRED, OAuthFlowError


def make_request(authorization=None, session=None):
    store = Mock()
    store.get_session = AsyncMock(return_value=session)
    request = Mock()
    request.headers = {} if authorization is None else {"Authorization": authorization}
    request.app = {OAuthStoreAppKey: store}
    return request, store


class TestGetBearerToken:
    @pytest.mark.parametrize(
        "header,expected",
        [
            ("Bearer abc", "abc"),
            ("Bearer   abc  ", "abc"),
            ("Bearer ", None),
            ("DPoP abc", None),
            ("bearer abc", None),
            (None, None),
        ],
    )
    def test_values(self, header, expected):
        assert get_bearer_token(header) == expected


class TestSessionHelper:
    @pytest.mark.asyncio
    async def test_no_header(self):
        request, store = make_request()
        assert await session_helper(request) is None
        store.get_session.assert_not_called()

    @pytest.mark.asyncio
    async def test_looks_up_session(self):
        sentinel = object()
        request, store = make_request("Bearer sid-1", session=sentinel)
        assert await session_helper(request) is sentinel
        store.get_session.assert_awaited_once_with("sid-1")

    @pytest.mark.asyncio
    async def test_require_session_raises(self):
        request, _ = make_request("Bearer sid-1", session=None)
        with pytest.raises(OAuthFlowError) as excinfo:
            await require_session(request)
        assert excinfo.value.error == AUTH_REQUIRED
        assert excinfo.value.status == 401


class TestCorsHeaders:
    def test_wildcard(self):
        headers = get_cors_headers("https://a.example.com", ["*"])
        assert headers["Access-Control-Allow-Origin"] == "*"
        assert headers["Access-Control-Max-Age"] == "86400"

    def test_listed_origin_echoed(self):
        headers = get_cors_headers("https://a.example.com", ["https://a.example.com"])
        assert headers["Access-Control-Allow-Origin"] == "https://a.example.com"
        assert headers["Vary"] == "Origin"

    def test_unlisted_origin(self):
        headers = get_cors_headers("https://evil.example.com", ["https://a.example.com"])
        assert "Access-Control-Allow-Origin" not in headers
        assert headers["Access-Control-Allow-Methods"] == "GET, POST, OPTIONS"
