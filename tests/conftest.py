"""
Shared test configuration and fixtures for the gateway tests.

Provides a fake Redis client, settings pointing at a local fake upstream, and the
fake upstream itself: a small aiohttp server standing in for the authorization
server token endpoint, the PLC directory and the user's PDS. Responses are
scripted per test and every request the gateway makes is recorded.
"""

import base64
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import fakeredis.aioredis
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer
from cryptography.fernet import Fernet

from social.lingosky.app.config import Settings
from social.lingosky.app.metrics import NoOpMetricsClient
from social.lingosky.app.server import start_web_server
from social.lingosky.model.store import OAuthStore

TEST_DID = "did:plc:testuser123"


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_json(value: str) -> Dict[str, Any]:
    padded = value + "=" * (-len(value) % 4)
    return json.loads(base64.urlsafe_b64decode(padded))


def make_access_token(claims: Dict[str, Any]) -> str:
    """Build a JWT-shaped access token; the gateway never verifies its signature."""
    header = b64url(json.dumps({"alg": "ES256", "typ": "at+jwt"}).encode())
    payload = b64url(json.dumps(claims).encode())
    return f"{header}.{payload}.c2lnbmF0dXJl"


def decode_proof(proof: str) -> Dict[str, Dict[str, Any]]:
    """Split a DPoP proof into its decoded header and claims."""
    header, payload, _ = proof.split(".")
    return {"header": b64url_json(header), "claims": b64url_json(payload)}


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = dict(
        client_id="https://app.example.com/client-metadata.json",
        redirect_uri="https://app.example.com/callback",
        encryption_key=Fernet(Fernet.generate_key()),
    )
    values.update(overrides)
    return Settings(**values)


@dataclass
class ScriptedResponse:
    status: int = 200
    body: Optional[Any] = None
    headers: Union[Dict[str, str], List[Tuple[str, str]]] = field(default_factory=dict)

    def to_response(self) -> web.Response:
        if self.body is None:
            return web.Response(status=self.status, headers=self.headers)
        if isinstance(self.body, bytes):
            return web.Response(
                status=self.status,
                body=self.body,
                content_type="text/plain",
                charset="utf-8",
                headers=self.headers,
            )
        if isinstance(self.body, str):
            return web.Response(status=self.status, text=self.body, headers=self.headers)
        return web.json_response(self.body, status=self.status, headers=self.headers)


@dataclass
class RecordedRequest:
    method: str
    path: str
    query: Dict[str, str]
    headers: Mapping[str, str]
    body: str


class FakeUpstream:
    """Scripted stand-in for the authorization server, PLC directory and PDS."""

    def __init__(self):
        self.token_responses: List[ScriptedResponse] = []
        self.xrpc_responses: List[ScriptedResponse] = []
        self.plc_documents: Dict[str, Any] = {}
        self.requests: List[RecordedRequest] = []

        self.app = web.Application()
        self.app.add_routes(
            [
                web.post("/oauth/token", self.handle_token),
                web.get("/xrpc/{method}", self.handle_xrpc),
                web.get("/plc/{did}", self.handle_plc),
            ]
        )
        self.server = TestServer(self.app)

    @property
    def base_url(self) -> str:
        return f"http://{self.server.host}:{self.server.port}"

    def requests_to(self, path_prefix: str) -> List[RecordedRequest]:
        return [r for r in self.requests if r.path.startswith(path_prefix)]

    async def record(self, request: web.Request) -> None:
        self.requests.append(
            RecordedRequest(
                method=request.method,
                path=request.path,
                query=dict(request.query),
                headers=request.headers.copy(),
                body=await request.text(),
            )
        )

    async def handle_token(self, request: web.Request):
        await self.record(request)
        if not self.token_responses:
            return web.json_response({"error": "unscripted"}, status=500)
        return self.token_responses.pop(0).to_response()

    async def handle_xrpc(self, request: web.Request):
        await self.record(request)
        if not self.xrpc_responses:
            return web.json_response({"error": "unscripted"}, status=500)
        return self.xrpc_responses.pop(0).to_response()

    async def handle_plc(self, request: web.Request):
        await self.record(request)
        document = self.plc_documents.get(request.match_info["did"])
        if document is None:
            return web.json_response({"message": "DID not registered"}, status=404)
        return web.json_response(document)

    def register_pds(self, did: str = TEST_DID, endpoint: Optional[str] = None) -> None:
        self.plc_documents[did] = {
            "id": did,
            "alsoKnownAs": ["at://learner.example.com"],
            "service": [
                {
                    "id": "#atproto_pds",
                    "type": "AtprotoPersonalDataServer",
                    "serviceEndpoint": endpoint or self.base_url,
                }
            ],
        }


@pytest_asyncio.fixture
async def fake_redis_client():
    """Provide fake Redis client for unit tests."""
    client = fakeredis.aioredis.FakeRedis(decode_responses=False)
    yield client
    await client.flushall()
    await client.aclose()


@pytest_asyncio.fixture
async def upstream():
    fake = FakeUpstream()
    await fake.server.start_server()
    yield fake
    await fake.server.close()


@pytest.fixture
def settings(upstream) -> Settings:
    return make_settings(
        debug=True,
        bsky_issuer=upstream.base_url,
        token_endpoint=f"{upstream.base_url}/oauth/token",
        plc_directory_url=f"{upstream.base_url}/plc",
        dev_redirect_uri="http://127.0.0.1:5100/dev/callback",
        http_timeout=5.0,
    )


@pytest.fixture
def store(fake_redis_client, settings) -> OAuthStore:
    return OAuthStore(fake_redis_client, settings.encryption_key)


@pytest_asyncio.fixture
async def app_client(settings, fake_redis_client):
    app = await start_web_server(
        settings,
        redis_client=fake_redis_client,
        metrics_client=NoOpMetricsClient(),
    )
    async with TestClient(TestServer(app)) as client:
        yield client
