# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_federation

import socket
from collections.abc import Generator
from typing import Any
from unittest.mock import MagicMock, patch

import httpx
import pytest

from coreason_federation.config import OIDC_CLIENT_SECRET_TYPE
from coreason_federation.models import (
    OIDCAuthorizationConfig,
    OIDCClient,
    Secret,
    UpstreamProviderConfig,
    UpstreamProviderSpec,
    UpstreamProviderStatus,
)
from coreason_federation.utils.logger import logger

ISSUER = "https://issuer.example.com"
AUTHORIZE_URL = "https://example.com/authorize"
TEST_NAMESPACE = "test-namespace"
TEST_NAME = "test-name"
TEST_SECRET_NAME = "test-client-secret"
TEST_CLIENT_ID = "test-oidc-client-id"
TEST_CLIENT_SECRET = "test-oidc-client-secret"
VALID_SECRET_DATA = {"clientID": TEST_CLIENT_ID, "clientSecret": TEST_CLIENT_SECRET}


@pytest.fixture(autouse=True)
def mock_dns_resolution() -> Generator[MagicMock, None, None]:
    """
    Globally patches socket.getaddrinfo to return a safe public IP by default.

    Tests that need to verify SSRF logic should explicitly patch
    socket.getaddrinfo again or configure this mock's return value.
    """
    safe_response = [(socket.AF_INET, socket.SOCK_STREAM, 6, "", ("8.8.8.8", 443))]

    with patch("socket.getaddrinfo", return_value=safe_response) as mock:
        yield mock


class FakeIssuer:
    """
    Serves discovery documents for a handful of issuers under ISSUER:

    - "/"          a valid document
    - "/invalid"   an authorization endpoint that does not parse
    - "/insecure"  an http:// authorization endpoint
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.documents: dict[str, Any] = {
            "/.well-known/openid-configuration": {
                "issuer": ISSUER,
                "authorization_endpoint": AUTHORIZE_URL,
            },
            "/invalid/.well-known/openid-configuration": {
                "issuer": f"{ISSUER}/invalid",
                "authorization_endpoint": "%",
            },
            "/insecure/.well-known/openid-configuration": {
                "issuer": f"{ISSUER}/insecure",
                "authorization_endpoint": "http://example.com/authorize",
            },
        }
        # Non-JSON-document bodies served verbatim, keyed by path.
        self.raw_bodies: dict[str, str] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path in self.raw_bodies:
            return httpx.Response(200, text=self.raw_bodies[request.url.path])
        document = self.documents.get(request.url.path)
        if document is None:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, json=document)


@pytest.fixture
def fake_issuer() -> FakeIssuer:
    return FakeIssuer()


@pytest.fixture
def http_client(fake_issuer: FakeIssuer) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_issuer.handler))


@pytest.fixture
def log_records() -> Generator[list[dict[str, Any]], None, None]:
    """Collects every Loguru record emitted during the test."""
    records: list[dict[str, Any]] = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(handler_id)


def make_provider(
    issuer: str = ISSUER,
    additional_scopes: list[str] | None = None,
    name: str = TEST_NAME,
    generation: int = 0,
    status: UpstreamProviderStatus | None = None,
) -> UpstreamProviderConfig:
    return UpstreamProviderConfig(
        namespace=TEST_NAMESPACE,
        name=name,
        generation=generation,
        spec=UpstreamProviderSpec(
            issuer=issuer,
            client=OIDCClient(secret_name=TEST_SECRET_NAME),
            authorization_config=OIDCAuthorizationConfig(
                additional_scopes=additional_scopes if additional_scopes is not None else ["scope1", "scope2", "scope3"]
            ),
        ),
        status=status or UpstreamProviderStatus(),
    )


def make_secret(secret_type: str = OIDC_CLIENT_SECRET_TYPE, data: dict[str, str] | None = None) -> Secret:
    return Secret(
        namespace=TEST_NAMESPACE,
        name=TEST_SECRET_NAME,
        type=secret_type,
        data=VALID_SECRET_DATA if data is None else data,
    )
