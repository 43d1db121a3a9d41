"""Pytest configuration and fixtures."""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from typing import Any

import httpx
import jwt
import pytest

from oidcflow.core.config import ClientConfig, ProviderConfig

ISSUER = "https://auth.example.com"
CLIENT_ID = "C1"
CLIENT_SECRET = "client-secret-0123456789-abcdefghijklmnop"
REDIRECT_URI = "https://app/cb"
NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep OIDCFLOW_* variables from the developer's shell out of tests."""
    for key in list(os.environ):
        if key.startswith("OIDCFLOW_"):
            monkeypatch.delenv(key)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def provider_config() -> ProviderConfig:
    return ProviderConfig(
        issuer=ISSUER,
        authorization_endpoint=f"{ISSUER}/authorize",
        token_endpoint=f"{ISSUER}/token",
        userinfo_endpoint=f"{ISSUER}/userinfo",
    )


@pytest.fixture
def client_config() -> ClientConfig:
    return ClientConfig(
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        redirect_uri=REDIRECT_URI,
        scopes=["openid", "profile"],
    )


@pytest.fixture
def id_token_claims() -> dict[str, Any]:
    """Claims of a token that passes every check at NOW with nonce N1."""
    return {
        "iss": ISSUER,
        "sub": "alice",
        "aud": CLIENT_ID,
        "exp": int(NOW.timestamp()) + 600,
        "iat": int(NOW.timestamp()),
        "nonce": "N1",
        "at_hash": "x4dbAoMEjLNeTP0DdCkx5Q",
    }


@pytest.fixture
def make_id_token(id_token_claims: dict[str, Any]) -> Callable[..., str]:
    """Build a signed ID token, overriding default claims with keyword arguments."""

    def factory(
        key: Any = CLIENT_SECRET,
        algorithm: str = "HS256",
        headers: dict[str, Any] | None = None,
        **overrides: Any,
    ) -> str:
        claims = {**id_token_claims, **overrides}
        claims = {k: v for k, v in claims.items() if v is not None}
        return jwt.encode(claims, key, algorithm=algorithm, headers=headers)

    return factory


@pytest.fixture
def mock_http() -> Iterator[Callable[[Callable[[httpx.Request], httpx.Response]], httpx.Client]]:
    """Create an httpx client backed by a request handler."""
    clients: list[httpx.Client] = []

    def factory(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
        client = httpx.Client(transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield factory

    for client in clients:
        client.close()
