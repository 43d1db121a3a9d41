"""Token endpoint client.

Exchanges an authorization code or a refresh token for a :class:`TokenSet`
with one back-channel POST per call. Retries, pooling and TLS policy belong
to the injected ``httpx`` client.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from oidcflow.core.config import CLIENT_SECRET_BASIC, CLIENT_SECRET_POST
from oidcflow.core.errors import TokenRequestFailed, TokenResponseMalformed

logger = logging.getLogger(__name__)

GRANT_AUTHORIZATION_CODE = "authorization_code"
GRANT_REFRESH_TOKEN = "refresh_token"


@dataclass(frozen=True)
class TokenSet:
    """Tokens issued by one token endpoint response.

    Never mutated; a refresh produces a new TokenSet.
    """

    access_token: str
    expires_at: datetime
    token_type: str = "Bearer"
    refresh_token: str | None = None
    id_token: str | None = None
    scope: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if the access token has expired."""
        return (now or datetime.now(UTC)) >= self.expires_at

    @property
    def expires_at_timestamp(self) -> int:
        """Expiry as epoch seconds."""
        return int(self.expires_at.timestamp())


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TokenExchangeClient:
    """Client for the OAuth2 token endpoint."""

    def __init__(
        self,
        token_endpoint: str,
        http_client: httpx.Client,
        auth_method: str = CLIENT_SECRET_BASIC,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the token client.

        Args:
            token_endpoint: Absolute URL of the token endpoint.
            http_client: Configured HTTP client (TLS, timeouts, logging).
            auth_method: ``client_secret_basic`` or ``client_secret_post``.
            clock: Returns the current time; used to compute ``expires_at``.

        Raises:
            ValueError: If ``auth_method`` is not supported.
        """
        if auth_method not in (CLIENT_SECRET_BASIC, CLIENT_SECRET_POST):
            raise ValueError(f"Unsupported token endpoint auth method: {auth_method}")
        self.token_endpoint = token_endpoint
        self.http_client = http_client
        self.auth_method = auth_method
        self._clock = clock

    def exchange_code(
        self,
        code: str,
        client_id: str,
        client_secret: str | None,
        redirect_uri: str,
    ) -> TokenSet:
        """Exchange an authorization code for tokens.

        Args:
            code: Authorization code from the callback.
            client_id: Registered client identifier.
            client_secret: Client secret (None for public clients).
            redirect_uri: The redirect URI used in the authorization request.

        Returns:
            TokenSet with access token and, normally, an ID token.

        Raises:
            TokenRequestFailed: If the provider or transport reported an error.
            TokenResponseMalformed: If the response body is not a usable token response.
        """
        data = {
            "grant_type": GRANT_AUTHORIZATION_CODE,
            "code": code,
            "redirect_uri": redirect_uri,
        }
        return self._request(data, client_id, client_secret)

    def exchange_refresh_token(
        self,
        refresh_token: str,
        client_id: str,
        client_secret: str | None,
    ) -> TokenSet:
        """Obtain a fresh TokenSet with a refresh token.

        The response may omit ``id_token`` and ``refresh_token``; a missing
        ``refresh_token`` keeps the one presented.

        Raises:
            TokenRequestFailed: If the provider or transport reported an error.
            TokenResponseMalformed: If the response body is not a usable token response.
        """
        data = {
            "grant_type": GRANT_REFRESH_TOKEN,
            "refresh_token": refresh_token,
        }
        token_set = self._request(data, client_id, client_secret)
        if token_set.refresh_token is None:
            return replace(token_set, refresh_token=refresh_token)
        return token_set

    def _request(self, data: dict[str, str], client_id: str, client_secret: str | None) -> TokenSet:
        auth: tuple[str, str] | None = None
        if client_secret and self.auth_method == CLIENT_SECRET_BASIC:
            auth = (client_id, client_secret)
        else:
            data["client_id"] = client_id
            if client_secret:
                data["client_secret"] = client_secret

        grant_type = data["grant_type"]
        logger.info(f"Requesting tokens ({grant_type}) from {self.token_endpoint}")

        try:
            response = self.http_client.post(
                self.token_endpoint,
                data=data,
                auth=auth,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise TokenRequestFailed("transport_error", f"HTTP error during token request: {e}") from e

        received_at = self._clock()
        return self._parse_response(response, received_at)

    def _parse_response(self, response: httpx.Response, received_at: datetime) -> TokenSet:
        try:
            body = response.json()
        except ValueError as e:
            if response.is_error:
                raise TokenRequestFailed(
                    "token_error",
                    f"Token request failed with status {response.status_code}",
                ) from e
            raise TokenResponseMalformed(f"Token response is not JSON: {e}") from e

        if not isinstance(body, dict):
            if response.is_error:
                raise TokenRequestFailed("token_error", f"Token request failed with status {response.status_code}")
            raise TokenResponseMalformed("Token response is not a JSON object")

        if response.is_error or "error" in body:
            error_code = str(body.get("error") or "token_error")
            description = body.get("error_description") or (
                f"Token request failed with status {response.status_code}"
            )
            logger.warning(f"Token endpoint returned error: {error_code}")
            raise TokenRequestFailed(error_code, str(description))

        access_token = body.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise TokenResponseMalformed("Token response is missing 'access_token'")

        try:
            expires_in = int(body["expires_in"])
        except KeyError as e:
            raise TokenResponseMalformed("Token response is missing 'expires_in'") from e
        except (TypeError, ValueError, OverflowError) as e:
            raise TokenResponseMalformed(f"Invalid 'expires_in': {body['expires_in']!r}") from e

        try:
            expires_at = received_at + timedelta(seconds=expires_in)
        except OverflowError as e:
            raise TokenResponseMalformed(f"Invalid 'expires_in': {expires_in}") from e

        for name in ("refresh_token", "id_token"):
            value = body.get(name)
            if value is not None and (not isinstance(value, str) or not value):
                raise TokenResponseMalformed(f"Invalid '{name}' in token response")
        for name in ("token_type", "scope"):
            if name in body and not isinstance(body[name], str):
                raise TokenResponseMalformed(f"Invalid '{name}' in token response")

        return TokenSet(
            access_token=access_token,
            expires_at=expires_at,
            token_type=body.get("token_type", "Bearer"),
            refresh_token=body.get("refresh_token"),
            id_token=body.get("id_token"),
            scope=body.get("scope"),
            raw_response=body,
        )
