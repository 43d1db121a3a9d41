"""Protected resource access with a bearer token."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from oidcflow.core.errors import ResourceRequestFailed

logger = logging.getLogger(__name__)


class ResourceClient:
    """Fetches JSON resources using ``Authorization: Bearer``."""

    def __init__(self, http_client: httpx.Client) -> None:
        self.http_client = http_client

    def fetch(self, url: str, access_token: str) -> dict[str, Any]:
        """GET a JSON object from a protected resource.

        Args:
            url: Resource URL.
            access_token: Bearer token for authorization.

        Returns:
            The decoded JSON object.

        Raises:
            ResourceRequestFailed: On transport errors, non-2xx status, or a
                body that is not a JSON object.
        """
        try:
            response = self.http_client.get(
                url,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise ResourceRequestFailed(f"HTTP error fetching {url}: {e}") from e

        if response.is_error:
            detail = _error_detail(response)
            logger.warning(f"Resource request to {url} failed with status {response.status_code}")
            raise ResourceRequestFailed(
                f"Resource request failed with status {response.status_code}{detail}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise ResourceRequestFailed(f"Resource response is not JSON: {e}", response.status_code) from e
        if not isinstance(body, dict):
            raise ResourceRequestFailed("Resource response is not a JSON object", response.status_code)
        return body


def _error_detail(response: httpx.Response) -> str:
    # Bearer errors come back in WWW-Authenticate or as an OAuth2 JSON error
    challenge = response.headers.get("WWW-Authenticate")
    if challenge:
        return f" ({challenge})"
    try:
        body = response.json()
    except ValueError:
        return ""
    if isinstance(body, dict) and body.get("error"):
        description = body.get("error_description")
        return f" ({body['error']}: {description})" if description else f" ({body['error']})"
    return ""


@dataclass(frozen=True)
class UserInfo:
    """Claims returned by the user-info endpoint."""

    sub: str | None = None
    name: str | None = None
    given_name: str | None = None
    family_name: str | None = None
    email: str | None = None
    email_verified: bool | None = None
    locale: str | None = None

    # All claims
    claims: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> UserInfo:
        # Older provider APIs call the subject "user_id"
        return cls(
            sub=claims.get("sub") or claims.get("user_id"),
            name=claims.get("name"),
            given_name=claims.get("given_name"),
            family_name=claims.get("family_name"),
            email=claims.get("email"),
            email_verified=claims.get("email_verified"),
            locale=claims.get("locale"),
            claims=dict(claims),
        )


class UserInfoClient(ResourceClient):
    """Resource client bound to the provider's user-info endpoint."""

    def __init__(self, http_client: httpx.Client, userinfo_endpoint: str) -> None:
        super().__init__(http_client)
        self.userinfo_endpoint = userinfo_endpoint

    def get_userinfo(self, access_token: str) -> UserInfo:
        """Fetch user claims.

        Raises:
            ResourceRequestFailed: If the endpoint is not configured or the request fails.
        """
        if not self.userinfo_endpoint:
            raise ResourceRequestFailed("UserInfo endpoint not configured")
        return UserInfo.from_claims(self.fetch(self.userinfo_endpoint, access_token))
