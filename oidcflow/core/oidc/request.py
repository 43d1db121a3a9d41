"""Authorization request construction.

Builds the front-channel redirect URI that sends the end user to the
authorization endpoint. Nothing here touches the network.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

logger = logging.getLogger(__name__)


class ResponseType(StrEnum):
    """OAuth2 response types supported by the explicit flow."""

    CODE = "code"


class Display(StrEnum):
    """OIDC ``display`` hint for the provider's login UI."""

    DEFAULT = "default"
    PAGE = "page"
    POPUP = "popup"
    TOUCH = "touch"
    WAP = "wap"
    INAPP = "inapp"


class Prompt(StrEnum):
    """OIDC ``prompt`` values."""

    NONE = "none"
    LOGIN = "login"
    CONSENT = "consent"
    SELECT_ACCOUNT = "select_account"


def join_values(values: Iterable[str] | str | None) -> str | None:
    """Serialize a multi-valued parameter as a space-joined string.

    Order is preserved and duplicates are dropped. A plain string is taken
    as already serialized.

    Args:
        values: Values such as scopes or prompt options.

    Returns:
        The joined string, or None if there are no values.
    """
    if values is None:
        return None
    if isinstance(values, str):
        return values or None
    unique = list(dict.fromkeys(str(v) for v in values if v))
    return " ".join(unique) or None


@dataclass(frozen=True)
class AuthorizationRequest:
    """Parameters of one authorization request.

    ``state`` and ``nonce`` are transported as given. Leaving either out is
    allowed but removes CSRF (state) or replay (nonce) protection.
    """

    client_id: str
    redirect_uri: str
    state: str | None = None
    response_type: ResponseType = ResponseType.CODE
    display: Display | None = Display.DEFAULT
    prompt: tuple[Prompt, ...] = (Prompt.LOGIN,)
    scope: tuple[str, ...] = ()
    nonce: str | None = None

    def to_params(self) -> dict[str, str]:
        """Query parameters in wire order, omitting unset values."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "state": self.state,
            "response_type": str(self.response_type),
            "display": str(self.display) if self.display else None,
            "prompt": join_values(self.prompt),
            "scope": join_values(self.scope),
            "nonce": self.nonce,
        }
        return {k: v for k, v in params.items() if v}


class AuthorizationRequestBuilder:
    """Builds authorization endpoint URIs for a single client."""

    def __init__(self, authorization_endpoint: str, client_id: str, redirect_uri: str) -> None:
        """Initialize the builder.

        Args:
            authorization_endpoint: Absolute URL of the authorization endpoint.
            client_id: Registered client identifier.
            redirect_uri: Registered callback URI.

        Raises:
            ValueError: If any argument is empty.
        """
        if not authorization_endpoint:
            raise ValueError("authorization_endpoint is required")
        if not client_id:
            raise ValueError("client_id is required")
        if not redirect_uri:
            raise ValueError("redirect_uri is required")

        self.authorization_endpoint = authorization_endpoint
        self.client_id = client_id
        self.redirect_uri = redirect_uri

    def build_request(
        self,
        state: str | None = None,
        nonce: str | None = None,
        response_type: ResponseType | str = ResponseType.CODE,
        display: Display | str | None = Display.DEFAULT,
        prompt: Iterable[Prompt | str] | None = (Prompt.LOGIN,),
        scope: Iterable[str] | None = None,
    ) -> AuthorizationRequest:
        """Create an :class:`AuthorizationRequest` for this client.

        Raises:
            ValueError: If an enumerated value is not recognized.
        """
        if not state:
            logger.warning("Authorization request has no state; callback CSRF protection is disabled")
        if not nonce:
            logger.warning("Authorization request has no nonce; ID token replay protection is disabled")

        return AuthorizationRequest(
            client_id=self.client_id,
            redirect_uri=self.redirect_uri,
            state=state,
            response_type=ResponseType(response_type),
            display=Display(display) if display else None,
            prompt=tuple(Prompt(p) for p in prompt or ()),
            scope=tuple(scope or ()),
            nonce=nonce,
        )

    def build_uri(self, request: AuthorizationRequest) -> str:
        """Render the authorization URI for a request.

        Query parameters already present on the endpoint URL are kept.
        """
        scheme, netloc, path, query, fragment = urlsplit(self.authorization_endpoint)
        params = parse_qsl(query, keep_blank_values=True)
        params.extend(request.to_params().items())
        return urlunsplit((scheme, netloc, path, urlencode(params), fragment))

    def generate_authorization_uri(self, **kwargs) -> str:
        """Build a request from keyword arguments and render its URI in one step."""
        return self.build_uri(self.build_request(**kwargs))
