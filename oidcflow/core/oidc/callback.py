"""Authorization callback parsing.

Turns the redirect-back query string into either a granted code or a
provider denial, checking the anti-CSRF ``state`` before the code is
released to the caller.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from urllib.parse import parse_qs, urlsplit

from oidcflow.core.errors import (
    MissingAuthorizationCode,
    MissingCallbackParameters,
    MissingState,
    StateMismatch,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthorizationGranted:
    """The provider issued an authorization code."""

    code: str
    state: str | None


@dataclass(frozen=True)
class AuthorizationDenied:
    """The provider returned an OAuth2 error to the callback."""

    error_code: str
    error_description: str | None = None


CallbackResult = AuthorizationGranted | AuthorizationDenied


def _first(params: dict[str, list[str]], name: str) -> str | None:
    values = params.get(name)
    return values[0] if values else None


def _parse_query(query: str | None) -> dict[str, list[str]]:
    if query and query.startswith("?"):
        query = query[1:]
    if not query:
        raise MissingCallbackParameters("Callback URI has no query parameters")
    params = parse_qs(query, keep_blank_values=False)
    if not params:
        raise MissingCallbackParameters("Callback URI has no query parameters")
    return params


def states_match(expected: str, received: str) -> bool:
    """Compare two state values in constant time."""
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))


class CallbackParser:
    """Parses callbacks for one flow's expected ``state``."""

    def __init__(self, expected_state: str | None) -> None:
        """Initialize the parser.

        Args:
            expected_state: The state value sent in the authorization request.
                None means no state was sent and no CSRF check is possible.
        """
        self.expected_state = expected_state

    def parse(self, query: str | None) -> CallbackResult:
        """Parse a callback query string.

        Args:
            query: Query portion of the callback URI (a leading ``?`` is allowed).

        Returns:
            AuthorizationGranted on success, AuthorizationDenied if the
            provider reported an error.

        Raises:
            MissingCallbackParameters: If the query string is empty.
            MissingAuthorizationCode: If there is no ``code`` parameter.
            MissingState: If there is no ``state`` parameter.
            StateMismatch: If ``state`` differs from the expected value.
        """
        params = _parse_query(query)

        error = _first(params, "error")
        if error:
            description = _first(params, "error_description")
            logger.info(f"Authorization denied by provider: {error}")
            return AuthorizationDenied(error_code=error, error_description=description)

        code = _first(params, "code")
        if not code:
            raise MissingAuthorizationCode("Callback is missing the 'code' parameter")

        state = _first(params, "state")
        if self.expected_state is None:
            logger.warning("No state was sent with the authorization request; skipping CSRF check")
            return AuthorizationGranted(code=code, state=state)

        if not state:
            raise MissingState("Callback is missing the 'state' parameter")

        if not states_match(self.expected_state, state):
            logger.warning("Callback state does not match the authorization request (possible CSRF)")
            raise StateMismatch("Callback state does not match the authorization request")

        return AuthorizationGranted(code=code, state=state)

    def parse_uri(self, uri: str) -> CallbackResult:
        """Parse a full callback URI (e.g. ``https://app/cb?code=abc&state=xyz``)."""
        return self.parse(urlsplit(uri).query)


def has_authorization_code(query: str | None) -> bool:
    """Report whether a callback query string carries a ``code``.

    No state validation is performed; use :class:`CallbackParser` before
    acting on the code.
    """
    if query and query.startswith("?"):
        query = query[1:]
    if not query:
        return False
    return bool(_first(parse_qs(query), "code"))
