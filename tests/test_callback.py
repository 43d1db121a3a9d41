"""Tests for callback parsing."""

import pytest

from oidcflow.core.errors import (
    MissingAuthorizationCode,
    MissingCallbackParameters,
    MissingState,
    StateMismatch,
)
from oidcflow.core.oidc.callback import (
    AuthorizationDenied,
    AuthorizationGranted,
    CallbackParser,
    has_authorization_code,
)


class TestCallbackParser:
    """Tests for CallbackParser."""

    def test_granted(self) -> None:
        result = CallbackParser("S1").parse("code=ABC&state=S1")
        assert result == AuthorizationGranted(code="ABC", state="S1")

    def test_leading_question_mark(self) -> None:
        result = CallbackParser("S1").parse("?code=ABC&state=S1")
        assert result == AuthorizationGranted(code="ABC", state="S1")

    def test_parse_uri(self) -> None:
        result = CallbackParser("S1").parse_uri("https://app/cb?code=ABC&state=S1")
        assert result == AuthorizationGranted(code="ABC", state="S1")

    def test_denied(self) -> None:
        """Provider errors are returned verbatim (form-decoded)."""
        result = CallbackParser("S1").parse("error=access_denied&error_description=user+cancelled")
        assert result == AuthorizationDenied(error_code="access_denied", error_description="user cancelled")

    def test_denied_without_description(self) -> None:
        result = CallbackParser("S1").parse("error=login_required&state=S1")
        assert isinstance(result, AuthorizationDenied)
        assert result.error_description is None

    def test_error_takes_precedence_over_code(self) -> None:
        result = CallbackParser("S1").parse("error=server_error&code=ABC&state=S1")
        assert isinstance(result, AuthorizationDenied)

    @pytest.mark.parametrize("query", [None, "", "?"])
    def test_missing_parameters(self, query: str | None) -> None:
        with pytest.raises(MissingCallbackParameters) as exc_info:
            CallbackParser("S1").parse(query)
        assert exc_info.value.code == "MissingCallbackParameters"

    def test_missing_code(self) -> None:
        with pytest.raises(MissingAuthorizationCode):
            CallbackParser("S1").parse("state=S1")

    def test_empty_code(self) -> None:
        with pytest.raises(MissingAuthorizationCode):
            CallbackParser("S1").parse("code=&state=S1")

    def test_missing_state(self) -> None:
        with pytest.raises(MissingState):
            CallbackParser("S1").parse("code=ABC")

    @pytest.mark.parametrize(
        ("expected", "received"),
        [
            ("S1", "S2"),
            ("S1", "s1"),
            ("S1", "S1 "),
            ("S1", "S10"),
            ("abc", "ab"),
            ("state-é", "state-e"),
        ],
    )
    def test_state_mismatch(self, expected: str, received: str) -> None:
        with pytest.raises(StateMismatch) as exc_info:
            CallbackParser(expected).parse(f"code=ABC&state={received}")
        assert exc_info.value.code == "StateMismatch"

    def test_idempotent(self) -> None:
        parser = CallbackParser("S1")
        assert parser.parse("code=ABC&state=S1") == parser.parse("code=ABC&state=S1")

    def test_no_expected_state_skips_check(self) -> None:
        result = CallbackParser(None).parse("code=ABC")
        assert result == AuthorizationGranted(code="ABC", state=None)


class TestHasAuthorizationCode:
    """Tests for has_authorization_code."""

    def test_present(self) -> None:
        assert has_authorization_code("code=ABC&state=whatever") is True

    def test_absent(self) -> None:
        assert has_authorization_code("error=access_denied") is False
        assert has_authorization_code("") is False
        assert has_authorization_code(None) is False
