"""Tests for the authorization code flow orchestrator."""

from collections.abc import Callable
from datetime import datetime
from urllib.parse import parse_qs

import httpx
import pytest

from oidcflow.core.errors import InvalidFlowState, VerificationError
from oidcflow.core.oidc.callback import AuthorizationDenied
from oidcflow.core.oidc.flows import AuthorizationCodeFlow, FlowStage


class FakeProvider:
    """MockTransport handler standing in for the token and user-info endpoints."""

    def __init__(self, id_token: str | None, refresh_token: str | None = "RT1") -> None:
        self.id_token = id_token
        self.refresh_token = refresh_token
        self.requests: list[httpx.Request] = []
        self.on_token_request: Callable[[], None] | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/token":
            if self.on_token_request:
                self.on_token_request()
            form = parse_qs(request.content.decode())
            if form["grant_type"] == ["refresh_token"]:
                return httpx.Response(200, json={"access_token": "AT2", "expires_in": 3600})
            body = {"access_token": "AT1", "token_type": "Bearer", "expires_in": 3600}
            if self.refresh_token:
                body["refresh_token"] = self.refresh_token
            if self.id_token:
                body["id_token"] = self.id_token
            return httpx.Response(200, json=body)
        if request.url.path == "/userinfo":
            if request.headers.get("Authorization") != "Bearer AT1":
                return httpx.Response(401, headers={"WWW-Authenticate": 'Bearer error="invalid_token"'})
            return httpx.Response(200, json={"sub": "alice", "name": "Alice"})
        return httpx.Response(404)

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]


@pytest.fixture
def make_flow(provider_config, client_config, mock_http, now: datetime):
    def factory(provider: FakeProvider, **kwargs) -> AuthorizationCodeFlow:
        return AuthorizationCodeFlow(
            provider_config,
            client_config,
            http_client=mock_http(provider),
            clock=lambda: now,
            **kwargs,
        )

    return factory


def _started(flow: AuthorizationCodeFlow) -> AuthorizationCodeFlow:
    flow.start(state="S1", nonce="N1")
    flow.authorization_url()
    return flow


class TestHappyPath:
    """A complete login against a well-behaved provider."""

    def test_end_to_end(self, make_flow, make_id_token) -> None:
        provider = FakeProvider(make_id_token())
        flow = make_flow(provider)

        built = flow.start(state="S1", nonce="N1")
        assert built.stage == FlowStage.BUILT

        url = flow.authorization_url()
        query = parse_qs(url.split("?", 1)[1])
        assert query["client_id"] == ["C1"]
        assert query["redirect_uri"] == ["https://app/cb"]
        assert query["state"] == ["S1"]
        assert query["nonce"] == ["N1"]
        assert query["response_type"] == ["code"]
        assert query["scope"] == ["openid profile"]
        assert flow.state.stage == FlowStage.AWAITING_CALLBACK

        state = flow.handle_callback("code=ABC&state=S1")
        assert state.stage == FlowStage.CODE_RECEIVED
        assert state.code == "ABC"

        state = flow.exchange_code()
        assert state.stage == FlowStage.TOKEN_RECEIVED
        assert state.token_set.access_token == "AT1"
        assert parse_qs(provider.requests[0].content.decode())["code"] == ["ABC"]

        state = flow.verify_id_token()
        assert state.stage == FlowStage.IDENTITY_VERIFIED
        assert state.verification.is_valid is True
        assert state.id_token.claims.subject == "alice"
        assert state.error is None

        state = flow.fetch_resource()
        assert state.stage == FlowStage.RESOURCE_FETCHED
        assert state.resource == {"sub": "alice", "name": "Alice"}
        assert flow.user_info.name == "Alice"

        state = flow.refresh_tokens()
        assert state.stage == FlowStage.RESOURCE_FETCHED
        assert state.token_set.access_token == "AT2"
        assert state.token_set.refresh_token == "RT1"
        assert state.id_token.claims.subject == "alice"

        assert provider.paths() == ["/token", "/userinfo", "/token"]

    def test_run_callback(self, make_flow, make_id_token) -> None:
        flow = _started(make_flow(FakeProvider(make_id_token())))
        state = flow.run_callback("?code=ABC&state=S1")
        assert state.stage == FlowStage.IDENTITY_VERIFIED

    def test_authorization_url_is_stable(self, make_flow, make_id_token) -> None:
        flow = make_flow(FakeProvider(make_id_token()))
        flow.start(state="S1", nonce="N1")
        assert flow.authorization_url() == flow.authorization_url()
        assert flow.state.stage == FlowStage.AWAITING_CALLBACK

    def test_overrides_configured_defaults(self, make_flow, make_id_token) -> None:
        flow = make_flow(FakeProvider(make_id_token()))
        flow.start(state="S1", nonce="N1", display="popup", prompt=["consent"], scope=["openid"])
        query = parse_qs(flow.authorization_url().split("?", 1)[1])
        assert query["display"] == ["popup"]
        assert query["prompt"] == ["consent"]
        assert query["scope"] == ["openid"]

    def test_fetch_resource_explicit_url(self, make_flow, make_id_token, provider_config) -> None:
        provider = FakeProvider(make_id_token())
        flow = _started(make_flow(provider))
        flow.run_callback("code=ABC&state=S1")

        state = flow.fetch_resource(f"{provider_config.issuer}/userinfo")
        assert state.stage == FlowStage.RESOURCE_FETCHED


class TestFailures:
    """Protocol failures end the flow in FAILED."""

    def test_denied_callback_skips_token_endpoint(self, make_flow, make_id_token) -> None:
        provider = FakeProvider(make_id_token())
        flow = _started(make_flow(provider))

        state = flow.run_callback("error=access_denied&error_description=user+cancelled&state=S1")

        assert state.stage == FlowStage.FAILED
        assert state.error == "AuthorizationDenied"
        assert "access_denied" in state.error_description
        assert isinstance(state.callback, AuthorizationDenied)
        assert provider.requests == []

    def test_state_mismatch(self, make_flow, make_id_token) -> None:
        provider = FakeProvider(make_id_token())
        flow = _started(make_flow(provider))

        state = flow.handle_callback("code=ABC&state=S2")

        assert state.failed is True
        assert state.error == "StateMismatch"
        assert state.code is None
        with pytest.raises(InvalidFlowState):
            flow.exchange_code()
        assert provider.requests == []

    def test_missing_code(self, make_flow, make_id_token) -> None:
        flow = _started(make_flow(FakeProvider(make_id_token())))
        assert flow.handle_callback("state=S1").error == "MissingAuthorizationCode"

    def test_token_error(self, mock_http, provider_config, client_config, now: datetime) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "invalid_grant"})

        flow = AuthorizationCodeFlow(provider_config, client_config, http_client=mock_http(handler), clock=lambda: now)
        _started(flow)

        state = flow.run_callback("code=ABC&state=S1")
        assert state.stage == FlowStage.FAILED
        assert state.error == "TokenRequestFailed"
        assert state.token_set is None

    @pytest.mark.parametrize(
        "body",
        [
            {"access_token": "AT1", "expires_in": 3600, "id_token": 123},
            {"access_token": "AT1", "expires_in": 10**15},
        ],
    )
    def test_malformed_token_response(
        self, mock_http, provider_config, client_config, now: datetime, body: dict
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=body)

        flow = AuthorizationCodeFlow(provider_config, client_config, http_client=mock_http(handler), clock=lambda: now)
        _started(flow)

        state = flow.run_callback("code=ABC&state=S1")
        assert state.stage == FlowStage.FAILED
        assert state.error == "TokenResponseMalformed"
        assert state.token_set is None

    def test_missing_id_token(self, make_flow) -> None:
        flow = _started(make_flow(FakeProvider(None)))
        state = flow.run_callback("code=ABC&state=S1")
        assert state.error == "TokenResponseMalformed"
        assert state.token_set is not None

    def test_undecodable_id_token(self, make_flow) -> None:
        flow = _started(make_flow(FakeProvider("not-a-jwt")))
        state = flow.run_callback("code=ABC&state=S1")
        assert state.error == "TokenFormatInvalid"

    def test_nonce_mismatch(self, make_flow, make_id_token) -> None:
        flow = _started(make_flow(FakeProvider(make_id_token(nonce="N2"))))
        state = flow.run_callback("code=ABC&state=S1")

        assert state.stage == FlowStage.FAILED
        assert state.error == VerificationError.NONCE_MISMATCH
        assert state.verification.is_valid is False
        assert state.id_token.claims.nonce == "N2"

    def test_signature_invalid(self, make_flow, make_id_token) -> None:
        token = make_id_token(key="another-secret-0123456789-abcdefghijklm")
        flow = _started(make_flow(FakeProvider(token)))
        assert flow.run_callback("code=ABC&state=S1").error == "SignatureInvalid"

    def test_custom_signing_key(self, make_flow, make_id_token) -> None:
        key = "separate-signing-key-0123456789-abcdefgh"
        flow = _started(make_flow(FakeProvider(make_id_token(key=key)), signing_key=key))
        assert flow.run_callback("code=ABC&state=S1").stage == FlowStage.IDENTITY_VERIFIED

    def test_resource_error(self, make_flow, make_id_token) -> None:
        flow = _started(make_flow(FakeProvider(make_id_token())))
        flow.run_callback("code=ABC&state=S1")

        state = flow.fetch_resource("https://auth.example.com/missing")
        assert state.stage == FlowStage.FAILED
        assert state.error == "ResourceRequestFailed"
        assert "404" in state.error_description


class TestStageOrdering:
    """Out-of-order use is a contract violation."""

    def test_state_before_start(self, make_flow) -> None:
        with pytest.raises(InvalidFlowState):
            make_flow(FakeProvider(None)).state

    def test_start_twice(self, make_flow) -> None:
        flow = make_flow(FakeProvider(None))
        flow.start(state="S1", nonce="N1")
        with pytest.raises(InvalidFlowState):
            flow.start(state="S1", nonce="N1")

    def test_step_before_start(self, make_flow) -> None:
        with pytest.raises(InvalidFlowState):
            make_flow(FakeProvider(None)).authorization_url()

    def test_callback_before_redirect(self, make_flow) -> None:
        flow = make_flow(FakeProvider(None))
        flow.start(state="S1", nonce="N1")
        with pytest.raises(InvalidFlowState):
            flow.handle_callback("code=ABC&state=S1")

    def test_verify_before_exchange(self, make_flow, make_id_token) -> None:
        flow = _started(make_flow(FakeProvider(make_id_token())))
        flow.handle_callback("code=ABC&state=S1")
        with pytest.raises(InvalidFlowState):
            flow.verify_id_token()

    def test_callback_accepted_once(self, make_flow, make_id_token) -> None:
        flow = _started(make_flow(FakeProvider(make_id_token())))
        flow.handle_callback("code=ABC&state=S1")
        with pytest.raises(InvalidFlowState):
            flow.handle_callback("code=ABC&state=S1")

    def test_fetch_resource_before_verification(self, make_flow, make_id_token) -> None:
        flow = _started(make_flow(FakeProvider(make_id_token())))
        flow.handle_callback("code=ABC&state=S1")
        flow.exchange_code()
        with pytest.raises(InvalidFlowState):
            flow.fetch_resource()

    def test_refresh_without_refresh_token(self, make_flow, make_id_token) -> None:
        flow = _started(make_flow(FakeProvider(make_id_token(), refresh_token=None)))
        flow.run_callback("code=ABC&state=S1")
        with pytest.raises(InvalidFlowState):
            flow.refresh_tokens()

    def test_refresh_before_verification(self, make_flow, make_id_token) -> None:
        provider = FakeProvider(make_id_token())
        flow = _started(make_flow(provider))
        flow.handle_callback("code=ABC&state=S1")
        flow.exchange_code()
        with pytest.raises(InvalidFlowState):
            flow.refresh_tokens()

        assert flow.state.stage == FlowStage.TOKEN_RECEIVED
        assert flow.verify_id_token().stage == FlowStage.IDENTITY_VERIFIED
        assert provider.paths() == ["/token"]

    def test_reentrant_call_rejected(self, make_flow, make_id_token) -> None:
        provider = FakeProvider(make_id_token())
        flow = _started(make_flow(provider))
        flow.handle_callback("code=ABC&state=S1")

        errors: list[Exception] = []

        def reenter() -> None:
            try:
                flow.exchange_code()
            except InvalidFlowState as e:
                errors.append(e)

        provider.on_token_request = reenter
        state = flow.exchange_code()

        assert len(errors) == 1
        assert state.stage == FlowStage.TOKEN_RECEIVED
        assert len(provider.requests) == 1


class TestFlowState:
    """Tests for FlowState snapshots."""

    def test_previous_states_unchanged(self, make_flow, make_id_token) -> None:
        flow = make_flow(FakeProvider(make_id_token()))
        built = flow.start(state="S1", nonce="N1")
        flow.authorization_url()
        received = flow.handle_callback("code=ABC&state=S1")
        flow.exchange_code()

        assert built.stage == FlowStage.BUILT
        assert built.authorization_url is None
        assert received.stage == FlowStage.CODE_RECEIVED
        assert received.token_set is None
        assert flow.state is not received

    def test_to_dict_redacts_secrets(self, make_flow, make_id_token) -> None:
        flow = _started(make_flow(FakeProvider(make_id_token())))
        state = flow.run_callback("code=ABC&state=S1")

        data = state.to_dict()
        assert data["stage"] == "identity_verified"
        assert data["callback"]["code"] == "[REDACTED]"
        assert data["tokens"]["access_token"] == "[REDACTED]"
        assert data["tokens"]["id_token"] == "[REDACTED]"
        assert data["id_token_claims"]["sub"] == "alice"
        assert data["verification"]["is_valid"] is True

        revealed = state.to_dict(include_sensitive=True)
        assert revealed["callback"]["code"] == "ABC"
        assert revealed["tokens"]["access_token"] == "AT1"

    def test_flow_ids_unique(self, make_flow) -> None:
        assert make_flow(FakeProvider(None)).flow_id != make_flow(FakeProvider(None)).flow_id
