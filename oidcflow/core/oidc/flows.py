"""Authorization Code flow orchestration.

Sequences the flow steps for a single login:

1. Build the authorization request (BUILT)
2. Redirect the user to the provider (AWAITING_CALLBACK)
3. Parse the callback and check ``state`` (CODE_RECEIVED)
4. Exchange the code for tokens (TOKEN_RECEIVED)
5. Decode and verify the ID token (IDENTITY_VERIFIED)
6. Optionally fetch a protected resource (RESOURCE_FETCHED)

Each step replaces the immutable :class:`FlowState` with a new one. Protocol
failures move the flow to FAILED and are reported on the state; calling a
step out of order raises :class:`InvalidFlowState`.
"""

from __future__ import annotations

import logging
import secrets
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import httpx

from oidcflow.core.config import ClientConfig, ProviderConfig
from oidcflow.core.errors import (
    IdTokenDecodeError,
    InvalidFlowState,
    OIDCFlowError,
    TokenResponseMalformed,
)
from oidcflow.core.logging import LoggingClient, ProtocolLog, ProtocolLogger
from oidcflow.core.oidc.callback import (
    AuthorizationDenied,
    AuthorizationGranted,
    CallbackParser,
    CallbackResult,
)
from oidcflow.core.oidc.decoder import DecodedIdToken, IdTokenDecoder
from oidcflow.core.oidc.request import AuthorizationRequest, AuthorizationRequestBuilder
from oidcflow.core.oidc.tokens import TokenExchangeClient, TokenSet
from oidcflow.core.oidc.userinfo import ResourceClient, UserInfo
from oidcflow.core.oidc.verification import IdTokenVerifier, VerificationOutcome

logger = logging.getLogger(__name__)

AUTHORIZATION_DENIED = "AuthorizationDenied"


class FlowStage(StrEnum):
    """Stage of an authorization code flow. Stages only move forward."""

    BUILT = "built"
    AWAITING_CALLBACK = "awaiting_callback"
    CODE_RECEIVED = "code_received"
    TOKEN_RECEIVED = "token_received"
    IDENTITY_VERIFIED = "identity_verified"
    RESOURCE_FETCHED = "resource_fetched"
    FAILED = "failed"


@dataclass(frozen=True)
class FlowState:
    """Snapshot of one flow. Replaced, never mutated."""

    flow_id: str
    stage: FlowStage
    expected_state: str | None
    expected_nonce: str | None
    authorization_request: AuthorizationRequest
    authorization_url: str | None = None
    callback: CallbackResult | None = None
    token_set: TokenSet | None = None
    id_token: DecodedIdToken | None = None
    verification: VerificationOutcome | None = None
    resource: dict[str, Any] | None = None

    error: str | None = None
    error_description: str | None = None

    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def failed(self) -> bool:
        return self.stage == FlowStage.FAILED

    @property
    def code(self) -> str | None:
        """The authorization code, once a callback has been accepted."""
        if isinstance(self.callback, AuthorizationGranted):
            return self.callback.code
        return None

    def to_dict(self, include_sensitive: bool = False) -> dict[str, Any]:
        """Summarize the state for display or JSON output.

        Tokens and the authorization code are masked unless ``include_sensitive``.
        """

        def secret(value: str | None) -> str | None:
            if value is None or include_sensitive:
                return value
            return "[REDACTED]"

        callback: dict[str, Any] | None = None
        if isinstance(self.callback, AuthorizationGranted):
            callback = {"result": "granted", "code": secret(self.callback.code), "state": self.callback.state}
        elif isinstance(self.callback, AuthorizationDenied):
            callback = {
                "result": "denied",
                "error": self.callback.error_code,
                "error_description": self.callback.error_description,
            }

        tokens: dict[str, Any] | None = None
        if self.token_set:
            tokens = {
                "access_token": secret(self.token_set.access_token),
                "token_type": self.token_set.token_type,
                "expires_at": self.token_set.expires_at.isoformat(),
                "refresh_token": secret(self.token_set.refresh_token),
                "id_token": secret(self.token_set.id_token),
                "scope": self.token_set.scope,
            }

        return {
            "flow_id": self.flow_id,
            "stage": self.stage.value,
            "authorization_url": self.authorization_url,
            "callback": callback,
            "tokens": tokens,
            "id_token_header": self.id_token.header if self.id_token else None,
            "id_token_claims": self.id_token.claims.raw if self.id_token else None,
            "verification": self.verification.to_dict() if self.verification else None,
            "resource": self.resource,
            "error": self.error,
            "error_description": self.error_description,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class AuthorizationCodeFlow:
    """Drives one Authorization Code login from request to verified identity.

    One instance per login. Instances are not re-entrant: a step called while
    another is running raises InvalidFlowState.
    """

    def __init__(
        self,
        provider: ProviderConfig,
        client: ClientConfig,
        http_client: httpx.Client | None = None,
        protocol_logger: ProtocolLogger | None = None,
        signing_key: Any = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the flow.

        Args:
            provider: Provider endpoints, issuer and transport settings.
            client: Client credentials and request defaults.
            http_client: HTTP client to use. If omitted, a LoggingClient is
                created from the provider's TLS and timeout settings and is
                closed by :meth:`close`.
            protocol_logger: Protocol logger for the created client.
            signing_key: ID token verification key. Defaults to the client
                secret (HMAC-signed ID tokens).
            clock: Returns the current UTC time; used for token expiry and
                ID token verification.

        Raises:
            ValueError: If client id, redirect URI or authorization endpoint are missing.
        """
        self.provider = provider
        self.client = client
        self.flow_id = f"oidc_flow_{secrets.token_hex(16)}"
        self.protocol_log = ProtocolLog(flow_id=self.flow_id)
        self._clock = clock or (lambda: datetime.now(UTC))

        self._owns_http_client = http_client is None
        if http_client is None:
            http_client = LoggingClient(
                protocol_logger=protocol_logger,
                protocol_log=self.protocol_log,
                verify=provider.verify_tls,
                timeout=provider.timeout,
            )
        self.http_client = http_client

        self.request_builder = AuthorizationRequestBuilder(
            provider.authorization_endpoint,
            client.client_id,
            client.redirect_uri,
        )
        self.token_client = TokenExchangeClient(
            provider.token_endpoint,
            http_client,
            auth_method=provider.token_endpoint_auth_method,
            clock=self._clock,
        )
        self.resource_client = ResourceClient(http_client)
        self.decoder = IdTokenDecoder()
        self.verifier = IdTokenVerifier(
            issuer=provider.issuer,
            audience=client.client_id,
            key=signing_key if signing_key is not None else client.client_secret,
            algorithms=provider.signing_algorithms,
            clock=lambda: self._clock().timestamp(),
        )

        self._state: FlowState | None = None
        self._lock = threading.Lock()

    def __enter__(self) -> AuthorizationCodeFlow:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        """Close the HTTP client if this flow created it."""
        if self.protocol_log.completed_at is None:
            self.protocol_log.complete()
        if self._owns_http_client:
            self.http_client.close()

    @property
    def state(self) -> FlowState:
        """The current flow state.

        Raises:
            InvalidFlowState: If :meth:`start` has not been called.
        """
        if self._state is None:
            raise InvalidFlowState("Flow has not been started")
        return self._state

    @property
    def user_info(self) -> UserInfo | None:
        """User-info claims, if the fetched resource was the user-info endpoint."""
        if self._state is None or self._state.resource is None:
            return None
        return UserInfo.from_claims(self._state.resource)

    @contextmanager
    def _step(self, name: str, *allowed: FlowStage) -> Iterator[FlowState]:
        if not self._lock.acquire(blocking=False):
            raise InvalidFlowState(f"Cannot run '{name}' while another step is in progress")
        try:
            current = self.state
            if current.stage not in allowed:
                expected = ", ".join(s.value for s in allowed)
                raise InvalidFlowState(f"Cannot run '{name}' in stage '{current.stage}' (expected: {expected})")
            yield current
        finally:
            self._lock.release()

    def _transition(self, new_state: FlowState) -> FlowState:
        logger.info(f"Flow {self.flow_id}: {new_state.stage}")
        self._state = new_state
        return new_state

    def _fail(self, current: FlowState, error: str, description: str, **changes: Any) -> FlowState:
        logger.warning(f"Flow {self.flow_id} failed: {error}: {description}")
        self.protocol_log.complete()
        return self._transition(
            replace(
                current,
                stage=FlowStage.FAILED,
                error=error,
                error_description=description,
                completed_at=self._clock(),
                **changes,
            )
        )

    def start(
        self,
        state: str | None,
        nonce: str | None,
        display: str | None = None,
        prompt: list[str] | None = None,
        scope: list[str] | None = None,
    ) -> FlowState:
        """Build the authorization request.

        ``state`` and ``nonce`` must be unpredictable per flow; they are not
        generated here. Passing None for either is allowed but disables the
        corresponding protection.

        Args:
            state: Anti-CSRF value echoed back on the callback.
            nonce: Replay-protection value expected in the ID token.
            display: Overrides the configured display hint.
            prompt: Overrides the configured prompt values.
            scope: Overrides the configured scopes.

        Returns:
            FlowState in stage BUILT.

        Raises:
            InvalidFlowState: If the flow was already started.
        """
        if not self._lock.acquire(blocking=False):
            raise InvalidFlowState("Cannot run 'start' while another step is in progress")
        try:
            if self._state is not None:
                raise InvalidFlowState("Flow has already been started")

            request = self.request_builder.build_request(
                state=state,
                nonce=nonce,
                display=display if display is not None else self.client.display,
                prompt=prompt if prompt is not None else self.client.prompt,
                scope=scope if scope is not None else self.client.scopes,
            )
            return self._transition(
                FlowState(
                    flow_id=self.flow_id,
                    stage=FlowStage.BUILT,
                    expected_state=state,
                    expected_nonce=nonce,
                    authorization_request=request,
                    started_at=self._clock(),
                )
            )
        finally:
            self._lock.release()

    def authorization_url(self) -> str:
        """Render the authorization URI and wait for the callback.

        Returns:
            URL to redirect the user's browser to.
        """
        with self._step("authorization_url", FlowStage.BUILT, FlowStage.AWAITING_CALLBACK) as current:
            url = current.authorization_url or self.request_builder.build_uri(current.authorization_request)
            if current.stage == FlowStage.BUILT:
                self._transition(replace(current, stage=FlowStage.AWAITING_CALLBACK, authorization_url=url))
            return url

    def handle_callback(self, query: str | None) -> FlowState:
        """Accept the callback query string.

        Returns:
            FlowState in CODE_RECEIVED, or FAILED if the provider denied the
            request or the callback did not pass validation.
        """
        with self._step("handle_callback", FlowStage.AWAITING_CALLBACK) as current:
            parser = CallbackParser(current.expected_state)
            try:
                result = parser.parse(query)
            except OIDCFlowError as e:
                return self._fail(current, e.code, e.description)

            if isinstance(result, AuthorizationDenied):
                description = result.error_code
                if result.error_description:
                    description = f"{result.error_code}: {result.error_description}"
                return self._fail(current, AUTHORIZATION_DENIED, description, callback=result)

            return self._transition(replace(current, stage=FlowStage.CODE_RECEIVED, callback=result))

    def exchange_code(self) -> FlowState:
        """Exchange the received code at the token endpoint.

        Returns:
            FlowState in TOKEN_RECEIVED, or FAILED.
        """
        with self._step("exchange_code", FlowStage.CODE_RECEIVED) as current:
            try:
                token_set = self.token_client.exchange_code(
                    code=current.code or "",
                    client_id=self.client.client_id,
                    client_secret=self.client.client_secret,
                    redirect_uri=self.client.redirect_uri,
                )
            except OIDCFlowError as e:
                return self._fail(current, e.code, e.description)

            return self._transition(replace(current, stage=FlowStage.TOKEN_RECEIVED, token_set=token_set))

    def verify_id_token(self) -> FlowState:
        """Decode the ID token and run every verification check.

        Returns:
            FlowState in IDENTITY_VERIFIED, or FAILED with the first failing check.
        """
        with self._step("verify_id_token", FlowStage.TOKEN_RECEIVED) as current:
            raw = current.token_set.id_token if current.token_set else None
            if not raw:
                error = TokenResponseMalformed("Token response did not include an id_token")
                return self._fail(current, error.code, error.description)

            try:
                decoded = self.decoder.decode(raw)
            except IdTokenDecodeError as e:
                return self._fail(current, e.code, e.description)

            outcome = self.verifier.verify(decoded, current.expected_nonce)
            if not outcome.is_valid:
                return self._fail(
                    current,
                    outcome.error_code or "VerificationFailed",
                    outcome.description,
                    id_token=decoded,
                    verification=outcome,
                )

            return self._transition(
                replace(
                    current,
                    stage=FlowStage.IDENTITY_VERIFIED,
                    id_token=decoded,
                    verification=outcome,
                    completed_at=self._clock(),
                )
            )

    def run_callback(self, query: str | None) -> FlowState:
        """Handle the callback, exchange the code and verify the ID token.

        Stops at the first failing step.
        """
        state = self.handle_callback(query)
        if state.failed:
            return state
        state = self.exchange_code()
        if state.failed:
            return state
        return self.verify_id_token()

    def fetch_resource(self, url: str | None = None) -> FlowState:
        """Fetch a protected resource with the access token.

        Args:
            url: Resource URL. Defaults to the provider's user-info endpoint.

        Returns:
            FlowState in RESOURCE_FETCHED, or FAILED.
        """
        with self._step("fetch_resource", FlowStage.IDENTITY_VERIFIED, FlowStage.RESOURCE_FETCHED) as current:
            target = url or self.provider.userinfo_endpoint
            if not target:
                raise InvalidFlowState("No resource URL given and no userinfo endpoint configured")
            if current.token_set is None:
                raise InvalidFlowState("Flow has no token set")
            try:
                body = self.resource_client.fetch(target, current.token_set.access_token)
            except OIDCFlowError as e:
                return self._fail(current, e.code, e.description)

            return self._transition(replace(current, stage=FlowStage.RESOURCE_FETCHED, resource=body))

    def refresh_tokens(self) -> FlowState:
        """Replace the token set using the refresh token.

        The stage does not change; the identity verified from the original
        ID token is kept.

        Raises:
            InvalidFlowState: If the ID token has not been verified yet or there
                is no refresh token.
        """
        with self._step("refresh_tokens", FlowStage.IDENTITY_VERIFIED, FlowStage.RESOURCE_FETCHED) as current:
            if current.token_set is None or not current.token_set.refresh_token:
                raise InvalidFlowState("Token set has no refresh token")
            try:
                token_set = self.token_client.exchange_refresh_token(
                    refresh_token=current.token_set.refresh_token,
                    client_id=self.client.client_id,
                    client_secret=self.client.client_secret,
                )
            except OIDCFlowError as e:
                return self._fail(current, e.code, e.description)

            return self._transition(replace(current, token_set=token_set))
