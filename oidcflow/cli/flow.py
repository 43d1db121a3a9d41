"""Authorization Code flow CLI commands.

Each command runs one step of the flow against the configured provider, so a
login can be walked through by hand: ``authorize-url``, open it in a browser,
``callback`` with the redirect URL, ``exchange`` the code, then ``verify``.
"""

from __future__ import annotations

import secrets
import sys

import click

from oidcflow.core.config import AppConfig
from oidcflow.core.errors import IdTokenDecodeError, OIDCFlowError
from oidcflow.core.logging import LoggingClient, ProtocolLogger
from oidcflow.core.oidc.callback import AuthorizationDenied, CallbackParser
from oidcflow.core.oidc.decoder import decode_id_token
from oidcflow.core.oidc.request import AuthorizationRequestBuilder
from oidcflow.core.oidc.tokens import TokenExchangeClient, TokenSet
from oidcflow.core.oidc.userinfo import ResourceClient
from oidcflow.core.oidc.verification import IdTokenVerifier
from oidcflow.cli.output import error_result, json_option, output_result


def _config(ctx: click.Context) -> AppConfig:
    config: AppConfig = ctx.obj["config"]
    return config


def _http_client(ctx: click.Context) -> LoggingClient:
    config = _config(ctx)
    protocol_logger: ProtocolLogger = ctx.obj["protocol_logger"]
    return LoggingClient(
        protocol_logger=protocol_logger,
        verify=config.provider.verify_tls,
        timeout=config.provider.timeout,
    )


def _require(value: str | None, name: str, output_json: bool) -> str:
    if not value:
        error_result(f"{name} is not configured (see 'oidcflow config show')", output_json)
    return value


def _token_set_dict(token_set: TokenSet) -> dict[str, object]:
    return {
        "access_token": token_set.access_token,
        "token_type": token_set.token_type,
        "expires_at": token_set.expires_at.isoformat(),
        "refresh_token": token_set.refresh_token,
        "id_token": token_set.id_token,
        "scope": token_set.scope,
    }


@click.command("authorize-url")
@click.option("--state", help="State value (random if omitted)")
@click.option("--nonce", help="Nonce value (random if omitted)")
@click.option("--display", help="Display hint (default from config)")
@click.option("--prompt", "prompts", multiple=True, help="Prompt value, repeatable")
@click.option("--scope", "scopes", multiple=True, help="Scope, repeatable")
@json_option
@click.pass_context
def authorize_url(
    ctx: click.Context,
    state: str | None,
    nonce: str | None,
    display: str | None,
    prompts: tuple[str, ...],
    scopes: tuple[str, ...],
    output_json: bool,
) -> None:
    """Print the authorization URL to open in a browser."""
    config = _config(ctx)
    state = state or secrets.token_urlsafe(32)
    nonce = nonce or secrets.token_urlsafe(32)

    try:
        builder = AuthorizationRequestBuilder(
            config.provider.authorization_endpoint,
            config.client.client_id,
            config.client.redirect_uri,
        )
        url = builder.generate_authorization_uri(
            state=state,
            nonce=nonce,
            display=display or config.client.display,
            prompt=list(prompts) or config.client.prompt,
            scope=list(scopes) or config.client.scopes,
        )
    except ValueError as e:
        error_result(str(e), output_json)

    output_result({"authorization_url": url, "state": state, "nonce": nonce}, output_json)


@click.command("callback")
@click.argument("callback_url")
@click.option("--state", "expected_state", required=True, help="State sent with the authorization request")
@json_option
def callback(callback_url: str, expected_state: str, output_json: bool) -> None:
    """Parse a callback URL and check its state."""
    try:
        result = CallbackParser(expected_state).parse_uri(callback_url)
    except OIDCFlowError as e:
        error_result(str(e), output_json)

    if isinstance(result, AuthorizationDenied):
        output_result(
            {
                "result": "denied",
                "error": result.error_code,
                "error_description": result.error_description,
            },
            output_json,
        )
        sys.exit(1)

    output_result({"result": "granted", "code": result.code, "state": result.state}, output_json)


@click.command("exchange")
@click.argument("code")
@json_option
@click.pass_context
def exchange(ctx: click.Context, code: str, output_json: bool) -> None:
    """Exchange an authorization code for tokens."""
    config = _config(ctx)
    token_endpoint = _require(config.provider.token_endpoint, "Token endpoint", output_json)

    with _http_client(ctx) as http_client:
        client = TokenExchangeClient(
            token_endpoint,
            http_client,
            auth_method=config.provider.token_endpoint_auth_method,
        )
        try:
            token_set = client.exchange_code(
                code,
                config.client.client_id,
                config.client.client_secret,
                config.client.redirect_uri,
            )
        except OIDCFlowError as e:
            error_result(str(e), output_json)

    output_result(_token_set_dict(token_set), output_json)


@click.command("refresh")
@click.argument("refresh_token")
@json_option
@click.pass_context
def refresh(ctx: click.Context, refresh_token: str, output_json: bool) -> None:
    """Obtain new tokens with a refresh token."""
    config = _config(ctx)
    token_endpoint = _require(config.provider.token_endpoint, "Token endpoint", output_json)

    with _http_client(ctx) as http_client:
        client = TokenExchangeClient(
            token_endpoint,
            http_client,
            auth_method=config.provider.token_endpoint_auth_method,
        )
        try:
            token_set = client.exchange_refresh_token(
                refresh_token,
                config.client.client_id,
                config.client.client_secret,
            )
        except OIDCFlowError as e:
            error_result(str(e), output_json)

    output_result(_token_set_dict(token_set), output_json)


@click.command("decode")
@click.argument("id_token")
@json_option
def decode(id_token: str, output_json: bool) -> None:
    """Decode an ID token without verifying it."""
    try:
        decoded = decode_id_token(id_token)
    except IdTokenDecodeError as e:
        error_result(str(e), output_json)

    output_result({"header": decoded.header, "claims": decoded.claims.raw}, output_json)


@click.command("verify")
@click.argument("id_token")
@click.option("--nonce", help="Nonce sent with the authorization request")
@click.option("--key", help="Verification key (defaults to the client secret)")
@json_option
@click.pass_context
def verify(ctx: click.Context, id_token: str, nonce: str | None, key: str | None, output_json: bool) -> None:
    """Verify an ID token's issuer, audience, expiry, nonce and signature."""
    config = _config(ctx)
    verifier = IdTokenVerifier(
        issuer=config.provider.issuer,
        audience=config.client.client_id,
        key=key or config.client.client_secret,
        algorithms=config.provider.signing_algorithms,
    )
    try:
        outcome = verifier.verify_token(id_token, nonce)
    except IdTokenDecodeError as e:
        error_result(str(e), output_json)

    output_result(outcome.to_dict(), output_json)
    if not outcome.is_valid:
        sys.exit(1)


@click.command("userinfo")
@click.argument("access_token")
@click.option("--url", help="Resource URL (defaults to the userinfo endpoint)")
@json_option
@click.pass_context
def userinfo(ctx: click.Context, access_token: str, url: str | None, output_json: bool) -> None:
    """Fetch a protected resource with an access token."""
    config = _config(ctx)
    target = url or _require(config.provider.userinfo_endpoint, "UserInfo endpoint", output_json)

    with _http_client(ctx) as http_client:
        try:
            body = ResourceClient(http_client).fetch(target, access_token)
        except OIDCFlowError as e:
            error_result(str(e), output_json)

    output_result(body, output_json)
