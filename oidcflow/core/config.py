"""Client and provider configuration.

Loads configuration from a config.yaml file and environment variables.
Environment variables take precedence over config file settings.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".oidcflow"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

ENV_PREFIX = "OIDCFLOW_"

# Token endpoint client authentication methods
CLIENT_SECRET_BASIC = "client_secret_basic"
CLIENT_SECRET_POST = "client_secret_post"


@dataclass
class ProviderConfig:
    """Endpoints and transport settings for one authorization server."""

    issuer: str = ""
    authorization_endpoint: str = ""
    token_endpoint: str = ""
    userinfo_endpoint: str = ""

    # Passed to the HTTP client at construction; there is no global toggle
    verify_tls: bool = True
    timeout: float = 30.0

    token_endpoint_auth_method: str = CLIENT_SECRET_BASIC
    signing_algorithms: list[str] = field(default_factory=lambda: ["HS256"])

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderConfig:
        """Create ProviderConfig from a dictionary, starting from a preset if named."""
        base = PROVIDER_PRESETS[data["preset"]].to_dict() if data.get("preset") else {}
        merged = {**base, **{k: v for k, v in data.items() if k != "preset"}}
        return cls(
            issuer=merged.get("issuer", ""),
            authorization_endpoint=merged.get("authorization_endpoint", ""),
            token_endpoint=merged.get("token_endpoint", ""),
            userinfo_endpoint=merged.get("userinfo_endpoint", ""),
            verify_tls=merged.get("verify_tls", True),
            timeout=float(merged.get("timeout", 30.0)),
            token_endpoint_auth_method=merged.get("token_endpoint_auth_method", CLIENT_SECRET_BASIC),
            signing_algorithms=list(merged.get("signing_algorithms", ["HS256"])),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "issuer": self.issuer,
            "authorization_endpoint": self.authorization_endpoint,
            "token_endpoint": self.token_endpoint,
            "userinfo_endpoint": self.userinfo_endpoint,
            "verify_tls": self.verify_tls,
            "timeout": self.timeout,
            "token_endpoint_auth_method": self.token_endpoint_auth_method,
            "signing_algorithms": list(self.signing_algorithms),
        }


@dataclass
class ClientConfig:
    """Registered client credentials and authorization request defaults."""

    client_id: str = ""
    client_secret: str | None = None
    redirect_uri: str = ""
    scopes: list[str] = field(default_factory=lambda: ["openid"])
    display: str = "default"
    prompt: list[str] = field(default_factory=lambda: ["login"])

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClientConfig:
        """Create ClientConfig from a dictionary."""
        return cls(
            client_id=data.get("client_id", ""),
            client_secret=data.get("client_secret"),
            redirect_uri=data.get("redirect_uri", ""),
            scopes=list(data.get("scopes", ["openid"])),
            display=data.get("display", "default"),
            prompt=list(data.get("prompt", ["login"])),
        )

    def to_dict(self, include_secret: bool = False) -> dict[str, Any]:
        return {
            "client_id": self.client_id,
            "client_secret": self.client_secret if include_secret else None,
            "redirect_uri": self.redirect_uri,
            "scopes": list(self.scopes),
            "display": self.display,
            "prompt": list(self.prompt),
        }


# Endpoints of the Yahoo! JAPAN YConnect v1 explicit flow
YAHOO_JAPAN = ProviderConfig(
    issuer="https://auth.login.yahoo.co.jp",
    authorization_endpoint="https://auth.login.yahoo.co.jp/yconnect/v1/authorization",
    token_endpoint="https://auth.login.yahoo.co.jp/yconnect/v1/token",
    userinfo_endpoint="https://userinfo.yahooapis.jp/yconnect/v1/attribute",
)

PROVIDER_PRESETS: dict[str, ProviderConfig] = {
    "yahoo_japan": YAHOO_JAPAN,
}


@dataclass
class AppConfig:
    """Main configuration."""

    provider: ProviderConfig = field(default_factory=ProviderConfig)
    client: ClientConfig = field(default_factory=ClientConfig)
    config_path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], config_path: Path | None = None) -> AppConfig:
        """Create AppConfig from a dictionary."""
        return cls(
            provider=ProviderConfig.from_dict(data.get("provider") or {}),
            client=ClientConfig.from_dict(data.get("client") or {}),
            config_path=config_path,
        )

    def to_dict(self, include_secret: bool = False) -> dict[str, Any]:
        return {
            "provider": self.provider.to_dict(),
            "client": self.client.to_dict(include_secret=include_secret),
        }

    def save(self, path: Path | None = None) -> Path:
        """Save configuration to a YAML file.

        The client secret is written only if present, since the file is the
        usual place to keep it for command line use.

        Args:
            path: Path to save to. Uses config_path or default if not specified.

        Returns:
            The path written.
        """
        save_path = path or self.config_path or DEFAULT_CONFIG_FILE
        save_path.parent.mkdir(parents=True, exist_ok=True)

        with open(save_path, "w") as f:
            yaml.safe_dump(self.to_dict(include_secret=True), f, default_flow_style=False, sort_keys=False)
        return save_path


def _get_env_bool(key: str, default: bool) -> bool:
    """Get a boolean from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _get_env_float(key: str, default: float) -> float:
    """Get a float from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring invalid {key}={value!r}")
        return default


def _get_env_list(key: str, default: list[str]) -> list[str]:
    """Get a space or comma separated list from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    return [item for item in value.replace(",", " ").split() if item]


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load configuration.

    Configuration is loaded in this order (later values override earlier):
    1. Default values
    2. config.yaml file (if exists)
    3. Environment variables

    Args:
        config_path: Path to config file. Uses default if not specified.

    Returns:
        AppConfig with merged settings.

    Raises:
        ValueError: If the config file exists but is not valid YAML or names
            an unknown provider preset.
    """
    config = AppConfig()

    file_path = config_path or Path(os.environ.get(f"{ENV_PREFIX}CONFIG", DEFAULT_CONFIG_FILE))
    if file_path.exists():
        try:
            with open(file_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid config file {file_path}: {e}") from e
        try:
            config = AppConfig.from_dict(data, config_path=file_path)
        except KeyError as e:
            raise ValueError(f"Unknown provider preset in {file_path}: {e}") from e

    provider = config.provider
    preset = os.environ.get(f"{ENV_PREFIX}PRESET")
    if preset:
        if preset not in PROVIDER_PRESETS:
            raise ValueError(f"Unknown provider preset: {preset}")
        provider = config.provider = ProviderConfig.from_dict({"preset": preset})

    for attr in ("issuer", "authorization_endpoint", "token_endpoint", "userinfo_endpoint"):
        value = os.environ.get(f"{ENV_PREFIX}{attr.upper()}")
        if value:
            setattr(provider, attr, value)

    provider.verify_tls = _get_env_bool(f"{ENV_PREFIX}VERIFY_TLS", provider.verify_tls)
    provider.timeout = _get_env_float(f"{ENV_PREFIX}TIMEOUT", provider.timeout)
    provider.signing_algorithms = _get_env_list(f"{ENV_PREFIX}SIGNING_ALGORITHMS", provider.signing_algorithms)
    if os.environ.get(f"{ENV_PREFIX}TOKEN_ENDPOINT_AUTH_METHOD"):
        provider.token_endpoint_auth_method = os.environ[f"{ENV_PREFIX}TOKEN_ENDPOINT_AUTH_METHOD"]

    client = config.client
    for attr in ("client_id", "client_secret", "redirect_uri", "display"):
        value = os.environ.get(f"{ENV_PREFIX}{attr.upper()}")
        if value:
            setattr(client, attr, value)
    client.scopes = _get_env_list(f"{ENV_PREFIX}SCOPES", client.scopes)
    client.prompt = _get_env_list(f"{ENV_PREFIX}PROMPT", client.prompt)

    if not provider.verify_tls:
        logger.warning("TLS certificate verification is disabled for provider requests")

    return config


def get_default_config_yaml() -> str:
    """Get the default config.yaml content as a string.

    Useful for generating example configuration files.
    """
    return """\
# oidcflow configuration file
# Environment variables override these settings (prefix: OIDCFLOW_)

provider:
  # Start from a built-in preset (yahoo_japan) and override below,
  # or leave it out and set every endpoint explicitly
  preset: yahoo_japan

  # Expected "iss" claim of ID tokens
  # issuer: "https://auth.login.yahoo.co.jp"

  # authorization_endpoint: "https://auth.login.yahoo.co.jp/yconnect/v1/authorization"
  # token_endpoint: "https://auth.login.yahoo.co.jp/yconnect/v1/token"
  # userinfo_endpoint: "https://userinfo.yahooapis.jp/yconnect/v1/attribute"

  # Verify the provider's TLS certificate (disable only against test servers)
  verify_tls: true

  # HTTP timeout in seconds
  timeout: 30

  # client_secret_basic or client_secret_post
  token_endpoint_auth_method: client_secret_basic

  # Accepted ID token signing algorithms
  signing_algorithms:
    - HS256

client:
  client_id: ""
  # client_secret: ""
  redirect_uri: ""
  scopes:
    - openid
  display: default
  prompt:
    - login
"""
