"""oidcflow - OAuth2 Authorization Code flow client with OpenID Connect ID token verification."""

__version__ = "0.1.0"
