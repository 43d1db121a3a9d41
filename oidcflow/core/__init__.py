"""Core flow, configuration and logging."""

from oidcflow.core.errors import (
    CallbackError,
    IdTokenDecodeError,
    InvalidFlowState,
    MissingAuthorizationCode,
    MissingCallbackParameters,
    MissingState,
    OIDCFlowError,
    ResourceRequestFailed,
    StateMismatch,
    TokenError,
    TokenFormatInvalid,
    TokenRequestFailed,
    TokenResponseMalformed,
    TokenSegmentInvalid,
    VerificationError,
)
from oidcflow.core.logging import (
    HTTPExchange,
    LoggingClient,
    LogLevel,
    ProtocolLog,
    ProtocolLogger,
    configure_logging,
    redact_sensitive,
)

__all__ = [
    # Errors
    "CallbackError",
    "IdTokenDecodeError",
    "InvalidFlowState",
    "MissingAuthorizationCode",
    "MissingCallbackParameters",
    "MissingState",
    "OIDCFlowError",
    "ResourceRequestFailed",
    "StateMismatch",
    "TokenError",
    "TokenFormatInvalid",
    "TokenRequestFailed",
    "TokenResponseMalformed",
    "TokenSegmentInvalid",
    "VerificationError",
    # Logging
    "HTTPExchange",
    "LoggingClient",
    "LogLevel",
    "ProtocolLog",
    "ProtocolLogger",
    "configure_logging",
    "redact_sensitive",
]
