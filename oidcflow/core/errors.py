"""Error taxonomy for the authorization code flow.

Protocol failures raised by the flow components carry a stable ``code`` and a
human-readable ``description``. Contract violations (calling flow steps in
the wrong order) raise :class:`InvalidFlowState`, which is a ``RuntimeError``
and is never caught by this package.
"""

from __future__ import annotations

from enum import StrEnum


class OIDCFlowError(Exception):
    """Base class for protocol-level failures."""

    code: str = "OIDCFlowError"

    def __init__(self, description: str = "", code: str | None = None) -> None:
        if code is not None:
            self.code = code
        self.description = description or self.code
        super().__init__(self.description)

    def __str__(self) -> str:
        return f"{self.code}: {self.description}"


# Callback errors


class CallbackError(OIDCFlowError):
    """Raised when the redirect-back query string cannot be accepted."""


class MissingCallbackParameters(CallbackError):
    code = "MissingCallbackParameters"


class MissingAuthorizationCode(CallbackError):
    code = "MissingAuthorizationCode"


class MissingState(CallbackError):
    code = "MissingState"


class StateMismatch(CallbackError):
    code = "StateMismatch"


# Token endpoint errors


class TokenError(OIDCFlowError):
    """Raised when the token endpoint round trip fails."""


class TokenRequestFailed(TokenError):
    """The provider (or the transport) reported an OAuth2 error."""

    code = "TokenRequestFailed"

    def __init__(self, error_code: str, error_description: str | None = None) -> None:
        self.error_code = error_code
        self.error_description = error_description
        super().__init__(
            f"{error_code}: {error_description}" if error_description else error_code,
        )


class TokenResponseMalformed(TokenError):
    code = "TokenResponseMalformed"


# ID token decoding errors


class IdTokenDecodeError(OIDCFlowError):
    """Raised when a compact ID token cannot be split or decoded."""


class TokenFormatInvalid(IdTokenDecodeError):
    code = "TokenFormatInvalid"


class TokenSegmentInvalid(IdTokenDecodeError):
    code = "TokenSegmentInvalid"

    def __init__(self, segment: str, reason: str) -> None:
        self.segment = segment
        super().__init__(f"Invalid {segment} segment: {reason}")


class VerificationError(StrEnum):
    """Reasons an ID token verification fails.

    These are reported on a VerificationOutcome rather than raised.
    """

    ISSUER_MISMATCH = "IssuerMismatch"
    AUDIENCE_MISMATCH = "AudienceMismatch"
    TOKEN_EXPIRED = "TokenExpired"
    NONCE_MISMATCH = "NonceMismatch"
    SIGNATURE_INVALID = "SignatureInvalid"


# Resource endpoint errors


class ResourceRequestFailed(OIDCFlowError):
    code = "ResourceRequestFailed"

    def __init__(self, description: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(description)


class InvalidFlowState(RuntimeError):
    """A flow step was called out of order, after failure, or re-entrantly."""
