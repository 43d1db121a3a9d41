"""OIDC Authorization Code flow components."""

from oidcflow.core.oidc.callback import (
    AuthorizationDenied,
    AuthorizationGranted,
    CallbackParser,
    CallbackResult,
    has_authorization_code,
)
from oidcflow.core.oidc.decoder import (
    DecodedIdToken,
    IdTokenClaims,
    IdTokenDecoder,
    decode_id_token,
    encode_segment,
)
from oidcflow.core.oidc.flows import (
    AuthorizationCodeFlow,
    FlowStage,
    FlowState,
)
from oidcflow.core.oidc.request import (
    AuthorizationRequest,
    AuthorizationRequestBuilder,
    Display,
    Prompt,
    ResponseType,
    join_values,
)
from oidcflow.core.oidc.tokens import (
    TokenExchangeClient,
    TokenSet,
)
from oidcflow.core.oidc.userinfo import (
    ResourceClient,
    UserInfo,
    UserInfoClient,
)
from oidcflow.core.oidc.verification import (
    IdTokenVerifier,
    VerificationOutcome,
    verify_id_token,
)

__all__ = [
    # Request
    "AuthorizationRequest",
    "AuthorizationRequestBuilder",
    "Display",
    "Prompt",
    "ResponseType",
    "join_values",
    # Callback
    "AuthorizationDenied",
    "AuthorizationGranted",
    "CallbackParser",
    "CallbackResult",
    "has_authorization_code",
    # Tokens
    "TokenExchangeClient",
    "TokenSet",
    # Decoding
    "DecodedIdToken",
    "IdTokenClaims",
    "IdTokenDecoder",
    "decode_id_token",
    "encode_segment",
    # Verification
    "IdTokenVerifier",
    "VerificationOutcome",
    "verify_id_token",
    # Resources
    "ResourceClient",
    "UserInfo",
    "UserInfoClient",
    # Flows
    "AuthorizationCodeFlow",
    "FlowStage",
    "FlowState",
]
