"""ID token verification.

Runs the claim and signature checks that must all pass before a decoded
identity can be trusted. Checks run in a fixed order and stop at the first
failure:

1. Issuer (``iss``) equals the expected issuer
2. Audience (``aud``) contains the client id
3. Expiration (``exp``) is strictly in the future
4. Nonce equals the nonce sent with the authorization request
5. Signature over ``header.payload`` verifies with the configured key
"""

from __future__ import annotations

import hmac
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

import jwt
from jwt.algorithms import get_default_algorithms
from jwt.exceptions import InvalidKeyError, PyJWKError

from oidcflow.core.errors import VerificationError
from oidcflow.core.oidc.decoder import DecodedIdToken, IdTokenDecoder, decode_segment

logger = logging.getLogger(__name__)

DEFAULT_ALGORITHMS = ("HS256",)


@dataclass(frozen=True)
class VerificationOutcome:
    """Result of one verification call."""

    is_valid: bool
    error: VerificationError | None = None
    description: str = ""

    @classmethod
    def valid(cls) -> VerificationOutcome:
        return cls(is_valid=True, description="ID token is valid")

    @classmethod
    def invalid(cls, error: VerificationError, description: str) -> VerificationOutcome:
        return cls(is_valid=False, error=error, description=description)

    @property
    def error_code(self) -> str | None:
        return self.error.value if self.error else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "error": self.error_code,
            "description": self.description,
        }


def _strings_equal(expected: str | None, actual: Any) -> bool:
    if expected is None or not isinstance(actual, str):
        return expected is None and actual is None
    return hmac.compare_digest(expected.encode("utf-8"), actual.encode("utf-8"))


class IdTokenVerifier:
    """Verifies ID tokens issued to one client by one issuer."""

    def __init__(
        self,
        issuer: str,
        audience: str,
        key: Any,
        algorithms: Iterable[str] = DEFAULT_ALGORITHMS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the verifier.

        Args:
            issuer: Expected ``iss`` claim, fixed per deployment.
            audience: Expected audience, i.e. the client id.
            key: Verification key. A shared secret (str/bytes) for HMAC
                algorithms, a PEM string or ``cryptography`` public key for
                asymmetric ones, a JWK dict, or a JWKS dict (``{"keys": [...]}``)
                from which the key is selected by ``kid``.
            algorithms: Accepted signing algorithms. ``none`` is never accepted.
            clock: Returns the current time in epoch seconds.
        """
        self.issuer = issuer
        self.audience = audience
        self.key = key
        self.algorithms = frozenset(a for a in algorithms if a.lower() != "none")
        self._clock = clock

    def verify(self, token: DecodedIdToken, nonce: str | None) -> VerificationOutcome:
        """Verify a decoded ID token.

        Args:
            token: Output of :class:`IdTokenDecoder`, carrying the raw token.
            nonce: The nonce sent with the authorization request.

        Returns:
            VerificationOutcome; on failure it names the first failing check.
        """
        outcome = self._check(token, nonce)
        if outcome.is_valid:
            logger.info(f"ID token verified for subject {token.claims.subject!r}")
        else:
            logger.warning(f"ID token rejected: {outcome.error_code}: {outcome.description}")
        return outcome

    def verify_token(self, raw_token: str, nonce: str | None) -> VerificationOutcome:
        """Decode and verify a compact ID token.

        Raises:
            TokenFormatInvalid: If the token does not have three segments.
            TokenSegmentInvalid: If the header or payload cannot be decoded.
        """
        return self.verify(IdTokenDecoder().decode(raw_token), nonce)

    def _check(self, token: DecodedIdToken, nonce: str | None) -> VerificationOutcome:
        claims = token.claims

        if not _strings_equal(self.issuer, claims.issuer):
            return VerificationOutcome.invalid(
                VerificationError.ISSUER_MISMATCH,
                f"Issuer mismatch. Expected: {self.issuer}, Got: {claims.issuer}",
            )

        if self.audience not in claims.audience:
            return VerificationOutcome.invalid(
                VerificationError.AUDIENCE_MISMATCH,
                f"Audience {list(claims.audience)} does not include client {self.audience}",
            )

        exp = claims.expiration
        if not isinstance(exp, (int, float)) or isinstance(exp, bool):
            return VerificationOutcome.invalid(
                VerificationError.TOKEN_EXPIRED,
                "Expiration claim is missing or not numeric",
            )
        now = self._clock()
        if not now < exp:
            return VerificationOutcome.invalid(
                VerificationError.TOKEN_EXPIRED,
                f"Token expired at {exp} (now {int(now)})",
            )

        if not _strings_equal(nonce, claims.nonce):
            return VerificationOutcome.invalid(
                VerificationError.NONCE_MISMATCH,
                "Nonce in ID token does not match the authorization request",
            )

        return self._check_signature(token)

    def _check_signature(self, token: DecodedIdToken) -> VerificationOutcome:
        alg = token.algorithm
        if not alg or alg not in self.algorithms:
            return VerificationOutcome.invalid(
                VerificationError.SIGNATURE_INVALID,
                f"Signing algorithm {alg!r} is not accepted (allowed: {sorted(self.algorithms)})",
            )

        algorithm = get_default_algorithms().get(alg)
        if algorithm is None:
            return VerificationOutcome.invalid(
                VerificationError.SIGNATURE_INVALID,
                f"Signing algorithm {alg!r} is not supported",
            )

        try:
            signature = decode_segment(token.signature)
        except ValueError:
            return VerificationOutcome.invalid(
                VerificationError.SIGNATURE_INVALID,
                "Signature segment is not base64url",
            )

        try:
            prepared_key = self._prepare_key(algorithm, alg, token.key_id)
        except (InvalidKeyError, PyJWKError, ValueError, TypeError) as e:
            return VerificationOutcome.invalid(
                VerificationError.SIGNATURE_INVALID,
                f"Verification key is not usable with {alg}: {e}",
            )

        if not algorithm.verify(token.signing_input, prepared_key, signature):
            return VerificationOutcome.invalid(
                VerificationError.SIGNATURE_INVALID,
                "Signature verification failed - token may have been tampered with",
            )

        return VerificationOutcome.valid()

    def _prepare_key(self, algorithm: Any, alg: str, kid: str | None) -> Any:
        key = self.key
        if isinstance(key, dict) and "keys" in key:
            matches = [k for k in key["keys"] if isinstance(k, dict) and (kid is None or k.get("kid") == kid)]
            if not matches:
                raise ValueError(f"no key with kid {kid!r} in key set")
            key = matches[0]
        if isinstance(key, dict):
            return jwt.PyJWK(key, algorithm=alg).key
        return algorithm.prepare_key(key)


def verify_id_token(
    issuer: str,
    nonce: str | None,
    client_id: str,
    token: DecodedIdToken,
    key: Any,
    algorithms: Iterable[str] = DEFAULT_ALGORITHMS,
) -> VerificationOutcome:
    """Convenience function to verify a decoded ID token against the current time."""
    return IdTokenVerifier(issuer=issuer, audience=client_id, key=key, algorithms=algorithms).verify(token, nonce)
