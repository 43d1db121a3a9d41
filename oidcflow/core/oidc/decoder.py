"""ID token decoding.

Splits a compact serialized ID token into its header, claims and signature
segments. This is structural extraction only: no claim is checked and the
signature is not verified here (see :mod:`oidcflow.core.oidc.verification`).
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from oidcflow.core.errors import TokenFormatInvalid, TokenSegmentInvalid

# Claims mapped onto IdTokenClaims attributes; everything else goes to ``extra``
_REGISTERED_CLAIMS = frozenset({"iss", "aud", "sub", "exp", "iat", "nonce"})


def encode_segment(data: bytes) -> str:
    """Encode bytes as unpadded base64url."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def decode_segment(segment: str) -> bytes:
    """Decode an unpadded (or padded) base64url segment.

    Raises:
        ValueError: If the segment contains characters outside the base64url
            alphabet or has an impossible length.
    """
    if "+" in segment or "/" in segment:
        raise ValueError("segment is not base64url")
    padded = segment + "=" * (-len(segment) % 4)
    try:
        return base64.b64decode(padded.replace("-", "+").replace("_", "/"), validate=True)
    except binascii.Error as e:
        raise ValueError(str(e)) from e


@dataclass(frozen=True)
class IdTokenClaims:
    """Claims carried by an ID token payload."""

    issuer: str | None = None
    audience: tuple[str, ...] = ()
    subject: str | None = None
    expiration: Any = None
    issued_at: Any = None
    nonce: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> IdTokenClaims:
        aud = payload.get("aud")
        if aud is None:
            audience: tuple[str, ...] = ()
        elif isinstance(aud, list):
            audience = tuple(str(a) for a in aud)
        else:
            audience = (str(aud),)

        return cls(
            issuer=payload.get("iss"),
            audience=audience,
            subject=payload.get("sub"),
            expiration=payload.get("exp"),
            issued_at=payload.get("iat"),
            nonce=payload.get("nonce"),
            extra={k: v for k, v in payload.items() if k not in _REGISTERED_CLAIMS},
            raw=dict(payload),
        )

    @property
    def expires_at(self) -> datetime | None:
        """Expiration as a UTC datetime, if ``exp`` is numeric."""
        if isinstance(self.expiration, (int, float)) and not isinstance(self.expiration, bool):
            return datetime.fromtimestamp(self.expiration, tz=UTC)
        return None

    @property
    def at_hash(self) -> str | None:
        return self.extra.get("at_hash")


@dataclass(frozen=True)
class DecodedIdToken:
    """The three segments of a compact ID token."""

    header: dict[str, Any]
    claims: IdTokenClaims
    signature: str
    raw: str = field(repr=False)

    @property
    def algorithm(self) -> str | None:
        return self.header.get("alg")

    @property
    def key_id(self) -> str | None:
        return self.header.get("kid")

    @property
    def signing_input(self) -> bytes:
        """The ``header.payload`` bytes covered by the signature."""
        header_segment, payload_segment, _ = self.raw.split(".")
        return f"{header_segment}.{payload_segment}".encode("ascii")


def _decode_json_segment(segment: str, name: str) -> dict[str, Any]:
    try:
        data = decode_segment(segment)
    except ValueError as e:
        raise TokenSegmentInvalid(name, f"not base64url ({e})") from e

    try:
        result = json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise TokenSegmentInvalid(name, f"not JSON ({e})") from e

    if not isinstance(result, dict):
        raise TokenSegmentInvalid(name, "not a JSON object")
    return result


class IdTokenDecoder:
    """Decodes compact ID tokens."""

    delimiter = "."

    def decode(self, token: str) -> DecodedIdToken:
        """Decode a compact ID token without verifying it.

        Args:
            token: The ``header.payload.signature`` string.

        Returns:
            DecodedIdToken with header, claims and the raw signature segment.

        Raises:
            TokenFormatInvalid: If the token does not have exactly three segments.
            TokenSegmentInvalid: If the header or payload is not base64url JSON.
        """
        parts = token.split(self.delimiter)
        if len(parts) != 3:
            raise TokenFormatInvalid(f"Expected 3 segments, got {len(parts)}")

        header = _decode_json_segment(parts[0], "header")
        payload = _decode_json_segment(parts[1], "payload")

        return DecodedIdToken(
            header=header,
            claims=IdTokenClaims.from_payload(payload),
            signature=parts[2],
            raw=token,
        )


def decode_id_token(token: str) -> DecodedIdToken:
    """Decode a compact ID token with the default decoder."""
    return IdTokenDecoder().decode(token)
