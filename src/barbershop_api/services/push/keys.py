"""VAPID key material: raw P-256 bytes to a structured signing key.

The VAPID secrets are stored the way browsers and ``web-push generate-vapid-keys``
emit them: the public key as the 65-byte uncompressed point (``0x04 || X || Y``)
and the private key as the bare 32-byte scalar, both base64url encoded. Signing
needs a structured EC key, so the coordinates are split out here and re-encoded
independently (the JWK layout of RFC 7518 section 6.2).
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass

from cryptography.hazmat.primitives.asymmetric import ec

P256_COORDINATE_LENGTH = 32
P256_PUBLIC_KEY_LENGTH = 1 + 2 * P256_COORDINATE_LENGTH
UNCOMPRESSED_POINT_PREFIX = 0x04


class MalformedKeyError(ValueError):
    """Raised when VAPID key material cannot be turned into a P-256 key pair."""


def b64url_decode(value: str) -> bytes:
    value = value.strip()
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _jwk_int(value: str) -> int:
    return int.from_bytes(b64url_decode(value), "big")


def _decode(label: str, value: str, expected_length: int) -> bytes:
    if not value:
        raise MalformedKeyError(f"VAPID {label} key is empty")
    try:
        raw = b64url_decode(value)
    except (binascii.Error, ValueError, UnicodeEncodeError) as exc:
        raise MalformedKeyError(f"VAPID {label} key is not valid base64url") from exc
    if len(raw) != expected_length:
        raise MalformedKeyError(
            f"VAPID {label} key must decode to {expected_length} bytes, got {len(raw)}"
        )
    return raw


@dataclass(frozen=True, slots=True)
class VapidKeyPair:
    """P-256 key pair with each component base64url encoded on its own."""

    x: str
    y: str
    d: str
    public_key: str

    @classmethod
    def from_raw(cls, public_key: str, private_key: str) -> "VapidKeyPair":
        public_raw = _decode("public", public_key, P256_PUBLIC_KEY_LENGTH)
        if public_raw[0] != UNCOMPRESSED_POINT_PREFIX:
            raise MalformedKeyError("VAPID public key is not an uncompressed P-256 point")
        private_raw = _decode("private", private_key, P256_COORDINATE_LENGTH)

        x_raw = public_raw[1 : 1 + P256_COORDINATE_LENGTH]
        y_raw = public_raw[1 + P256_COORDINATE_LENGTH :]
        return cls(
            x=b64url_encode(x_raw),
            y=b64url_encode(y_raw),
            d=b64url_encode(private_raw),
            public_key=b64url_encode(public_raw),
        )

    def to_jwk(self) -> dict[str, str]:
        return {"kty": "EC", "crv": "P-256", "x": self.x, "y": self.y, "d": self.d}

    def private_key(self) -> ec.EllipticCurvePrivateKey:
        """Build the signing key from the JWK, checking that the public point belongs to ``d``."""

        jwk = self.to_jwk()
        public_numbers = ec.EllipticCurvePublicNumbers(
            _jwk_int(jwk["x"]),
            _jwk_int(jwk["y"]),
            ec.SECP256R1(),
        )
        private_numbers = ec.EllipticCurvePrivateNumbers(
            _jwk_int(jwk["d"]),
            public_numbers,
        )
        try:
            return private_numbers.private_key()
        except ValueError as exc:
            raise MalformedKeyError("VAPID public and private keys do not form a P-256 key pair") from exc


__all__ = ["MalformedKeyError", "VapidKeyPair", "b64url_decode", "b64url_encode"]
