import base64

import pytest
from cryptography.hazmat.primitives.asymmetric import ec

from barbershop_api.services.push.keys import MalformedKeyError, VapidKeyPair, b64url_decode


def test_from_raw_splits_coordinates(vapid_keys) -> None:
    pair = VapidKeyPair.from_raw(vapid_keys.public_key, vapid_keys.private_key)

    public_raw = b64url_decode(vapid_keys.public_key)
    assert b64url_decode(pair.x) == public_raw[1:33]
    assert b64url_decode(pair.y) == public_raw[33:]
    assert b64url_decode(pair.d) == b64url_decode(vapid_keys.private_key)
    assert pair.public_key == vapid_keys.public_key
    assert "=" not in pair.x + pair.y + pair.d


def test_jwk_shape(vapid_keys) -> None:
    jwk = VapidKeyPair.from_raw(vapid_keys.public_key, vapid_keys.private_key).to_jwk()

    assert jwk["kty"] == "EC"
    assert jwk["crv"] == "P-256"
    assert set(jwk) == {"kty", "crv", "x", "y", "d"}


def test_private_key_round_trips_to_same_public_point(vapid_keys) -> None:
    pair = VapidKeyPair.from_raw(vapid_keys.public_key, vapid_keys.private_key)

    key = pair.private_key()

    assert isinstance(key, ec.EllipticCurvePrivateKey)
    numbers = key.public_key().public_numbers()
    assert numbers.x.to_bytes(32, "big") == b64url_decode(pair.x)
    assert numbers.y.to_bytes(32, "big") == b64url_decode(pair.y)


def test_padded_input_is_accepted(vapid_keys) -> None:
    padded_public = base64.urlsafe_b64encode(b64url_decode(vapid_keys.public_key)).decode()

    pair = VapidKeyPair.from_raw(padded_public, vapid_keys.private_key)

    assert pair.public_key == vapid_keys.public_key


@pytest.mark.parametrize(
    "public_key, private_key",
    [
        ("", "AAAA"),
        ("not base64 at all!", "AAAA"),
        (base64.urlsafe_b64encode(b"\x04" + b"\x01" * 10).decode(), "AAAA"),
    ],
)
def test_malformed_public_key_rejected(public_key: str, private_key: str) -> None:
    with pytest.raises(MalformedKeyError):
        VapidKeyPair.from_raw(public_key, private_key)


def test_compressed_point_prefix_rejected(vapid_keys) -> None:
    raw = bytearray(b64url_decode(vapid_keys.public_key))
    raw[0] = 0x02
    tampered = base64.urlsafe_b64encode(bytes(raw)).rstrip(b"=").decode()

    with pytest.raises(MalformedKeyError):
        VapidKeyPair.from_raw(tampered, vapid_keys.private_key)


def test_short_private_key_rejected(vapid_keys) -> None:
    short = base64.urlsafe_b64encode(b"\x01" * 31).rstrip(b"=").decode()

    with pytest.raises(MalformedKeyError):
        VapidKeyPair.from_raw(vapid_keys.public_key, short)


def test_mismatched_pair_rejected_when_building_key(vapid_keys, key_factory) -> None:
    other = key_factory()
    pair = VapidKeyPair.from_raw(vapid_keys.public_key, other.private_key)

    with pytest.raises(MalformedKeyError):
        pair.private_key()
