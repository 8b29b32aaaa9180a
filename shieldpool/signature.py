"""Ed25519 signatures over field sequences.

Uses PyNaCl (libsodium) as the primary backend, with fallback to
the cryptography package if PyNaCl is unavailable. Signatures travel as
base64 strings; the signed message is always ``field_bytes(fields)``, so
records, deposit intents and relay orders sign identically on every backend.
"""

from __future__ import annotations

import base64
import binascii
import functools
from typing import Sequence

from .crypto import field_bytes


class _NaclBackend:
    name = "nacl"

    def __init__(self) -> None:
        from nacl.exceptions import BadSignatureError
        from nacl.signing import SigningKey, VerifyKey

        self._signing_key = SigningKey
        self._verify_key = VerifyKey
        self.errors = (BadSignatureError, ValueError, TypeError)

    def generate(self) -> bytes:
        return bytes(self._signing_key.generate())

    def public_key(self, private_key: bytes) -> bytes:
        return bytes(self._signing_key(private_key).verify_key)

    def sign(self, private_key: bytes, message: bytes) -> bytes:
        return self._signing_key(private_key).sign(message).signature

    def verify(self, public_key: bytes, message: bytes, signature: bytes) -> None:
        self._verify_key(public_key).verify(message, signature)


class _CryptographyBackend:
    name = "cryptography"

    def __init__(self) -> None:
        from cryptography.exceptions import InvalidSignature
        from cryptography.hazmat.primitives.asymmetric.ed25519 import (
            Ed25519PrivateKey,
            Ed25519PublicKey,
        )
        from cryptography.hazmat.primitives.serialization import (
            Encoding,
            NoEncryption,
            PrivateFormat,
            PublicFormat,
        )

        self._private = Ed25519PrivateKey
        self._public = Ed25519PublicKey
        self._raw = (Encoding.Raw, PrivateFormat.Raw, PublicFormat.Raw, NoEncryption)
        self.errors = (InvalidSignature, ValueError, TypeError)

    def generate(self) -> bytes:
        raw, private_format, _, no_encryption = self._raw
        return self._private.generate().private_bytes(raw, private_format, no_encryption())

    def public_key(self, private_key: bytes) -> bytes:
        raw, _, public_format, _ = self._raw
        key = self._private.from_private_bytes(private_key)
        return key.public_key().public_bytes(raw, public_format)

    def sign(self, private_key: bytes, message: bytes) -> bytes:
        return self._private.from_private_bytes(private_key).sign(message)

    def verify(self, public_key: bytes, message: bytes, signature: bytes) -> None:
        self._public.from_public_bytes(public_key).verify(signature, message)


@functools.lru_cache(maxsize=None)
def _backend():
    """The best available Ed25519 backend, chosen once."""
    for backend_cls in (_NaclBackend, _CryptographyBackend):
        try:
            return backend_cls()
        except ImportError:
            continue
    raise ImportError(
        "Ed25519 signatures require 'PyNaCl' or 'cryptography'. "
        "Install with: pip install PyNaCl"
    )


def generate_keypair() -> tuple[bytes, bytes]:
    """Generate an Ed25519 keypair.

    Returns (private_key_bytes, public_key_bytes), both 32 bytes.
    """
    private_key = _backend().generate()
    return private_key, public_key_of(private_key)


def public_key_of(private_key: bytes) -> bytes:
    """Derive the 32-byte public key for a private key."""
    return _backend().public_key(private_key)


def sign_fields(fields: Sequence[int], private_key: bytes) -> str:
    """Sign a field sequence. Returns the base64 signature."""
    sig = _backend().sign(private_key, field_bytes(fields))
    return base64.b64encode(sig).decode("ascii")


def verify_signature(public_key: bytes, fields: Sequence[int], signature: str | None) -> bool:
    """Verify a base64 Ed25519 signature by ``public_key`` over ``fields``.

    Malformed keys, messages or signatures verify as False rather than raising.
    """
    backend = _backend()
    if not signature:
        return False
    try:
        message = field_bytes(fields)
        sig = base64.b64decode(signature, validate=True)
    except (ValueError, TypeError, binascii.Error):
        return False
    try:
        backend.verify(public_key, message, sig)
    except backend.errors:
        return False
    return True
