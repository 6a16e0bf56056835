"""Repository secret encryption."""

from __future__ import annotations

from base64 import b64encode

from nacl import encoding, public


def seal_secret(public_key: str, value: str) -> str:
    """Encrypt ``value`` for the provider's base64 Curve25519 ``public_key``.

    Uses a libsodium sealed box, the scheme GitHub requires for Actions
    secrets. The result is base64 text suitable for ``encrypted_value``.
    """
    key = public.PublicKey(public_key.encode("utf-8"), encoding.Base64Encoder())
    sealed = public.SealedBox(key).encrypt(value.encode("utf-8"))
    return b64encode(sealed).decode("utf-8")


__all__ = ["seal_secret"]
