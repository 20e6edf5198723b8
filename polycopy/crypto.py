"""
Symmetric encryption of managed-account private keys.

Format (compatible with existing databases): "<iv hex>:<ciphertext hex>",
AES-256-CBC with PKCS7 padding, key = SHA-256(BOT_SECRET).
"""

import hashlib
import os
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from polycopy.errors import DecryptionError, MissingSecretError

_IV_SIZE = 16


def _derive_key(secret: Optional[str]) -> bytes:
    if not secret:
        raise MissingSecretError("Missing BOT_SECRET env variable")
    return hashlib.sha256(secret.encode("utf-8")).digest()


def encrypt(text: str, secret: Optional[str]) -> str:
    key = _derive_key(secret)
    iv = os.urandom(_IV_SIZE)

    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(text.encode("utf-8")) + padder.finalize()

    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    encrypted = encryptor.update(padded) + encryptor.finalize()

    return f"{iv.hex()}:{encrypted.hex()}"


def decrypt(payload: str, secret: Optional[str]) -> str:
    """
    Decrypt an "<iv>:<ciphertext>" payload.

    Raises:
        MissingSecretError: BOT_SECRET not set
        DecryptionError: malformed payload or wrong secret
    """
    key = _derive_key(secret)

    try:
        iv_hex, encrypted_hex = payload.split(":")
        iv = bytes.fromhex(iv_hex)
        encrypted = bytes.fromhex(encrypted_hex)
    except (AttributeError, ValueError) as e:
        raise DecryptionError(f"Malformed encrypted key: {e}") from e

    if len(iv) != _IV_SIZE or not encrypted or len(encrypted) % _IV_SIZE:
        raise DecryptionError("Malformed encrypted key: bad iv or ciphertext length")

    try:
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(encrypted) + decryptor.finalize()

        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        plain = unpadder.update(padded) + unpadder.finalize()
        return plain.decode("utf-8")
    except ValueError as e:
        # Bad padding / invalid utf-8: almost always a wrong BOT_SECRET
        raise DecryptionError(f"Failed to decrypt private key: {e}") from e
