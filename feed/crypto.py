"""AES-GCM encryption of stored feed URLs."""
import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

KEY_LENGTH = 32  # bytes, AES-256
NONCE_LENGTH = 12


class DecryptionError(Exception):
    """Raised when a token cannot be decrypted with the given key."""


def _load_key(key_b64: str) -> AESGCM:
    try:
        key = base64.b64decode(key_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("Encryption key is not valid base64") from e

    if len(key) != KEY_LENGTH:
        raise ValueError(f"Encryption key must be {KEY_LENGTH} bytes")
    return AESGCM(key)


def encrypt(plaintext: str, key_b64: str) -> str:
    """
    Encrypt a string with a fresh random nonce.

    Returns:
        base64 of nonce followed by ciphertext and tag
    """
    nonce = os.urandom(NONCE_LENGTH)
    ciphertext = _load_key(key_b64).encrypt(nonce, plaintext.encode('utf-8'), None)
    return base64.b64encode(nonce + ciphertext).decode('ascii')


def decrypt(token: str, key_b64: str) -> str:
    """
    Decrypt a token produced by encrypt().

    Raises:
        DecryptionError: If the key or token is invalid or the token was tampered with
    """
    try:
        combined = base64.b64decode(token, validate=True)
        nonce, ciphertext = combined[:NONCE_LENGTH], combined[NONCE_LENGTH:]
        plaintext = _load_key(key_b64).decrypt(nonce, ciphertext, None)
        return plaintext.decode('utf-8')
    except (InvalidTag, binascii.Error, ValueError) as e:
        raise DecryptionError(type(e).__name__) from e
