"""
Access token encryption.

Tokens are stored as urlsafe-base64(iv || AES-256-CFB(token)), keyed by the
32-byte TOKEN_ENC_KEY environment variable.
"""

import base64
import os

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .errors import TokenCipherError

TOKEN_KEY_ENV = "TOKEN_ENC_KEY"
IV_SIZE = 16


def load_token_key(key: str | None = None) -> bytes:
    """
    Return the raw AES key.

    Args:
        key: Explicit key; defaults to the TOKEN_ENC_KEY environment variable

    Raises:
        TokenCipherError: If the key is missing or not exactly 32 bytes
    """
    raw = (key if key is not None else os.environ.get(TOKEN_KEY_ENV, "")).encode(
        "utf-8"
    )
    if len(raw) != 32:
        raise TokenCipherError(f"{TOKEN_KEY_ENV} must be 32 bytes")
    return raw


def encrypt_token(plaintext: str, key: str | None = None) -> str:
    aes_key = load_token_key(key)
    iv = os.urandom(IV_SIZE)
    encryptor = Cipher(algorithms.AES(aes_key), modes.CFB(iv)).encryptor()
    ciphertext = encryptor.update(plaintext.encode("utf-8")) + encryptor.finalize()
    return base64.urlsafe_b64encode(iv + ciphertext).decode("ascii")


def decrypt_token(blob: str, key: str | None = None) -> str:
    """
    Decrypt a stored access token.

    Raises:
        TokenCipherError: If the key is invalid or the blob is malformed
    """
    aes_key = load_token_key(key)
    try:
        data = base64.urlsafe_b64decode(blob + "=" * (-len(blob) % 4))
    except (ValueError, TypeError) as e:
        raise TokenCipherError("access token is not valid base64") from e
    if len(data) < IV_SIZE:
        raise TokenCipherError("access token ciphertext too short")

    decryptor = Cipher(algorithms.AES(aes_key), modes.CFB(data[:IV_SIZE])).decryptor()
    plaintext = decryptor.update(data[IV_SIZE:]) + decryptor.finalize()
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise TokenCipherError("access token did not decrypt to text") from e
