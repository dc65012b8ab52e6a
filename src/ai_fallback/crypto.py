from __future__ import annotations

from cryptography.fernet import Fernet, InvalidToken


def generate_fernet_key() -> str:
    return Fernet.generate_key().decode("utf-8")


def _fernet(key_str: str) -> Fernet:
    try:
        return Fernet(key_str.encode("utf-8"))
    except ValueError as e:
        raise ValueError("CREDENTIALS_FERNET_KEY must be 32 url-safe base64-encoded bytes.") from e


def encrypt_bytes(key_str: str, data: bytes) -> bytes:
    return _fernet(key_str).encrypt(data)


def decrypt_bytes(key_str: str, token: bytes) -> bytes:
    try:
        return _fernet(key_str).decrypt(token)
    except InvalidToken as e:
        raise ValueError("Failed to decrypt provider keys (wrong key or corrupted file).") from e
