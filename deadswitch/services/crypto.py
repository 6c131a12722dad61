"""
Fernet decryption of message bodies.

Message content is encrypted by the authoring side before it reaches this
service; here it is only opened at send time, never stored in the clear.
"""
from cryptography.fernet import Fernet, InvalidToken

from deadswitch.config import settings


def get_fernet(key: str | bytes | None = None) -> Fernet | None:
    key = key if key is not None else settings.encryption_key
    if not key:
        return None
    return Fernet(key.encode() if isinstance(key, str) else key)


def encrypt_value(value: str, key: str | bytes | None = None) -> str:
    if not value:
        return ""
    f = get_fernet(key)
    if f is None:
        return value  # dev: no key, content is stored as-is
    return f.encrypt(value.encode()).decode()


def decrypt_value(encrypted: str, key: str | bytes | None = None) -> str:
    """Plaintext, or "" when the token does not open with the configured key."""
    if not encrypted:
        return ""
    f = get_fernet(key)
    if f is None:
        return encrypted  # dev: no key
    try:
        return f.decrypt(encrypted.encode()).decode()
    except InvalidToken:
        return ""
