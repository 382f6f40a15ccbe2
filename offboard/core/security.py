"""Encryption at rest for tenant directory credentials."""

from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from offboard.config import get_settings


class CredentialEncryptionError(Exception):
    """Credentials could not be encrypted or decrypted with the configured keys."""


def generate_encryption_key() -> str:
    """New key for CREDENTIALS_ENCRYPTION_KEYS."""
    return Fernet.generate_key().decode()


@lru_cache
def get_cipher() -> MultiFernet:
    """Cipher built from the comma-separated CREDENTIALS_ENCRYPTION_KEYS.

    The first key encrypts and any listed key decrypts, so a key is rotated
    by putting the new one first and re-registering the tenants.
    """
    keys = [k.strip() for k in get_settings().credentials_encryption_keys.split(",") if k.strip()]
    if not keys:
        raise CredentialEncryptionError("CREDENTIALS_ENCRYPTION_KEYS is not set")
    try:
        return MultiFernet([Fernet(key) for key in keys])
    except ValueError as e:
        raise CredentialEncryptionError(f"Invalid credentials encryption key: {e}") from e


def encrypt_secret(value: str) -> str:
    return get_cipher().encrypt(value.encode()).decode()


def decrypt_secret(token: str) -> str:
    try:
        return get_cipher().decrypt(token.encode()).decode()
    except InvalidToken as e:
        raise CredentialEncryptionError("Stored credentials cannot be decrypted with the configured keys") from e
