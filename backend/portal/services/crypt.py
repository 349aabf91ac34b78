"""Hashing and encryption helpers.

HMAC-SHA256 signs hold links and verifies Alma webhook payloads; Fernet
encrypts the library (catalog) password stored with a user account.
"""
import base64
import hashlib
import hmac
from functools import lru_cache
from typing import Any, Iterable, Mapping, Union

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from portal.config import settings

_KDF_SALT = b"portal-catalog-password"


def hmac_sha256(data: Union[str, bytes], key: Union[str, bytes]) -> bytes:
    """Raw HMAC-SHA256 digest."""
    if isinstance(data, str):
        data = data.encode()
    if isinstance(key, str):
        key = key.encode()
    return hmac.new(key, data, hashlib.sha256).digest()


def hmac_sha256_base64(data: Union[str, bytes], key: Union[str, bytes]) -> str:
    """Base64 encoded HMAC-SHA256, the form Alma puts in X-Exl-Signature."""
    return base64.b64encode(hmac_sha256(data, key)).decode()


def verify_signature(expected: str, given: str) -> bool:
    """Constant-time string comparison."""
    return hmac.compare_digest(expected.encode(), (given or "").encode())


def link_hash(keys: Iterable[str], params: Mapping[str, Any], key: str = None) -> str:
    """HMAC over the listed parameters of a request link.

    Missing parameters count as empty strings so that a link cannot be
    widened by dropping a key.
    """
    payload = "|".join(f"{k}={'' if params.get(k) is None else params.get(k)}" for k in keys)
    return hmac_sha256(payload, key or settings.HMAC_KEY).hex()


@lru_cache(maxsize=4)
def _fernet(secret: str) -> Fernet:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=_KDF_SALT,
        iterations=100000,
    )
    return Fernet(base64.urlsafe_b64encode(kdf.derive(secret.encode())))


def encrypt_secret(value: str, secret: str = None) -> str:
    """Encrypt a string with a key derived from ``secret``."""
    return _fernet(secret or settings.CATALOG_PASSWORD_KEY).encrypt(value.encode()).decode()


def decrypt_secret(token: str, secret: str = None) -> str:
    """Decrypt a value produced by :func:`encrypt_secret`.

    Raises:
        ValueError: if the token is corrupt or was made with another key
    """
    try:
        return _fernet(secret or settings.CATALOG_PASSWORD_KEY).decrypt(token.encode()).decode()
    except InvalidToken as e:
        raise ValueError("Unable to decrypt value") from e
