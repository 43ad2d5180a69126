"""
Billing Token Encryption
========================

AES-256-GCM encryption for gateway billing tokens with HKDF key derivation.
Supports key versioning, AAD binding, and dual-decrypt fallback for
SECRET_KEY rotation.

Stored format: ``v{version}:{b64 iv}:{b64 ciphertext+tag}``.
"""

from __future__ import annotations

import base64
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

CURRENT_KEY_VERSION = 1


def _derive_encryption_key(secret_key: str, key_version: int = CURRENT_KEY_VERSION) -> bytes:
    """Derive a 256-bit encryption key from SECRET_KEY using HKDF."""
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=f"kickpay-billing-keys-v{key_version}".encode(),
        info=b"billing-token-encryption",
    )
    return hkdf.derive(secret_key.encode())


def _build_aad(user_id: str, card_name: str) -> bytes:
    """Bind ciphertext to its card row so it cannot be swapped between rows."""
    return f"{user_id}:{card_name}".encode()


def encrypt_billing_token(
    token: str,
    secret_key: str,
    user_id: str,
    card_name: str,
    key_version: int = CURRENT_KEY_VERSION,
) -> str:
    aesgcm = AESGCM(_derive_encryption_key(secret_key, key_version))
    iv = os.urandom(12)  # 96-bit nonce
    sealed = aesgcm.encrypt(iv, token.encode(), _build_aad(user_id, card_name))
    return "v{}:{}:{}".format(
        key_version,
        base64.b64encode(iv).decode(),
        base64.b64encode(sealed).decode(),
    )


def decrypt_billing_token(stored: str, secret_key: str, user_id: str, card_name: str) -> str:
    """Decrypt a stored billing token. user_id and card_name must match encryption."""
    version, iv_b64, sealed_b64 = stored.split(":", 2)
    key_version = int(version.lstrip("v"))
    aesgcm = AESGCM(_derive_encryption_key(secret_key, key_version))
    plaintext = aesgcm.decrypt(
        base64.b64decode(iv_b64),
        base64.b64decode(sealed_b64),
        _build_aad(user_id, card_name),
    )
    return plaintext.decode()


def decrypt_with_fallback(
    stored: str,
    current_secret: str,
    previous_secret: Optional[str],
    user_id: str,
    card_name: str,
) -> str:
    """Try current SECRET_KEY first, fall back to previous."""
    try:
        return decrypt_billing_token(stored, current_secret, user_id, card_name)
    except InvalidTag:
        if previous_secret:
            return decrypt_billing_token(stored, previous_secret, user_id, card_name)
        raise
