"""
Encryption utilities for two-factor secrets and backup codes.

Provides AES-256-GCM authenticated encryption. Every call to encrypt()
draws a fresh 12-byte nonce which is stored in front of the ciphertext,
so two encryptions of the same plaintext never produce the same record.
"""
import base64
import logging
import os
from typing import Iterable, List, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from django.conf import settings

logger = logging.getLogger(__name__)

NONCE_SIZE = 12

KEY_HINT = (
    "Generate with: python -c \"import os, base64; "
    "print(base64.b64encode(os.urandom(32)).decode())\""
)


def validate_encryption_key(key_b64: str) -> bytes:
    """
    Validate encryption key strength and return decoded key.

    Requirements:
    - Must be valid base64
    - Must be exactly 32 bytes (256 bits) when decoded
    - Must not be all zeros or a short repeating pattern
    - Must have at least 16 unique bytes

    Args:
        key_b64: Base64-encoded encryption key string

    Returns:
        bytes: Decoded 32-byte encryption key

    Raises:
        ValueError: If key validation fails with specific reason
    """
    if not key_b64:
        raise ValueError(f"Encryption key is required. {KEY_HINT}")

    try:
        key = base64.b64decode(key_b64, validate=True)
    except (ValueError, TypeError) as e:
        raise ValueError(f"Encryption key must be valid base64: {e}. {KEY_HINT}")

    if len(key) != 32:
        raise ValueError(
            f"Encryption key must be exactly 32 bytes (256 bits). "
            f"Current length: {len(key)} bytes. {KEY_HINT}"
        )

    if key == b'\x00' * 32:
        raise ValueError(f"Encryption key is all zeros (weak key). {KEY_HINT}")

    for pattern_len in [1, 2, 4, 8]:
        pattern = key[:pattern_len]
        if key == pattern * (32 // pattern_len):
            raise ValueError(
                f"Encryption key is a simple {pattern_len}-byte repeating pattern (weak key). {KEY_HINT}"
            )

    unique_bytes = len(set(key))
    if unique_bytes < 16:
        raise ValueError(
            f"Encryption key has insufficient entropy. "
            f"Found only {unique_bytes} unique bytes, need at least 16. {KEY_HINT}"
        )

    return key


class EncryptionService:
    """
    Authenticated symmetric encryption for credential material.

    Supports key rotation by holding multiple keys:
    - current key: used for all new encryptions
    - old keys: tried in order for decryption only

    Instances are immutable once built; construct one per process or per
    test and pass it to the services that need it.
    """

    def __init__(self, key_b64: str, old_keys_b64: Optional[Iterable[str]] = None):
        self.key = validate_encryption_key(key_b64)
        self.cipher = AESGCM(self.key)

        self.old_ciphers: List[AESGCM] = []
        for i, old_key_b64 in enumerate(old_keys_b64 or []):
            try:
                self.old_ciphers.append(AESGCM(validate_encryption_key(old_key_b64)))
            except ValueError as e:
                # Old keys are for decryption only
                logger.warning(f"Invalid old encryption key at index {i}: {e}")

    @classmethod
    def from_settings(cls) -> 'EncryptionService':
        """Build a service from ENCRYPTION_KEY / ENCRYPTION_OLD_KEYS settings."""
        encryption_key = getattr(settings, 'ENCRYPTION_KEY', None)
        if not encryption_key:
            raise ValueError(f"ENCRYPTION_KEY must be set in settings. {KEY_HINT}")
        return cls(encryption_key, getattr(settings, 'ENCRYPTION_OLD_KEYS', []))

    def encrypt(self, plaintext: str, associated_data: Optional[bytes] = None) -> str:
        """
        Encrypt plaintext string.

        Args:
            plaintext: String to encrypt
            associated_data: Optional bytes bound to the ciphertext (e.g. the
                owning user id) that must be presented again to decrypt

        Returns:
            Base64-encoded nonce + ciphertext + tag
        """
        if plaintext is None:
            raise ValueError("Cannot encrypt None")

        nonce = os.urandom(NONCE_SIZE)
        ciphertext = self.cipher.encrypt(nonce, plaintext.encode('utf-8'), associated_data)
        return base64.b64encode(nonce + ciphertext).decode('utf-8')

    def decrypt(self, encrypted_data: str, associated_data: Optional[bytes] = None) -> str:
        """
        Decrypt data produced by encrypt().

        Tries the current key first, then old keys.

        Raises:
            ValueError: If the payload is malformed or no key authenticates it
        """
        if not encrypted_data:
            raise ValueError("Nothing to decrypt")

        try:
            data = base64.b64decode(encrypted_data, validate=True)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Decryption failed: malformed payload ({e})")

        if len(data) <= NONCE_SIZE:
            raise ValueError("Decryption failed: payload too short")

        nonce, ciphertext = data[:NONCE_SIZE], data[NONCE_SIZE:]

        for cipher in [self.cipher, *self.old_ciphers]:
            try:
                return cipher.decrypt(nonce, ciphertext, associated_data).decode('utf-8')
            except InvalidTag:
                continue

        raise ValueError("Decryption failed with all available keys")


def mask_pii(value: str, mask_char: str = '*', visible_chars: int = 4) -> str:
    """
    Mask PII data for display in logs and audit entries.

    Examples:
        mask_pii('+1234567890') -> '*******7890'
    """
    if not value or len(value) <= visible_chars:
        return mask_char * len(value) if value else ''

    masked_length = len(value) - visible_chars
    return (mask_char * masked_length) + value[-visible_chars:]


def mask_email(email: str) -> str:
    """
    Mask email address for display.

    Example:
        mask_email('user@example.com') -> 'u***@e******.com'
    """
    if not email or '@' not in email:
        return mask_pii(email)

    username, domain = email.split('@', 1)

    if len(username) > 1:
        masked_username = username[0] + ('*' * (len(username) - 1))
    else:
        masked_username = username

    if '.' in domain:
        domain_name, tld = domain.rsplit('.', 1)
        if len(domain_name) > 1:
            masked_domain = domain_name[0] + ('*' * (len(domain_name) - 1)) + '.' + tld
        else:
            masked_domain = domain_name + '.' + tld
    else:
        masked_domain = domain[0] + ('*' * (len(domain) - 1)) if len(domain) > 1 else domain

    return f"{masked_username}@{masked_domain}"


def mask_phone(phone: str) -> str:
    """Mask phone number, keeping the last 4 digits."""
    return mask_pii(phone, visible_chars=4)


def mask_destination(destination: str) -> str:
    """Mask an email address or phone number, whichever it looks like."""
    if destination and '@' in destination:
        return mask_email(destination)
    return mask_phone(destination)
