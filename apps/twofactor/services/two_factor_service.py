"""
Two-factor credential management.

Authenticator codes follow RFC 6238 (HMAC-SHA1, 30 second step, 6 digits)
and are accepted for the current step and TOTP_DRIFT_WINDOW steps either
side. Secrets and backup codes are encrypted independently with
AES-256-GCM and bound to the owning user id.
"""
import base64
import hashlib
import hmac
import logging
import secrets
import struct
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Tuple
from urllib.parse import quote, urlencode

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from apps.core.encryption import EncryptionService
from apps.core.exceptions import ConfigurationError, ValidationError
from apps.core.logging import SecurityLogger
from apps.rbac.models import AuditLog
from apps.twofactor.models import TwoFactorBackupCode, TwoFactorCredential, TwoFactorMethod

logger = logging.getLogger(__name__)

TOTP_INTERVAL = 30
TOTP_DIGITS = 6
SECRET_BYTES = 20
BACKUP_CODE_COUNT = 10


def generate_secret() -> str:
    """Random 160-bit secret, base32 without padding."""
    return base64.b32encode(secrets.token_bytes(SECRET_BYTES)).decode('ascii').rstrip('=')


def generate_totp(secret: str, timestamp: float, interval: int = TOTP_INTERVAL,
                  digits: int = TOTP_DIGITS) -> str:
    """
    RFC 6238 code for the step containing `timestamp`.

    Raises:
        ValueError: If the secret is not valid base32
    """
    padded = secret.upper() + '=' * ((8 - len(secret) % 8) % 8)
    key = base64.b32decode(padded)
    counter = struct.pack('>Q', int(timestamp // interval))
    digest = hmac.new(key, counter, hashlib.sha1).digest()
    offset = digest[-1] & 0x0F
    code_int = (struct.unpack('>I', digest[offset:offset + 4])[0] & 0x7FFFFFFF) % (10 ** digits)
    return str(code_int).zfill(digits)


def build_provisioning_uri(secret: str, label: str, issuer: str) -> str:
    """otpauth:// URI for QR rendering by the caller."""
    query = urlencode({
        'secret': secret,
        'issuer': issuer,
        'algorithm': 'SHA1',
        'digits': TOTP_DIGITS,
        'period': TOTP_INTERVAL,
    })
    return f"otpauth://totp/{quote(issuer)}:{quote(label)}?{query}"


def generate_backup_codes(count: int = BACKUP_CODE_COUNT) -> Tuple[str, ...]:
    """Distinct 8-character upper-case hex codes."""
    codes = []
    while len(codes) < count:
        code = secrets.token_hex(4).upper()
        if code not in codes:
            codes.append(code)
    return tuple(codes)


@dataclass(frozen=True)
class TOTPSetup:
    """Plaintext enrollment material, shown to the user exactly once."""
    secret: str
    provisioning_uri: str
    backup_codes: Tuple[str, ...]


class TwoFactorService:
    """
    Manages each user's two-factor credential.

    Side effects are confined to the user's own credential and backup codes.
    """

    def __init__(self, encryption: Optional[EncryptionService] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        if encryption is None:
            try:
                encryption = EncryptionService.from_settings()
            except ValueError as e:
                raise ConfigurationError(str(e))
        self.encryption = encryption
        self.clock = clock or timezone.now

    @staticmethod
    def _secret_aad(user_id) -> bytes:
        return f"totp:{user_id}".encode('utf-8')

    @staticmethod
    def _backup_aad(user_id) -> bytes:
        return f"backup:{user_id}".encode('utf-8')

    def _store_backup_codes(self, credential, codes):
        """Replace all of a credential's backup codes."""
        TwoFactorBackupCode.objects_with_deleted.filter(credential=credential).hard_delete()
        TwoFactorBackupCode.objects.bulk_create([
            TwoFactorBackupCode(
                credential=credential,
                position=position,
                code_ciphertext=self.encryption.encrypt(code, self._backup_aad(credential.user_id)),
            )
            for position, code in enumerate(codes)
        ])

    # Enrollment

    def setup_totp(self, user_id, label: Optional[str] = None) -> TOTPSetup:
        """
        Generate a new authenticator secret and backup codes.

        Any previous secret and codes are replaced in one transaction.
        Two-factor is not enabled until enable_2fa() is called.
        """
        secret = generate_secret()
        codes = generate_backup_codes()
        issuer = getattr(settings, 'TWO_FACTOR_ISSUER', 'Church Portal')

        with transaction.atomic():
            credential, _ = TwoFactorCredential.objects.select_for_update().get_or_create(user_id=user_id)
            credential.secret_ciphertext = self.encryption.encrypt(secret, self._secret_aad(user_id))
            credential.save(update_fields=['secret_ciphertext', 'updated_at'])
            self._store_backup_codes(credential, codes)

        AuditLog.log_action(
            action='two_factor_setup',
            actor_id=user_id,
            target_type='TwoFactorCredential',
            target_id=credential.id,
        )
        logger.info("Authenticator setup generated", extra={'user_id': user_id})

        return TOTPSetup(
            secret=secret,
            provisioning_uri=build_provisioning_uri(secret, label or str(user_id), issuer),
            backup_codes=codes,
        )

    def regenerate_backup_codes(self, user_id) -> Tuple[str, ...]:
        """
        Replace the user's backup codes with a fresh set.

        Raises:
            ValidationError: If the user has no credential
        """
        codes = generate_backup_codes()
        with transaction.atomic():
            credential = TwoFactorCredential.objects.select_for_update().filter(user_id=user_id).first()
            if credential is None:
                raise ValidationError("Two-factor is not set up for this user")
            self._store_backup_codes(credential, codes)

        AuditLog.log_action(
            action='backup_codes_regenerated',
            actor_id=user_id,
            target_type='TwoFactorCredential',
            target_id=credential.id,
        )
        return codes

    def enable_2fa(self, user_id, method: str) -> TwoFactorCredential:
        """
        Turn on two-factor with the given method.

        Raises:
            ValidationError: Unknown method, or authenticator without a prior setup_totp()
        """
        if method not in TwoFactorMethod.values:
            raise ValidationError(
                f"Unknown two-factor method: {method}",
                details={'allowed': list(TwoFactorMethod.values)},
            )

        with transaction.atomic():
            credential, _ = TwoFactorCredential.objects.select_for_update().get_or_create(user_id=user_id)
            if method == TwoFactorMethod.AUTHENTICATOR and not credential.secret_ciphertext:
                raise ValidationError("Set up an authenticator app before enabling it")

            previous = credential.method if credential.enabled else None
            credential.enabled = True
            credential.method = method
            credential.setup_at = self.clock()
            credential.save(update_fields=['enabled', 'method', 'setup_at', 'updated_at'])

        AuditLog.log_action(
            action='two_factor_enabled',
            actor_id=user_id,
            target_type='TwoFactorCredential',
            target_id=credential.id,
            diff={'before': {'method': previous}, 'after': {'method': method}},
        )
        return credential

    def disable_2fa(self, user_id) -> bool:
        """
        Turn two-factor off and erase the secret and every backup code.

        Returns:
            True if the user had a credential
        """
        with transaction.atomic():
            credential = TwoFactorCredential.objects.select_for_update().filter(user_id=user_id).first()
            if credential is None:
                return False
            previous = credential.method
            credential.enabled = False
            credential.method = None
            credential.secret_ciphertext = ''
            credential.setup_at = None
            credential.save(update_fields=['enabled', 'method', 'secret_ciphertext', 'setup_at', 'updated_at'])
            TwoFactorBackupCode.objects_with_deleted.filter(credential=credential).hard_delete()

        AuditLog.log_action(
            action='two_factor_disabled',
            actor_id=user_id,
            target_type='TwoFactorCredential',
            target_id=credential.id,
            diff={'before': {'method': previous}, 'after': {'method': None}},
        )
        return True

    # Queries

    def is_2fa_enabled(self, user_id) -> bool:
        return TwoFactorCredential.objects.enabled().filter(user_id=user_id).exists()

    def get_2fa_method(self, user_id) -> Optional[str]:
        credential = TwoFactorCredential.objects.enabled().filter(user_id=user_id).first()
        return credential.method if credential else None

    def remaining_backup_codes(self, user_id) -> int:
        return TwoFactorBackupCode.objects.filter(credential__user_id=user_id).count()

    # Verification

    def verify_totp(self, user_id, code: str) -> bool:
        """
        Check an authenticator code against the current step and the
        drift window around it.
        """
        credential = TwoFactorCredential.objects.for_user(user_id)
        if credential is None or not credential.secret_ciphertext:
            return False

        try:
            secret = self.encryption.decrypt(credential.secret_ciphertext, self._secret_aad(user_id))
        except ValueError as e:
            logger.error(
                f"Could not decrypt authenticator secret: {str(e)}",
                extra={'user_id': user_id}
            )
            return False

        code = (code or '').strip()
        if len(code) != TOTP_DIGITS or not code.isdigit():
            SecurityLogger.log_verification_failed(user_id, 'authenticator', 'malformed_code')
            return False

        now = self.clock().timestamp()
        window = getattr(settings, 'TOTP_DRIFT_WINDOW', 2)
        try:
            for offset in range(-window, window + 1):
                expected = generate_totp(secret, now + offset * TOTP_INTERVAL)
                if hmac.compare_digest(expected.encode(), code.encode()):
                    return True
        except ValueError as e:
            logger.error(f"Stored authenticator secret is invalid: {str(e)}", extra={'user_id': user_id})
            return False

        SecurityLogger.log_verification_failed(user_id, 'authenticator', 'invalid_code')
        return False

    def verify_backup_code(self, user_id, code: str) -> bool:
        """
        Check a backup code and consume it on match.

        Comparison is case-insensitive. A code can succeed only once; when
        two requests race on the same code, only one consumes it.
        """
        candidate = (code or '').strip().upper()
        if not candidate:
            return False

        backup_codes = TwoFactorBackupCode.objects.filter(
            credential__user_id=user_id
        ).order_by('position')

        aad = self._backup_aad(user_id)
        for backup in backup_codes:
            try:
                plaintext = self.encryption.decrypt(backup.code_ciphertext, aad)
            except ValueError as e:
                logger.error(
                    f"Could not decrypt backup code: {str(e)}",
                    extra={'user_id': user_id, 'position': backup.position}
                )
                continue

            if not hmac.compare_digest(plaintext.upper().encode(), candidate.encode()):
                continue

            consumed = TwoFactorBackupCode.objects.filter(pk=backup.pk).delete()
            if consumed != 1:
                SecurityLogger.log_event('backup_code_race_lost', level='warning', user_id=user_id)
                return False

            AuditLog.log_action(
                action='backup_code_used',
                actor_id=user_id,
                target_type='TwoFactorCredential',
                target_id=backup.credential_id,
                metadata={'position': backup.position},
            )
            return True

        SecurityLogger.log_verification_failed(user_id, 'backup_code', 'invalid_code')
        return False
