from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging

from apps.core.encryption import KEY_HINT, validate_encryption_key

logger = logging.getLogger(__name__)


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Perform startup validation checks when Django initializes.

        Two-factor secrets cannot be stored without a valid encryption key,
        so a missing or weak key stops the process here rather than on the
        first enrollment.
        """
        self._validate_encryption_configuration()
        self._validate_security_settings()

        logger.info("Startup security validations passed")

    def _validate_encryption_configuration(self):
        """Validate ENCRYPTION_KEY and any rotated ENCRYPTION_OLD_KEYS."""
        encryption_key = getattr(settings, 'ENCRYPTION_KEY', None)

        if not encryption_key:
            raise ImproperlyConfigured(f"ENCRYPTION_KEY must be set in environment variables. {KEY_HINT}")

        try:
            validate_encryption_key(encryption_key)
        except ValueError as e:
            raise ImproperlyConfigured(f"ENCRYPTION_KEY is invalid: {e}")

        for i, old_key in enumerate(getattr(settings, 'ENCRYPTION_OLD_KEYS', []) or []):
            try:
                validate_encryption_key(old_key)
            except ValueError as e:
                logger.warning(f"ENCRYPTION_OLD_KEYS[{i}] is invalid and will be ignored: {e}")

    def _validate_security_settings(self):
        """Validate general security settings."""
        debug = getattr(settings, 'DEBUG', False)
        secret_key = getattr(settings, 'SECRET_KEY', None)

        # SECRET_KEY keys the verification code hashes
        if not secret_key:
            raise ImproperlyConfigured(
                "SECRET_KEY must be set in environment variables. "
                "Generate with: "
                "python -c \"import secrets; print(secrets.token_urlsafe(50))\""
            )

        if len(secret_key) < 50:
            logger.warning(
                f"SECRET_KEY is shorter than recommended (current: {len(secret_key)}, recommended: 50+)."
            )

        if not debug:
            weak_patterns = [
                'your-secret-key',
                'change-me',
                'django-insecure',
                '12345',
            ]

            secret_lower = secret_key.lower()
            for pattern in weak_patterns:
                if pattern in secret_lower:
                    raise ImproperlyConfigured(
                        f"SECRET_KEY appears to be a default or weak value (contains '{pattern}'). "
                        f"Generate a strong key with: "
                        f"python -c \"import secrets; print(secrets.token_urlsafe(50))\""
                    )
