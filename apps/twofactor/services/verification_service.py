"""
Out-of-band verification codes (email and SMS).

Codes are six random digits. Only an HMAC of each code is stored, keyed
with SECRET_KEY. Every check-then-write is a single conditional UPDATE,
so concurrent submissions cannot exceed the attempt limit or reuse a
consumed token.
"""
import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from django.conf import settings
from django.db.models import F
from django.utils import timezone

from apps.core.encryption import mask_destination
from apps.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    RateLimitError,
    ValidationError,
)
from apps.core.logging import SecurityLogger
from apps.twofactor.models import VerificationChannel, VerificationToken
from apps.twofactor.services.delivery import get_delivery

logger = logging.getLogger(__name__)

NO_ACTIVE_CODE = 'no_active_code'
ATTEMPTS_EXHAUSTED = 'attempts_exhausted'
INVALID_CODE = 'invalid_code'
DELIVERY_FAILED = 'delivery_failed'

CODE_DIGITS = 6


@dataclass(frozen=True)
class SendResult:
    sent: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    reason: Optional[str] = None

    def raise_for_status(self):
        """
        Raises:
            RateLimitError: attempts are exhausted; a new code must be requested
            AuthenticationError: any other failure
        """
        if self.valid:
            return
        if self.reason == ATTEMPTS_EXHAUSTED:
            raise RateLimitError("Too many attempts. Request a new code.", details={'reason': self.reason})
        raise AuthenticationError("Invalid verification code", details={'reason': self.reason})


def hash_code(user_id, code: str) -> str:
    key = settings.SECRET_KEY.encode('utf-8')
    return hmac.new(key, f"{user_id}:{code}".encode('utf-8'), hashlib.sha256).hexdigest()


class VerificationService:
    """
    Sends and checks one-time codes.

    Args:
        deliveries: Optional mapping of channel to delivery collaborator;
            channels not in the mapping fall back to get_delivery()
        clock: Callable returning an aware datetime
    """

    def __init__(self, deliveries: Optional[Dict[str, object]] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.deliveries = deliveries or {}
        self.clock = clock or timezone.now
        self.ttl_minutes = getattr(settings, 'VERIFICATION_CODE_TTL_MINUTES', 10)
        self.max_attempts = getattr(settings, 'VERIFICATION_MAX_ATTEMPTS', 3)

    def _delivery_for(self, channel):
        if channel in self.deliveries:
            return self.deliveries[channel]
        return get_delivery(channel)

    def send_code(self, user_id, destination: str, channel: str) -> SendResult:
        """
        Create a token and deliver its code.

        Raises:
            ValidationError: Unknown channel or missing destination
            ConfigurationError: No delivery provider configured for the channel
        """
        if channel not in VerificationChannel.values:
            raise ValidationError(f"Unknown verification channel: {channel}")
        if not destination:
            raise ValidationError("A destination is required to send a code")

        delivery = self._delivery_for(channel)
        if delivery is None:
            raise ConfigurationError(
                f"No {channel} delivery provider is configured",
                details={'channel': channel},
            )

        code = f"{secrets.randbelow(10 ** CODE_DIGITS):0{CODE_DIGITS}d}"
        now = self.clock()
        token = VerificationToken.objects.create(
            user_id=user_id,
            channel=channel,
            code_hash=hash_code(user_id, code),
            destination=mask_destination(destination),
            expires_at=now + timedelta(minutes=self.ttl_minutes),
            attempts=0,
            max_attempts=self.max_attempts,
        )

        body = f"Your verification code is {code}. It expires in {self.ttl_minutes} minutes."
        if channel == VerificationChannel.EMAIL:
            result = delivery.send(destination, "Your verification code", body)
        else:
            result = delivery.send(destination, body)

        if not result.ok:
            # The user never saw this code
            token.hard_delete()
            logger.warning(
                "Verification code delivery failed",
                extra={'user_id': user_id, 'channel': channel, 'error': result.error}
            )
            return SendResult(sent=False, reason=DELIVERY_FAILED)

        logger.info(
            "Verification code sent",
            extra={'user_id': user_id, 'channel': channel, 'token_id': str(token.id)}
        )
        return SendResult(sent=True)

    def verify_code(self, user_id, code: str, channel: str) -> VerificationResult:
        """
        Check a code against the newest live token for (user, channel).

        Once attempts reach the limit the token is dead, even for the
        correct code. A matched token is consumed and never matches again.
        """
        now = self.clock()
        token = VerificationToken.objects.live(user_id, channel, now).first()
        if token is None:
            return VerificationResult(valid=False, reason=NO_ACTIVE_CODE)

        if token.attempts >= token.max_attempts:
            return VerificationResult(valid=False, reason=ATTEMPTS_EXHAUSTED)

        candidate = hash_code(user_id, (code or '').strip())
        if hmac.compare_digest(candidate, token.code_hash):
            consumed = VerificationToken.objects.filter(
                pk=token.pk,
                used_at__isnull=True,
                expires_at__gt=now,
                attempts__lt=F('max_attempts'),
            ).update(used_at=now)
            if consumed:
                logger.info(
                    "Verification code accepted",
                    extra={'user_id': user_id, 'channel': channel, 'token_id': str(token.id)}
                )
                return VerificationResult(valid=True)
            return self._lost_race(token)

        bumped = VerificationToken.objects.filter(
            pk=token.pk,
            used_at__isnull=True,
            attempts__lt=F('max_attempts'),
        ).update(attempts=F('attempts') + 1)
        if not bumped:
            return self._lost_race(token)

        token.refresh_from_db(fields=['attempts'])
        SecurityLogger.log_verification_failed(user_id, channel, INVALID_CODE, attempts=token.attempts)
        if token.attempts >= token.max_attempts:
            SecurityLogger.log_attempts_exhausted(user_id, channel, str(token.id))
        return VerificationResult(valid=False, reason=INVALID_CODE)

    def _lost_race(self, token) -> VerificationResult:
        """Reason to report when a concurrent request changed the token first."""
        token.refresh_from_db(fields=['attempts', 'used_at'])
        if token.used_at is None and token.attempts >= token.max_attempts:
            return VerificationResult(valid=False, reason=ATTEMPTS_EXHAUSTED)
        return VerificationResult(valid=False, reason=NO_ACTIVE_CODE)

    def cleanup_expired(self) -> int:
        """
        Delete every token past its expiry, used or not.

        Returns:
            Number of tokens deleted
        """
        deleted, _ = VerificationToken.objects_with_deleted.filter(
            expires_at__lte=self.clock()
        ).hard_delete()
        if deleted:
            logger.info("Expired verification tokens removed", extra={'deleted': deleted})
        return deleted
