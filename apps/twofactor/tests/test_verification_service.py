"""
Tests for email/SMS one-time verification codes.
"""
import os
import re
import runpy
from datetime import timedelta
from pathlib import Path
from unittest import mock

import pytest
from django.core import mail

from apps.core.exceptions import AuthenticationError, ConfigurationError, RateLimitError, ValidationError
from apps.twofactor.models import VerificationToken
from apps.twofactor.services import VerificationResult, VerificationService
from apps.twofactor.services.delivery import DeliveryResult, EmailDelivery
from apps.twofactor.services.verification_service import (
    ATTEMPTS_EXHAUSTED,
    DELIVERY_FAILED,
    INVALID_CODE,
    NO_ACTIVE_CODE,
    hash_code,
)


class RecordingDelivery:
    """Delivery double that remembers what it was asked to send."""

    def __init__(self, ok=True):
        self.ok = ok
        self.sent = []

    def send(self, to, *parts):
        self.sent.append((to, parts))
        return DeliveryResult(ok=self.ok, error=None if self.ok else 'provider down')

    @property
    def last_code(self):
        body = self.sent[-1][1][-1]
        return re.search(r'\b(\d{6})\b', body).group(1)


@pytest.fixture
def email_delivery():
    return RecordingDelivery()


@pytest.fixture
def sms_delivery():
    return RecordingDelivery()


@pytest.fixture
def verification_service(db, clock, email_delivery, sms_delivery):
    return VerificationService(deliveries={'email': email_delivery, 'sms': sms_delivery}, clock=clock)


def wrong_code(code):
    return f"{(int(code) + 1) % 1000000:06d}"


def load_bare_settings(base_dir):
    """Evaluate the production settings module with only the mandatory environment."""
    environment = {'SECRET_KEY': 'not-a-secret'}
    with mock.patch.dict(os.environ, environment, clear=True):
        return runpy.run_path(str(Path(base_dir) / 'config' / 'settings.py'))


@pytest.mark.django_db
class TestSendCode:

    def test_send_email_code(self, verification_service, email_delivery, clock):
        result = verification_service.send_code('user-1', 'member@example.org', 'email')

        assert result.sent is True
        to, (subject, body) = email_delivery.sent[0]
        assert to == 'member@example.org'
        assert subject == 'Your verification code'

        token = VerificationToken.objects.get(user_id='user-1')
        assert token.attempts == 0
        assert token.max_attempts == 3
        assert token.expires_at == clock() + timedelta(minutes=10)
        assert token.code_hash == hash_code('user-1', email_delivery.last_code)
        assert email_delivery.last_code not in token.code_hash
        assert token.destination != 'member@example.org'

    def test_send_sms_code(self, verification_service, sms_delivery):
        result = verification_service.send_code('user-1', '+254712345678', 'sms')

        assert result.sent is True
        to, (body,) = sms_delivery.sent[0]
        assert to == '+254712345678'
        assert VerificationToken.objects.get(user_id='user-1').destination.endswith('5678')

    def test_unknown_channel(self, verification_service):
        with pytest.raises(ValidationError):
            verification_service.send_code('user-1', 'member@example.org', 'fax')

    def test_missing_destination(self, verification_service):
        with pytest.raises(ValidationError):
            verification_service.send_code('user-1', '', 'email')

    def test_unconfigured_provider(self, clock, settings, db):
        settings.TWILIO_ACCOUNT_SID = ''
        service = VerificationService(clock=clock)

        with pytest.raises(ConfigurationError):
            service.send_code('user-1', '+254712345678', 'sms')
        assert not VerificationToken.objects.exists()

    def test_delivery_failure_discards_token(self, db, clock):
        failing = RecordingDelivery(ok=False)
        service = VerificationService(deliveries={'email': failing}, clock=clock)

        result = service.send_code('user-1', 'member@example.org', 'email')

        assert result.sent is False
        assert result.reason == DELIVERY_FAILED
        assert not VerificationToken.objects_with_deleted.filter(user_id='user-1').exists()

    def test_settings_control_ttl_and_attempts(self, email_delivery, clock, settings, db):
        settings.VERIFICATION_CODE_TTL_MINUTES = 5
        settings.VERIFICATION_MAX_ATTEMPTS = 5
        service = VerificationService(deliveries={'email': email_delivery}, clock=clock)

        service.send_code('user-1', 'member@example.org', 'email')

        token = VerificationToken.objects.get(user_id='user-1')
        assert token.max_attempts == 5
        assert token.expires_at == clock() + timedelta(minutes=5)

    def test_default_email_provider(self, clock, db):
        service = VerificationService(clock=clock)

        result = service.send_code('user-1', 'member@example.org', 'email')

        assert result.sent is True
        assert len(mail.outbox) == 1
        assert mail.outbox[0].to == ['member@example.org']

    def test_email_refused_without_email_environment(self, clock, settings, db):
        bare = load_bare_settings(settings.BASE_DIR)
        assert bare['DEFAULT_FROM_EMAIL'] == ''
        assert bare['EMAIL_BACKEND'] == 'django.core.mail.backends.smtp.EmailBackend'
        assert bare['EMAIL_ALLOW_LOCAL_BACKENDS'] is False

        settings.DEFAULT_FROM_EMAIL = bare['DEFAULT_FROM_EMAIL']
        settings.EMAIL_ALLOW_LOCAL_BACKENDS = bare['EMAIL_ALLOW_LOCAL_BACKENDS']
        service = VerificationService(clock=clock)

        with pytest.raises(ConfigurationError):
            service.send_code('user-1', 'member@example.org', 'email')
        assert not VerificationToken.objects_with_deleted.exists()
        assert mail.outbox == []

    def test_email_refused_on_console_backend(self, clock, settings, db):
        settings.EMAIL_BACKEND = 'django.core.mail.backends.console.EmailBackend'
        settings.DEFAULT_FROM_EMAIL = 'noreply@example.org'
        settings.EMAIL_ALLOW_LOCAL_BACKENDS = False
        service = VerificationService(clock=clock)

        with pytest.raises(ConfigurationError):
            service.send_code('user-1', 'member@example.org', 'email')
        assert not VerificationToken.objects_with_deleted.exists()


@pytest.mark.django_db
class TestVerifyCode:

    def test_correct_code_accepted_once(self, verification_service, email_delivery):
        verification_service.send_code('user-1', 'member@example.org', 'email')
        code = email_delivery.last_code

        assert verification_service.verify_code('user-1', code, 'email') == VerificationResult(valid=True)
        assert verification_service.verify_code('user-1', code, 'email') == VerificationResult(
            valid=False, reason=NO_ACTIVE_CODE
        )

    def test_wrong_code_counts_attempt(self, verification_service, email_delivery):
        verification_service.send_code('user-1', 'member@example.org', 'email')

        result = verification_service.verify_code('user-1', wrong_code(email_delivery.last_code), 'email')

        assert result == VerificationResult(valid=False, reason=INVALID_CODE)
        assert VerificationToken.objects.get(user_id='user-1').attempts == 1

    def test_exhausted_token_rejects_correct_code(self, verification_service, email_delivery):
        verification_service.send_code('user-1', 'member@example.org', 'email')
        code = email_delivery.last_code

        for _ in range(3):
            verification_service.verify_code('user-1', wrong_code(code), 'email')
        result = verification_service.verify_code('user-1', code, 'email')

        assert result.valid is False
        assert result.reason == ATTEMPTS_EXHAUSTED
        assert VerificationToken.objects.get(user_id='user-1').attempts == 3

    def test_expired_token_rejects_correct_code(self, verification_service, email_delivery, clock):
        verification_service.send_code('user-1', 'member@example.org', 'email')
        code = email_delivery.last_code

        clock.advance(minutes=10)

        assert verification_service.verify_code('user-1', code, 'email').reason == NO_ACTIVE_CODE

    def test_no_token(self, verification_service):
        assert verification_service.verify_code('user-1', '123456', 'email').reason == NO_ACTIVE_CODE

    def test_channels_are_separate(self, verification_service, email_delivery):
        verification_service.send_code('user-1', 'member@example.org', 'email')

        assert verification_service.verify_code('user-1', email_delivery.last_code, 'sms').reason == NO_ACTIVE_CODE

    def test_newest_token_wins(self, verification_service, email_delivery, clock):
        verification_service.send_code('user-1', 'member@example.org', 'email')
        old_code = email_delivery.last_code
        clock.advance(seconds=30)
        verification_service.send_code('user-1', 'member@example.org', 'email')
        new_code = email_delivery.last_code

        if old_code != new_code:
            assert not verification_service.verify_code('user-1', old_code, 'email').valid
        assert verification_service.verify_code('user-1', new_code, 'email').valid

    def test_live_tokens_ordered_by_expiry(self, clock):
        now = clock()
        later = VerificationToken.objects.create(
            user_id='user-1', channel='email', code_hash='a' * 64,
            expires_at=now + timedelta(minutes=10),
        )
        VerificationToken.objects.create(
            user_id='user-1', channel='email', code_hash='b' * 64,
            expires_at=now + timedelta(minutes=5),
        )

        assert VerificationToken.objects.live('user-1', 'email', now).first() == later

    def test_code_hash_bound_to_user(self):
        assert hash_code('user-1', '123456') != hash_code('user-2', '123456')

    def test_exhaustion_logged(self, verification_service, email_delivery):
        verification_service.send_code('user-1', 'member@example.org', 'email')
        code = email_delivery.last_code

        with mock.patch('apps.twofactor.services.verification_service.SecurityLogger') as security:
            for _ in range(3):
                verification_service.verify_code('user-1', wrong_code(code), 'email')

        assert security.log_verification_failed.call_count == 3
        security.log_attempts_exhausted.assert_called_once()

    def test_consume_is_conditional(self, verification_service, email_delivery):
        verification_service.send_code('user-1', 'member@example.org', 'email')
        code = email_delivery.last_code
        token = VerificationToken.objects.get(user_id='user-1')

        # A concurrent request used the token after this one read it
        def stale_live(*args, **kwargs):
            VerificationToken.objects.filter(pk=token.pk).update(used_at=token.created_at)
            return VerificationToken.objects_with_deleted.filter(pk=token.pk)

        with mock.patch.object(VerificationToken.objects, 'live', side_effect=stale_live):
            result = verification_service.verify_code('user-1', code, 'email')

        assert result.valid is False
        assert result.reason == NO_ACTIVE_CODE


class TestVerificationResult:

    def test_valid_does_not_raise(self):
        VerificationResult(valid=True).raise_for_status()

    def test_exhausted_raises_rate_limit(self):
        with pytest.raises(RateLimitError):
            VerificationResult(valid=False, reason=ATTEMPTS_EXHAUSTED).raise_for_status()

    @pytest.mark.parametrize('reason', [INVALID_CODE, NO_ACTIVE_CODE])
    def test_other_failures_raise_authentication(self, reason):
        with pytest.raises(AuthenticationError) as exc_info:
            VerificationResult(valid=False, reason=reason).raise_for_status()
        assert exc_info.value.details['reason'] == reason


@pytest.mark.django_db
class TestCleanupExpired:

    def test_removes_only_expired(self, verification_service, email_delivery, clock):
        verification_service.send_code('user-1', 'one@example.org', 'email')
        used_code = email_delivery.last_code
        verification_service.verify_code('user-1', used_code, 'email')
        clock.advance(minutes=8)
        verification_service.send_code('user-2', 'two@example.org', 'email')
        clock.advance(minutes=3)

        assert verification_service.cleanup_expired() == 1
        assert list(VerificationToken.objects.values_list('user_id', flat=True)) == ['user-2']

    def test_nothing_to_remove(self, verification_service):
        assert verification_service.cleanup_expired() == 0


class TestEmailDeliveryDefaults:

    def test_email_delivery_uses_from_address(self):
        delivery = EmailDelivery('noreply@example.org')

        assert delivery.send('member@example.org', 'Subject', 'Body').ok
        assert mail.outbox[-1].from_email == 'noreply@example.org'
