"""
Tests for email and SMS delivery collaborators.
"""
from unittest.mock import Mock, patch

import pytest
from twilio.base.exceptions import TwilioRestException

from apps.twofactor.services.delivery import EmailDelivery, TwilioSmsDelivery, get_delivery


@pytest.fixture
def twilio_client():
    client = Mock()
    client.messages.create.return_value = Mock(sid='SM123', status='queued')
    return client


class TestTwilioSmsDelivery:

    def test_send_success(self, twilio_client):
        delivery = TwilioSmsDelivery('AC123', 'token', '+15550000000', client=twilio_client)

        result = delivery.send('+254712345678', 'Your verification code is 123456.')

        assert result.ok is True
        twilio_client.messages.create.assert_called_once_with(
            from_='+15550000000',
            to='+254712345678',
            body='Your verification code is 123456.',
        )

    def test_twilio_error_returned(self, twilio_client):
        twilio_client.messages.create.side_effect = TwilioRestException(
            status=400, uri='/Messages', msg='Invalid To number', code=21211
        )
        delivery = TwilioSmsDelivery('AC123', 'token', '+15550000000', client=twilio_client)

        result = delivery.send('+254712345678', 'code')

        assert result.ok is False
        assert '21211' in result.error

    def test_network_error_returned(self, twilio_client):
        twilio_client.messages.create.side_effect = ConnectionError('timed out')
        delivery = TwilioSmsDelivery('AC123', 'token', '+15550000000', client=twilio_client)

        result = delivery.send('+254712345678', 'code')

        assert result.ok is False
        assert 'timed out' in result.error

    def test_builds_client_from_credentials(self):
        with patch('apps.twofactor.services.delivery.Client') as client_class:
            TwilioSmsDelivery('AC123', 'token', '+15550000000')

        client_class.assert_called_once_with('AC123', 'token')


class TestEmailDelivery:

    def test_backend_error_returned(self):
        with patch('apps.twofactor.services.delivery.send_mail', side_effect=OSError('smtp down')):
            result = EmailDelivery('noreply@example.org').send('member@example.org', 'Subject', 'Body')

        assert result.ok is False
        assert 'smtp down' in result.error

    def test_nothing_sent_is_failure(self):
        with patch('apps.twofactor.services.delivery.send_mail', return_value=0):
            result = EmailDelivery('noreply@example.org').send('member@example.org', 'Subject', 'Body')

        assert result.ok is False


class TestGetDelivery:

    def test_email_configured(self, settings):
        settings.DEFAULT_FROM_EMAIL = 'noreply@example.org'

        assert isinstance(get_delivery('email'), EmailDelivery)

    def test_email_unconfigured(self, settings):
        settings.DEFAULT_FROM_EMAIL = ''

        assert get_delivery('email') is None

    def test_sms_requires_all_credentials(self, settings):
        settings.TWILIO_ACCOUNT_SID = 'AC123'
        settings.TWILIO_AUTH_TOKEN = 'token'
        settings.TWILIO_FROM_NUMBER = ''

        assert get_delivery('sms') is None

    def test_sms_configured(self, settings):
        settings.TWILIO_ACCOUNT_SID = 'AC123'
        settings.TWILIO_AUTH_TOKEN = 'token'
        settings.TWILIO_FROM_NUMBER = '+15550000000'

        with patch('apps.twofactor.services.delivery.Client'):
            assert isinstance(get_delivery('sms'), TwilioSmsDelivery)

    def test_unknown_channel(self):
        assert get_delivery('fax') is None

    def test_local_backend_refused(self, settings):
        settings.DEFAULT_FROM_EMAIL = 'noreply@example.org'
        settings.EMAIL_BACKEND = 'django.core.mail.backends.console.EmailBackend'
        settings.EMAIL_ALLOW_LOCAL_BACKENDS = False

        assert get_delivery('email') is None

    def test_local_backend_allowed_explicitly(self, settings):
        settings.DEFAULT_FROM_EMAIL = 'noreply@example.org'
        settings.EMAIL_BACKEND = 'django.core.mail.backends.console.EmailBackend'
        settings.EMAIL_ALLOW_LOCAL_BACKENDS = True

        assert isinstance(get_delivery('email'), EmailDelivery)

    def test_smtp_backend_needs_no_opt_in(self, settings):
        settings.DEFAULT_FROM_EMAIL = 'noreply@example.org'
        settings.EMAIL_BACKEND = 'django.core.mail.backends.smtp.EmailBackend'
        settings.EMAIL_ALLOW_LOCAL_BACKENDS = False

        assert isinstance(get_delivery('email'), EmailDelivery)
