"""
Tests for structured logging and PII masking.
"""
import json
import logging
from unittest.mock import patch

from django.test import TestCase

from apps.core.logging import JSONFormatter, PIIMasker, PIIMaskingFilter, SecurityLogger


def make_record(msg, **extra):
    record = logging.LogRecord(
        name='test_logger',
        level=logging.INFO,
        pathname='test.py',
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class PIIMaskerTestCase(TestCase):
    """Test PII masking functionality."""

    def test_mask_phone_numbers(self):
        text = "Call me at +1234567890 or +447700900123"
        masked = PIIMasker.mask_phone(text)

        self.assertIn("+12*", masked)
        self.assertNotIn("+1234567890", masked)
        self.assertNotIn("+447700900123", masked)

    def test_mask_email_addresses(self):
        masked = PIIMasker.mask_email("Contact user@example.com")

        self.assertIn("u***@example.com", masked)
        self.assertNotIn("user@example.com", masked)

    def test_mask_secrets(self):
        masked = PIIMasker.mask_secrets('code=123456 and token="bearer_xyz789"')

        self.assertIn("code: ********", masked)
        self.assertNotIn("123456", masked)
        self.assertNotIn("bearer_xyz789", masked)

    def test_mask_dict_sensitive_fields(self):
        data = {
            'user_id': 'u-1',
            'secret': 'JBSWY3DPEHPK3PXP',
            'backup_codes': ['A1B2C3D4'],
            'email': 'john@example.com',
            'attempts': 2,
        }

        masked = PIIMasker.mask_dict(data)

        self.assertEqual(masked['user_id'], 'u-1')
        self.assertEqual(masked['secret'], '********')
        self.assertEqual(masked['backup_codes'], '********')
        self.assertEqual(masked['email'], '********')
        self.assertEqual(masked['attempts'], 2)

    def test_mask_nested_dict(self):
        masked = PIIMasker.mask_dict({'credential': {'totp_secret': 'abc', 'method': 'sms'}})

        self.assertEqual(masked['credential']['totp_secret'], '********')
        self.assertEqual(masked['credential']['method'], 'sms')


class JSONFormatterTestCase(TestCase):
    """Test JSON log formatting."""

    def setUp(self):
        self.formatter = JSONFormatter()

    def test_basic_log_format(self):
        log_data = json.loads(self.formatter.format(make_record('Test message')))

        self.assertEqual(log_data['level'], 'INFO')
        self.assertEqual(log_data['logger'], 'test_logger')
        self.assertEqual(log_data['message'], 'Test message')
        self.assertEqual(log_data['line'], 10)
        self.assertIn('timestamp', log_data)

    def test_extra_context_copied(self):
        record = make_record('Role assigned', tenant_id='church-1', role_name='pastor')
        log_data = json.loads(self.formatter.format(record))

        self.assertEqual(log_data['tenant_id'], 'church-1')
        self.assertEqual(log_data['role_name'], 'pastor')

    def test_sensitive_extra_masked(self):
        record = make_record('Code sent', code='123456')
        log_data = json.loads(self.formatter.format(record))

        self.assertEqual(log_data['code'], '********')

    def test_non_serializable_extra_stringified(self):
        record = make_record('Task done', result=object())
        log_data = json.loads(self.formatter.format(record))

        self.assertIsInstance(log_data['result'], str)

    def test_log_masks_pii_in_message(self):
        record = make_record('Sending code to +1234567890 and user@example.com')
        log_data = json.loads(self.formatter.format(record))

        self.assertNotIn('+1234567890', log_data['message'])
        self.assertNotIn('user@example.com', log_data['message'])

    def test_exception_info_included(self):
        try:
            raise ValueError("Decryption failed")
        except ValueError:
            import sys
            record = logging.LogRecord(
                name='test_logger', level=logging.ERROR, pathname='test.py',
                lineno=10, msg='boom', args=(), exc_info=sys.exc_info(),
            )

        log_data = json.loads(self.formatter.format(record))

        self.assertEqual(log_data['exception']['type'], 'ValueError')
        self.assertEqual(log_data['exception']['message'], 'Decryption failed')


class PIIMaskingFilterTestCase(TestCase):

    def test_filter_masks_rendered_message(self):
        record = logging.LogRecord(
            name='test_logger', level=logging.INFO, pathname='test.py',
            lineno=10, msg='Sent to %s', args=('+15551234567',), exc_info=None,
        )

        self.assertTrue(PIIMaskingFilter().filter(record))
        self.assertNotIn('+15551234567', record.getMessage())


class SecurityLoggerTestCase(TestCase):
    """Test security event logging."""

    def test_verification_failed_logged(self):
        with self.assertLogs('security', level='WARNING') as cm:
            SecurityLogger.log_verification_failed('u-1', 'sms', 'invalid_code', attempts=1)

        self.assertEqual(cm.records[0].event_type, 'verification_failed')
        self.assertEqual(cm.records[0].channel, 'sms')

    @patch('apps.core.logging.sentry_sdk.capture_message')
    def test_critical_event_sent_to_sentry(self, mock_capture):
        with self.assertLogs('security', level='ERROR'):
            SecurityLogger.log_attempts_exhausted('u-1', 'email', 'token-1')

        mock_capture.assert_called_once()

    @patch('apps.core.logging.sentry_sdk.capture_message')
    def test_non_critical_event_not_sent_to_sentry(self, mock_capture):
        with self.assertLogs('security', level='INFO'):
            SecurityLogger.log_step_up_flagged('u-1', 'church-1', 'pastor')

        mock_capture.assert_not_called()

    @patch('apps.core.logging.sentry_sdk.capture_message')
    def test_cross_tenant_delegation_is_critical(self, mock_capture):
        with self.assertLogs('security', level='WARNING') as cm:
            SecurityLogger.log_delegation_denied('admin-1', 'church-2', 'pastor', 'no_tenant_authority')

        self.assertEqual(cm.records[0].event_type, 'delegation_denied_cross_tenant')
        mock_capture.assert_called_once()
