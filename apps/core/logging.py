"""
Structured logging helpers.

- PIIMasker: masks phone numbers, emails, and secrets in log output
- JSONFormatter: one JSON object per log record
- PIIMaskingFilter: masks the message of records rendered by plain formatters
- SecurityLogger: structured security events (verification failures,
  exhausted attempts, denied delegation, step-up flags)
"""
import json
import logging
import re
import traceback
from datetime import datetime

import sentry_sdk
from django.utils import timezone


class PIIMasker:
    """
    Utility class to mask sensitive PII data in logs.
    """

    PHONE_PATTERN = re.compile(r'\+?\d{10,15}')
    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')
    SECRET_PATTERN = re.compile(
        r'(api[_-]?key|token|secret|password|auth|code)["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)',
        re.IGNORECASE
    )

    SENSITIVE_FIELDS = {
        'password', 'secret', 'secret_key', 'totp_secret',
        'email', 'phone', 'phone_e164',
        'code', 'backup_code', 'backup_codes', 'otp',
        'api_key', 'access_token', 'refresh_token', 'auth_token',
        'twilio_auth_token', 'encryption_key',
    }

    @classmethod
    def mask_phone(cls, text):
        """Mask phone numbers in text."""
        if not isinstance(text, str):
            return text
        return cls.PHONE_PATTERN.sub(lambda m: m.group(0)[:3] + '*' * (len(m.group(0)) - 3), text)

    @classmethod
    def mask_email(cls, text):
        """Mask email addresses in text."""
        if not isinstance(text, str):
            return text

        def mask_email_match(match):
            username, _, domain = match.group(0).partition('@')
            masked_username = username[0] + '*' * (len(username) - 1) if len(username) > 1 else username
            return f"{masked_username}@{domain}"

        return cls.EMAIL_PATTERN.sub(mask_email_match, text)

    @classmethod
    def mask_secrets(cls, text):
        """Mask key=value style secrets in text."""
        if not isinstance(text, str):
            return text
        return cls.SECRET_PATTERN.sub(r'\1: ********', text)

    @classmethod
    def mask_text(cls, text):
        """Apply all masking patterns to text."""
        if not isinstance(text, str):
            return text
        text = cls.mask_secrets(text)
        text = cls.mask_email(text)
        text = cls.mask_phone(text)
        return text

    @classmethod
    def mask_dict(cls, data):
        """Recursively mask sensitive data in dictionaries."""
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            if key.lower() in cls.SENSITIVE_FIELDS:
                masked[key] = '********' if value else value
            elif isinstance(value, dict):
                masked[key] = cls.mask_dict(value)
            elif isinstance(value, list):
                masked[key] = [
                    cls.mask_dict(item) if isinstance(item, dict)
                    else cls.mask_text(item) if isinstance(item, str)
                    else item
                    for item in value
                ]
            elif isinstance(value, str):
                masked[key] = cls.mask_text(value)
            else:
                masked[key] = value

        return masked


# Attributes every LogRecord carries; anything else came in through extra=
RESERVED_RECORD_ATTRS = frozenset([
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs', 'message',
    'pathname', 'process', 'processName', 'relativeCreated',
    'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
    'taskName',
])


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON for structured logging.
    Extra fields (user_id, tenant_id, task_id, ...) are copied through,
    with sensitive values masked.
    """

    def format(self, record):
        log_data = {
            'timestamp': datetime.utcnow().isoformat() + 'Z',
            'level': record.levelname,
            'logger': record.name,
            'message': PIIMasker.mask_text(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': PIIMasker.mask_text(str(record.exc_info[1])),
                'traceback': [PIIMasker.mask_text(line) for line in traceback.format_exception(*record.exc_info)],
            }

        for key, value in record.__dict__.items():
            if key in RESERVED_RECORD_ATTRS or key.startswith('_'):
                continue
            if key.lower() in PIIMasker.SENSITIVE_FIELDS:
                log_data[key] = '********'
                continue
            try:
                if isinstance(value, dict):
                    masked_value = PIIMasker.mask_dict(value)
                elif isinstance(value, str):
                    masked_value = PIIMasker.mask_text(value)
                else:
                    masked_value = value

                json.dumps(masked_value)
                log_data[key] = masked_value
            except (TypeError, ValueError):
                log_data[key] = PIIMasker.mask_text(str(value))

        return json.dumps(log_data)


class PIIMaskingFilter(logging.Filter):
    """Mask PII in the rendered message for non-JSON handlers."""

    def filter(self, record):
        record.msg = PIIMasker.mask_text(record.getMessage())
        record.args = ()
        return True


class SecurityLogger:
    """
    Centralized security event logging.

    All events go to the 'security' logger with structured context.
    Critical events are also sent to Sentry for alerting.
    """

    CRITICAL_EVENTS = {
        'verification_attempts_exhausted',
        'delegation_denied_cross_tenant',
        'backup_code_race_lost',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        """
        Log a security event with structured data.

        Example:
            >>> SecurityLogger.log_event(
            ...     'verification_failed',
            ...     user_id='42',
            ...     channel='sms',
            ... )
        """
        logger = logging.getLogger('security')

        log_data = {
            'event_type': event_type,
            'event_at': timezone.now().isoformat(),
        }
        log_data.update(context)
        log_data = PIIMasker.mask_dict(log_data)

        log_method = getattr(logger, level, logger.warning)
        log_method(f"Security event: {event_type}", extra=log_data)

        if event_type in SecurityLogger.CRITICAL_EVENTS:
            sentry_sdk.capture_message(
                f"Critical security event: {event_type}",
                level='error',
            )

    @staticmethod
    def log_verification_failed(user_id: str, channel: str, reason: str, attempts: int = None):
        """Log a failed one-time-code, TOTP, or backup-code verification."""
        SecurityLogger.log_event(
            'verification_failed',
            level='warning',
            user_id=user_id,
            channel=channel,
            reason=reason,
            attempts=attempts,
        )

    @staticmethod
    def log_attempts_exhausted(user_id: str, channel: str, token_id: str):
        """Log a verification token whose attempt budget is used up."""
        SecurityLogger.log_event(
            'verification_attempts_exhausted',
            level='error',
            user_id=user_id,
            channel=channel,
            token_id=token_id,
        )

    @staticmethod
    def log_delegation_denied(actor_id: str, tenant_id: str, subject: str, reason: str):
        """Log a delegation (role, permission or user) the actor is not allowed to perform."""
        event_type = 'delegation_denied_cross_tenant' if reason == 'no_tenant_authority' else 'delegation_denied'
        SecurityLogger.log_event(
            event_type,
            level='warning',
            actor_id=actor_id,
            tenant_id=tenant_id,
            subject=subject,
            reason=reason,
        )

    @staticmethod
    def log_step_up_flagged(user_id: str, tenant_id: str, role_name: str):
        """Log a privileged role granted before two-factor enrollment."""
        SecurityLogger.log_event(
            'step_up_flagged',
            level='info',
            user_id=user_id,
            tenant_id=tenant_id,
            role_name=role_name,
        )
