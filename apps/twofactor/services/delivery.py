"""
Outbound delivery of one-time codes.

Each collaborator wraps one provider and reports success or failure as a
DeliveryResult. Provider errors are logged and returned, never raised.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from django.conf import settings
from django.core.mail import send_mail
from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from apps.core.encryption import mask_destination

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    ok: bool
    error: Optional[str] = None


class EmailDelivery:
    """Sends codes through Django's configured email backend."""

    def __init__(self, from_email: str):
        self.from_email = from_email

    def send(self, to: str, subject: str, body: str) -> DeliveryResult:
        try:
            sent = send_mail(
                subject=subject,
                message=body,
                from_email=self.from_email,
                recipient_list=[to],
                fail_silently=False,
            )
        except Exception as e:
            logger.error(
                f"Email delivery failed: {str(e)}",
                extra={'to': mask_destination(to)},
                exc_info=True
            )
            return DeliveryResult(ok=False, error=str(e))

        if not sent:
            return DeliveryResult(ok=False, error='No message accepted by the email backend')

        logger.info("Verification email sent", extra={'to': mask_destination(to)})
        return DeliveryResult(ok=True)


class TwilioSmsDelivery:
    """Sends codes as SMS through the Twilio REST API."""

    def __init__(self, account_sid: str, auth_token: str, from_number: str, client=None):
        """
        Args:
            account_sid: Twilio Account SID
            auth_token: Twilio Auth Token
            from_number: Sender phone number in E.164 format
            client: Optional pre-built twilio Client
        """
        self.from_number = from_number
        self.client = client or Client(account_sid, auth_token)

    def send(self, to: str, body: str) -> DeliveryResult:
        try:
            message = self.client.messages.create(from_=self.from_number, to=to, body=body)
        except TwilioRestException as e:
            logger.error(
                f"Twilio API error: {e.msg}",
                extra={
                    'to': mask_destination(to),
                    'error_code': e.code,
                    'status': e.status,
                },
                exc_info=True
            )
            return DeliveryResult(ok=False, error=f"Twilio error {e.code}: {e.msg}")
        except Exception as e:
            logger.error(
                f"SMS delivery failed: {str(e)}",
                extra={'to': mask_destination(to)},
                exc_info=True
            )
            return DeliveryResult(ok=False, error=str(e))

        logger.info(
            "Verification SMS sent",
            extra={'message_sid': message.sid, 'to': mask_destination(to), 'status': message.status}
        )
        return DeliveryResult(ok=True)


# Backends that keep messages on this machine instead of delivering them
LOCAL_EMAIL_BACKENDS = frozenset([
    'django.core.mail.backends.console.EmailBackend',
    'django.core.mail.backends.filebased.EmailBackend',
    'django.core.mail.backends.locmem.EmailBackend',
    'django.core.mail.backends.dummy.EmailBackend',
])


def get_delivery(channel: str):
    """
    Return the configured collaborator for a channel, or None.

    Email needs DEFAULT_FROM_EMAIL and a backend that actually delivers
    (local backends only with EMAIL_ALLOW_LOCAL_BACKENDS); SMS needs the
    three TWILIO_* settings.
    """
    if channel == 'email':
        from_email = getattr(settings, 'DEFAULT_FROM_EMAIL', '')
        if not from_email:
            return None
        backend = getattr(settings, 'EMAIL_BACKEND', '')
        if backend in LOCAL_EMAIL_BACKENDS and not getattr(settings, 'EMAIL_ALLOW_LOCAL_BACKENDS', False):
            logger.warning(
                "Email codes disabled: backend does not deliver mail",
                extra={'email_backend': backend}
            )
            return None
        return EmailDelivery(from_email)

    if channel == 'sms':
        account_sid = getattr(settings, 'TWILIO_ACCOUNT_SID', '')
        auth_token = getattr(settings, 'TWILIO_AUTH_TOKEN', '')
        from_number = getattr(settings, 'TWILIO_FROM_NUMBER', '')
        if account_sid and auth_token and from_number:
            return TwilioSmsDelivery(account_sid, auth_token, from_number)
        return None

    return None
