"""
Celery tasks for two-factor maintenance.
"""
import logging

from celery import shared_task

from apps.core.tasks import LoggedTask

logger = logging.getLogger(__name__)


@shared_task(bind=True, base=LoggedTask, max_retries=3)
def cleanup_expired_verification_tokens(self):
    """
    Remove verification tokens past their expiry.

    Scheduled through Celery Beat. Used and unused tokens are both removed;
    live tokens are never touched.

    Returns:
        dict: Summary of the sweep
    """
    from apps.twofactor.services.verification_service import VerificationService

    deleted = VerificationService().cleanup_expired()
    logger.info(f"Verification token sweep removed {deleted} tokens")
    return {'status': 'success', 'deleted': deleted}
