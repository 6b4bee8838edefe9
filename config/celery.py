"""
Celery configuration for the authorization core.
"""
import os

from celery import Celery

# Set the default Django settings module
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('authz_core')

# Load configuration from Django settings with CELERY_ prefix
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks in all installed apps
app.autodiscover_tasks()


# Celery Beat Schedule for Periodic Tasks
app.conf.beat_schedule = {
    # Sweep expired verification tokens every 15 minutes
    'cleanup-expired-verification-tokens': {
        'task': 'apps.twofactor.tasks.cleanup_expired_verification_tokens',
        'schedule': 900.0,
    },
}

app.conf.timezone = 'UTC'
