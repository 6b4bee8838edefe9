"""
RBAC signals for automatic catalog seeding.

Mirrors the static role catalog into the database after every migrate run.
"""
import logging

from django.db.models.signals import post_migrate
from django.dispatch import receiver

logger = logging.getLogger(__name__)


@receiver(post_migrate)
def seed_role_catalog(sender, app_config=None, using='default', **kwargs):
    """
    Upsert roles, permissions and role permissions once the rbac tables exist.

    post_migrate fires once per installed app; only the rbac app's signal
    triggers seeding. Seeding is idempotent.
    """
    if app_config is None or app_config.name != 'apps.rbac':
        return

    # Import here to avoid importing models before the app registry is ready
    from apps.rbac.registry import get_default_registry

    stats = get_default_registry().initialize()
    logger.info("Role catalog seeded after migrate", extra=stats)
