"""
RBAC app configuration.
"""
from django.apps import AppConfig


class RbacConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.rbac'
    verbose_name = 'RBAC (Role-Based Access Control)'

    def ready(self):
        """Validate the role catalog and connect signals when app is ready."""
        from apps.rbac.registry import get_default_registry
        import apps.rbac.signals  # noqa

        # A malformed catalog raises ConfigurationError here, at boot
        get_default_registry()
