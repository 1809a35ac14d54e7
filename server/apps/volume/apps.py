"""Django app configuration for volume app."""

from django.apps import AppConfig


class VolumeConfig(AppConfig):
    """Configuration for volume app."""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'server.apps.volume'
    verbose_name = 'Volume'
