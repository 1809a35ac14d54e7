"""Settings for local development and tests."""

from server.settings.components import config

DEBUG = True

SECRET_KEY = config(
    'DJANGO_SECRET_KEY',
    default='development-only-secret-key-do-not-use-in-production',
)

ALLOWED_HOSTS = ['localhost', '127.0.0.1', '[::1]', 'testserver']
