"""Django settings shared by every environment."""

from typing import Final

INSTALLED_APPS: Final = (
    'server.apps.uploads',
    'server.apps.volume',
)

MIDDLEWARE: Final = (
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
)

ROOT_URLCONF = 'server.urls'

WSGI_APPLICATION = 'server.wsgi.application'

# No relational state: uploads live on the volume, part groups in memory
DATABASES: Final[dict[str, dict[str, str]]] = {}

TEMPLATES: Final = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'APP_DIRS': True,
    },
]

LANGUAGE_CODE = 'en-us'

USE_TZ = True
TIME_ZONE = 'UTC'

# Tus hooks and directory API are called without trailing-slash redirects
APPEND_SLASH = False
