"""WSGI config for the upload server.

It exposes the WSGI callable as a module-level variable named
``application``. The ``run_upload_server`` management command serves it
with cheroot.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'server.settings')

application = get_wsgi_application()
