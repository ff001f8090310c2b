"""
ASGI config for the seller-funds project.

Exposes the ASGI callable as a module-level variable named `application`.
Only plain HTTP is served (admin and health check).
"""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_asgi_application()
