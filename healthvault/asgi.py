"""
ASGI config for the HealthVault project.

Plain HTTP only; there are no websocket routes.
"""
import os

from django.core.asgi import get_asgi_application  # type: ignore

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "healthvault.settings")

application = get_asgi_application()
