"""
ASGI config for portfolioduel project.

It exposes the ASGI callable as a module-level variable named ``application``.

For more information on this file, see
https://docs.djangoproject.com/en/5.2/howto/deployment/asgi/
"""

import os

from channels.auth import AuthMiddlewareStack
from channels.routing import ProtocolTypeRouter, URLRouter
from django.core.asgi import get_asgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'portfolioduel.settings')

django_asgi_app = get_asgi_application()

import battles.routing  # noqa: E402  (needs the app registry loaded above)

# Serve HTTP via Django, and WebSockets via Channels routing.
application = ProtocolTypeRouter(
    {
        "http": django_asgi_app,
        "websocket": AuthMiddlewareStack(URLRouter(battles.routing.websocket_urlpatterns)),
    }
)
