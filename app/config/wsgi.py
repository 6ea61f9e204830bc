"""
WSGI entry point for the settlement service.

The API is plain request/response (no websockets), so any WSGI server
can host it alongside the ASGI callable in config.asgi. Stripe webhooks
are processed inside the request, so worker timeouts must exceed the
Stripe API timeout times its retry budget.

https://docs.djangoproject.com/en/5.2/howto/deployment/wsgi/
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_wsgi_application()
