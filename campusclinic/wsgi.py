"""
WSGI config for the campus clinic backend.

Exposes the WSGI callable as ``application`` for gunicorn/uwsgi. Websocket
alerts need the ASGI entrypoint in :mod:`campusclinic.asgi` instead.
"""
import os

from django.core.wsgi import get_wsgi_application  # type: ignore

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'campusclinic.settings')

application = get_wsgi_application()
