"""Production settings.

Sensitive values must come from the environment; a missing secret key or
host list fails at start-up instead of running with a default.
"""

from .base import *  # noqa: F401,F403
from .base import get_env

DEBUG = False

SECRET_KEY = get_env("DJANGO_SECRET_KEY", required=True)
ALLOWED_HOSTS = [host.strip() for host in get_env("DJANGO_ALLOWED_HOSTS", required=True).split(",")]

CSRF_COOKIE_SECURE = True
SESSION_COOKIE_SECURE = True
SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")

CLICK_SECRET_KEY = get_env("CLICK_SECRET_KEY", required=True)
PAYME_KEY = get_env("PAYME_KEY", required=True)
OCTO_SECRET = get_env("OCTO_SECRET", required=True)
