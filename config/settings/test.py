"""Settings for the test suite: in-memory SQLite, fixed provider secrets."""

from .base import *  # noqa: F401,F403

DEBUG = False

SECRET_KEY = "test-secret-key"
ALLOWED_HOSTS = ["*"]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

STORAGES = {
    "default": {"BACKEND": "django.core.files.storage.InMemoryStorage"},
    "staticfiles": {"BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage"},
}

BOOKING_TIME_ZONE = "Asia/Tashkent"
BOOKING_SERVICE_FEE_PERCENT = "0"

CLICK_SERVICE_ID = "12345"
CLICK_MERCHANT_USER_ID = "777"
CLICK_SECRET_KEY = "click-test-secret"

PAYME_MERCHANT_ID = "payme-merchant"
PAYME_KEY = "payme-test-key"

OCTO_SHOP_ID = 42
OCTO_SECRET = "octo-test-secret"
OCTO_API_URL = "https://octo.test"
OCTO_NOTIFY_URL = "https://spacebook.test/api/v1/payments/octo/notify/"
