from .settings import *  # noqa: F401,F403

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

JWT_SECRET = "test-secret-with-at-least-32-bytes-of-key"
SIGFARMA_ENV = "development"
IS_PRODUCTION = False
AUTH_COOKIE_SECURE = False
