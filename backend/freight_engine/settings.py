"""
Django settings for the freight billing engine.

Everything environment-specific is read from environment variables so the
same module serves development, tests and production.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "dev-insecure-freight-engine-key")
DEBUG = env_bool("DJANGO_DEBUG", True)
ALLOWED_HOSTS = [h for h in os.environ.get("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "accounts",
    "core",
    "pricing",
    "packages",
    "shipments",
    "wallet",
    "invoicing",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
]

ROOT_URLCONF = "freight_engine.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

if os.environ.get("POSTGRES_DB"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.environ["POSTGRES_DB"],
            "USER": os.environ.get("POSTGRES_USER", "postgres"),
            "PASSWORD": os.environ.get("POSTGRES_PASSWORD", ""),
            "HOST": os.environ.get("POSTGRES_HOST", "localhost"),
            "PORT": os.environ.get("POSTGRES_PORT", "5432"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": os.environ.get("SQLITE_PATH", str(BASE_DIR / "db.sqlite3")),
        }
    }

AUTH_USER_MODEL = "accounts.CustomUser"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True
STATIC_URL = "static/"

# Warehouse photos and payment proofs; models store paths relative to this root.
MEDIA_URL = "uploads/"
MEDIA_ROOT = os.environ.get("FREIGHT_MEDIA_ROOT", str(BASE_DIR / "uploads"))

REST_FRAMEWORK = {
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.IsAuthenticated"],
}

# Engine options. Rates themselves live in the database (core.SystemSetting
# "rates_config") so they can be republished without a deploy.
FREIGHT_ENGINE = {
    "STRICT_CATEGORIES": env_bool("FREIGHT_STRICT_CATEGORIES", False),
    "DEFAULT_CATEGORY": os.environ.get("FREIGHT_DEFAULT_CATEGORY", "general"),
    "NOTIFICATION_SINK": os.environ.get(
        "FREIGHT_NOTIFICATION_SINK", "core.notifications.DatabaseNotificationSink"
    ),
    "INVOICE_PROVIDER": os.environ.get("FREIGHT_INVOICE_PROVIDER", "null"),
    "INVOICE_API_URL": os.environ.get("FREIGHT_INVOICE_API_URL", ""),
    "INVOICE_API_KEY": os.environ.get("FREIGHT_INVOICE_API_KEY", ""),
    "INVOICE_API_TIMEOUT": int(os.environ.get("FREIGHT_INVOICE_API_TIMEOUT", "15")),
    # Seconds an ISSUING claim is honoured before another caller may take it over.
    "INVOICE_CLAIM_LEASE_SECONDS": int(os.environ.get("FREIGHT_INVOICE_CLAIM_LEASE_SECONDS", "300")),
    # How often each process compares its rate table with the stored version (0 = every read).
    "RATE_TABLE_CHECK_SECONDS": float(os.environ.get("FREIGHT_RATE_TABLE_CHECK_SECONDS", "0")),
}

LOG_LEVEL = os.environ.get("FREIGHT_LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        app: {"level": LOG_LEVEL}
        for app in ("core", "pricing", "packages", "shipments", "wallet", "invoicing")
    },
}
