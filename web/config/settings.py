"""Django settings for the order orchestration gateway.

Every deployment-specific value is read from the environment with
``os.getenv``; defaults target local development on SQLite with the
in-process payments stub.
"""

import os
from pathlib import Path


def _env_bool(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-insecure-key")
DEBUG = _env_bool("DJANGO_DEBUG", "0")
ALLOWED_HOSTS = [h for h in os.getenv("DJANGO_ALLOWED_HOSTS", "*").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "rest_framework",
    "apps.orders",
    "apps.reports",
    "apps.monitoring",
]

MIDDLEWARE = [
    "gateway.middleware.RequestIdMiddleware",
    "gateway.middleware.ApiSizeLimitMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"

if os.getenv("DB_ENGINE", "sqlite") == "postgresql":
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "HOST": os.getenv("DB_HOST", "localhost"),
            "PORT": os.getenv("DB_PORT", "5432"),
            "NAME": os.getenv("DB_NAME", "orders"),
            "USER": os.getenv("DB_USER", "orders"),
            "PASSWORD": os.getenv("DB_PASSWORD", ""),
            "ATOMIC_REQUESTS": False,
            "CONN_MAX_AGE": int(os.getenv("DB_CONN_MAX_AGE", "60")),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": os.getenv("DB_NAME", str(BASE_DIR / "db.sqlite3")),
            # SQLite has no row locks: writers take the database lock on BEGIN
            "OPTIONS": {"transaction_mode": "IMMEDIATE", "timeout": 20},
            # file-backed so threaded tests share one database across connections
            "TEST": {"NAME": os.getenv("DB_TEST_NAME", str(BASE_DIR / "test-db.sqlite3"))},
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"
USE_TZ = True
TIME_ZONE = os.getenv("TIME_ZONE", "UTC")

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "orders-gateway",
    }
}

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": [],
    "UNAUTHENTICATED_USER": None,
    "DEFAULT_RENDERER_CLASSES": ["rest_framework.renderers.JSONRenderer"],
    "DEFAULT_THROTTLE_RATES": {
        "orders_list": os.getenv("THROTTLE_ORDERS_LIST", "120/min"),
        "orders_create": os.getenv("THROTTLE_ORDERS_CREATE", "30/min"),
        "orders_detail": os.getenv("THROTTLE_ORDERS_DETAIL", "120/min"),
        "products": os.getenv("THROTTLE_PRODUCTS", "120/min"),
    },
}

# Upstream services
USE_HTTP_ADAPTERS = _env_bool("USE_HTTP_ADAPTERS", "0")
PAYMENTS_BASE_URL = os.getenv("PAYMENTS_BASE_URL", "http://payments:9002")
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "EUR")

HTTP_TIMEOUT_SECS = float(os.getenv("HTTP_TIMEOUT_SECS", "2.0"))
HTTP_RETRY_MAX = int(os.getenv("HTTP_RETRY_MAX", "3"))
HTTP_RETRY_BACKOFF_BASE = float(os.getenv("HTTP_RETRY_BACKOFF_BASE", "0.15"))
HTTP_RETRY_MAX_SLEEP = float(os.getenv("HTTP_RETRY_MAX_SLEEP", "0.5"))
HTTP_CIRCUIT_FAIL_THRESHOLD = int(os.getenv("HTTP_CIRCUIT_FAIL_THRESHOLD", "5"))
HTTP_CIRCUIT_RESET_TIMEOUT = float(os.getenv("HTTP_CIRCUIT_RESET_TIMEOUT", "30"))

# Revenue reporting
REVENUE_VERIFY_URL = os.getenv("REVENUE_VERIFY_URL", "https://revenue-verifier.com")
REVENUE_REPORT_URL = os.getenv("REVENUE_REPORT_URL", "https://revenue-reporting.com/reports")
REVENUE_CONFIRM_URL = os.getenv("REVENUE_CONFIRM_URL", "https://revenue-reporting.com/reports/confirm")
REVENUE_CACHE_TTL = int(os.getenv("REVENUE_CACHE_TTL", "3600"))

API_MAX_BYTES = int(os.getenv("API_MAX_BYTES", str(1024 * 1024)))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "request_id": {"()": "gateway.logging_filters.RequestIdFilter"},
    },
    "formatters": {
        "json": {
            "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
            "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "filters": ["request_id"],
        },
    },
    "root": {"handlers": ["console"], "level": LOG_LEVEL},
    "loggers": {
        "django": {"handlers": ["console"], "level": "WARNING", "propagate": False},
    },
}
