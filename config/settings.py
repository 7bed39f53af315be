import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def env_bool(name: str, default: bool = False) -> bool:
    return os.environ.get(name, str(default)).lower() in ("1", "true", "yes", "on")


SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "dev-only-insecure-key")
DEBUG = env_bool("DJANGO_DEBUG", False)
ALLOWED_HOSTS = [h for h in os.environ.get("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "rest_framework",
    "apps.core",
    "apps.users",
    "apps.shop",
    "apps.payments",
    "apps.imports",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
]

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {"context_processors": ["django.template.context_processors.request"]},
    },
]

if os.environ.get("DATABASE_ENGINE", "sqlite") == "postgresql":
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.environ.get("DATABASE_NAME", "shop"),
            "USER": os.environ.get("DATABASE_USER", "shop"),
            "PASSWORD": os.environ.get("DATABASE_PASSWORD", ""),
            "HOST": os.environ.get("DATABASE_HOST", "localhost"),
            "PORT": os.environ.get("DATABASE_PORT", "5432"),
            "CONN_MAX_AGE": 60,
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": os.environ.get("DATABASE_NAME", str(BASE_DIR / "db.sqlite3")),
        }
    }

AUTH_USER_MODEL = "users.User"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"
TIME_ZONE = "Africa/Kigali"
USE_I18N = True
USE_TZ = True

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
        "rest_framework.authentication.BasicAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.IsAuthenticated"],
    "EXCEPTION_HANDLER": "apps.core.exceptions.exception_handler",
}

# Money is stored as integers in the smallest currency unit.
SHOP = {
    "CURRENCY": os.environ.get("SHOP_CURRENCY", "RWF"),
    "CURRENCY_DECIMALS": int(os.environ.get("SHOP_CURRENCY_DECIMALS", "0")),
    "VAT_RATE": os.environ.get("SHOP_VAT_RATE", "0.18"),
    "FREE_SHIPPING_THRESHOLD": int(os.environ.get("SHOP_FREE_SHIPPING_THRESHOLD", "50000")),
    "SHIPPING_FEE": int(os.environ.get("SHOP_SHIPPING_FEE", "5000")),
}

CHECKOUT_TRANSACTION = {
    "LOCK_TIMEOUT_MS": int(os.environ.get("CHECKOUT_LOCK_TIMEOUT_MS", "5000")),
    "STATEMENT_TIMEOUT_MS": int(os.environ.get("CHECKOUT_STATEMENT_TIMEOUT_MS", "10000")),
    "MAX_ATTEMPTS": int(os.environ.get("CHECKOUT_MAX_ATTEMPTS", "3")),
    "BACKOFF": float(os.environ.get("CHECKOUT_BACKOFF", "0.05")),
}

PAYMENTS = {
    "GATEWAY": os.environ.get("PAYMENTS_GATEWAY", "apps.payments.gateway.FlutterwaveGateway"),
    "FLUTTERWAVE_SECRET_KEY": os.environ.get("FLUTTERWAVE_SECRET_KEY", ""),
    "FLUTTERWAVE_BASE_URL": os.environ.get("FLUTTERWAVE_BASE_URL", "https://api.flutterwave.com/v3"),
    "TIMEOUT": float(os.environ.get("PAYMENTS_TIMEOUT", "15")),
    "FRONTEND_URL": os.environ.get("FRONTEND_URL", "http://localhost:5173"),
    "STORE_TITLE": os.environ.get("STORE_TITLE", "Iwanyu Store"),
}

IMPORTS = {
    "UPLOAD_DIR": os.environ.get("IMPORTS_UPLOAD_DIR", str(BASE_DIR / "uploads" / "csv")),
    "MAX_UPLOAD_SIZE": int(os.environ.get("IMPORTS_MAX_UPLOAD_SIZE", str(50 * 1024 * 1024))),
    "DEFAULT_STOCK": int(os.environ.get("IMPORTS_DEFAULT_STOCK", "100")),
    "MAX_REPORTED_ERRORS": 10,
    "FALLBACK_VENDOR": "Imported Products",
    "FALLBACK_CATEGORY": "General",
    "SYSTEM_USER_EMAIL": os.environ.get("IMPORTS_SYSTEM_USER_EMAIL", "system@iwanyu.com"),
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "default"},
    },
    "root": {"handlers": ["console"], "level": os.environ.get("LOG_LEVEL", "INFO")},
}
