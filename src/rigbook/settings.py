"""Django settings for the Rigbook inventory service."""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get(
    "SECRET_KEY", "dev-secret-key-change-in-production"
)

DEBUG = os.environ.get("DEBUG", "True").lower() in ("true", "1", "yes")

ALLOWED_HOSTS = [
    h.strip()
    for h in os.environ.get("ALLOWED_HOSTS", "localhost,127.0.0.1").split(",")
]

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "inventory",
]

MIDDLEWARE = []

# Database configuration
DATABASE_URL = os.environ.get("DATABASE_URL", "")
if DATABASE_URL:
    import re

    match = re.match(
        r"postgres://(?P<user>[^:]+):(?P<password>[^@]+)@"
        r"(?P<host>[^:]+):(?P<port>\d+)/(?P<name>.+)",
        DATABASE_URL,
    )
    if match:
        DATABASES = {
            "default": {
                "ENGINE": "django.db.backends.postgresql",
                "NAME": match.group("name"),
                "USER": match.group("user"),
                "PASSWORD": match.group("password"),
                "HOST": match.group("host"),
                "PORT": match.group("port"),
            }
        }
    else:
        DATABASES = {
            "default": {
                "ENGINE": "django.db.backends.sqlite3",
                "NAME": BASE_DIR / "db.sqlite3",
            }
        }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

LANGUAGE_CODE = "en-us"
TIME_ZONE = os.environ.get("TIME_ZONE", "UTC")
USE_I18N = True
USE_TZ = True

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# Inventory configuration
INVENTORY_DEFAULT_BOOKING_STATUS = os.environ.get(
    "INVENTORY_DEFAULT_BOOKING_STATUS", "pending"
)

# Re-read overlapping bookings after a blocking write and undo the booking
# that became blocking later (see inventory.services.bookings).
INVENTORY_VERIFY_BOOKING_WRITES = os.environ.get(
    "INVENTORY_VERIFY_BOOKING_WRITES", "True"
).lower() in ("true", "1", "yes")

# Check-in condition ratings that send the asset to "broken"
INVENTORY_DAMAGE_RATINGS = tuple(
    r.strip()
    for r in os.environ.get(
        "INVENTORY_DAMAGE_RATINGS", "damaged,poor"
    ).split(",")
    if r.strip()
)

INVENTORY_ASSET_NUMBER_PREFIX = os.environ.get(
    "INVENTORY_ASSET_NUMBER_PREFIX", "ASSET"
)

INVENTORY_LOG_LEVEL = os.environ.get("INVENTORY_LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
        "inventory": {
            "handlers": ["console"],
            "level": INVENTORY_LOG_LEVEL,
            "propagate": False,
        },
    },
}

# Startup validation
from django.core.exceptions import ImproperlyConfigured

_missing = []

# In production, SECRET_KEY must be explicitly set
if not DEBUG and SECRET_KEY == "dev-secret-key-change-in-production":
    _missing.append("SECRET_KEY")

if _missing:
    raise ImproperlyConfigured(
        f"Missing required environment variable(s): {', '.join(_missing)}."
    )

if INVENTORY_DEFAULT_BOOKING_STATUS not in ("pending", "approved"):
    raise ImproperlyConfigured(
        "INVENTORY_DEFAULT_BOOKING_STATUS must be 'pending' or 'approved', "
        f"not '{INVENTORY_DEFAULT_BOOKING_STATUS}'."
    )
