"""Django settings for the forum_stats project.

The project has no web surface of its own: it carries the content tree
models, the aggregate engine and the Celery workers that recount forums.
Everything environment-specific is read from the process environment, with
a `.env` file at the repository root loaded first when present.
"""
from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

load_dotenv(BASE_DIR.parent / ".env")


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() not in {"0", "false", "off", "no"}


# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "change-me-to-a-unique-string")

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = _env_flag("DJANGO_DEBUG", "1")

ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1").split(",") if h.strip()]


# Application definition
INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'forum',
]

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {},
    },
]


# Database
# https://docs.djangoproject.com/en/4.2/ref/settings/#databases
DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': os.getenv("FORUM_DB_PATH", str(BASE_DIR / 'db.sqlite3')),
    }
}


# Internationalization
# https://docs.djangoproject.com/en/4.2/topics/i18n/

LANGUAGE_CODE = 'en-us'

TIME_ZONE = 'UTC'

USE_I18N = True

USE_TZ = True


# Default primary key field type
# https://docs.djangoproject.com/en/4.2/ref/settings/#default-auto-field

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


# Logging

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "plain": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "plain"},
    },
    "loggers": {
        "forum": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
    "root": {"handlers": ["console"], "level": "WARNING"},
}


# Aggregate engine

# Count child forums for subforum_count instead of the fixed 0 placeholder.
FORUM_EXACT_SUBFORUM_COUNT = _env_flag("FORUM_EXACT_SUBFORUM_COUNT", "0")
# Keep counters in step with saves/deletes through model signals.
FORUM_SIGNALS_ENABLED = _env_flag("FORUM_SIGNALS_ENABLED", "1")
FORUM_RECOUNT_QUEUE = os.getenv("FORUM_RECOUNT_QUEUE", "recount")
FORUM_RECOUNT_INTERVAL_SECONDS = int(os.getenv("FORUM_RECOUNT_INTERVAL_SECONDS", "0"))


# Celery

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND") or None
CELERY_TASK_ALWAYS_EAGER = _env_flag("CELERY_TASK_ALWAYS_EAGER", "0")
CELERY_TASK_ROUTES = {
    "forum.tasks.recount_forum_task": {"queue": FORUM_RECOUNT_QUEUE},
    "forum.tasks.recount_subtree_task": {"queue": FORUM_RECOUNT_QUEUE},
}
