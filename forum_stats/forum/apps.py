from __future__ import annotations

import logging

from django.apps import AppConfig

logger = logging.getLogger(__name__)


class ForumConfig(AppConfig):
    """Configuration for the forum app."""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'forum'

    def ready(self) -> None:
        from django.conf import settings  # noqa: WPS433 - runtime import to avoid config issues

        from . import signals  # noqa: WPS433 - models must be loaded first

        if not getattr(settings, "FORUM_SIGNALS_ENABLED", True):
            logger.info("Forum aggregate signals disabled; counters refresh only on recount or invalidation.")
            return
        signals.connect()
