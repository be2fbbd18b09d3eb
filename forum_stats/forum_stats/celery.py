from __future__ import annotations

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "forum_stats.settings")


app = Celery("forum_stats")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()


def recount_interval() -> float:
    """Seconds between periodic full recounts; ``0`` disables them."""

    from django.conf import settings

    interval = float(getattr(settings, "FORUM_RECOUNT_INTERVAL_SECONDS", 0) or 0)
    if interval <= 0:
        return 0.0
    return max(60.0, interval)


@app.on_after_configure.connect
def _install_beat_schedule(sender, **kwargs) -> None:
    interval = recount_interval()
    if not interval:
        return
    from django.conf import settings

    queue_name = getattr(settings, "FORUM_RECOUNT_QUEUE", "recount")
    sender.add_periodic_task(
        interval,
        sender.signature("forum.tasks.recount_subtree_task"),
        name="forum.recount_all",
        queue=queue_name,
    )


__all__ = ("app",)
