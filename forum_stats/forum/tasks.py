from __future__ import annotations

from typing import Any, Optional

from celery import shared_task
from celery.utils.log import get_task_logger
from django.conf import settings

from forum.services import recount
from forum.services.metadata import MetadataStoreError

logger = get_task_logger(__name__)


def _recount_queue() -> str:
    return getattr(settings, "FORUM_RECOUNT_QUEUE", "recount")


@shared_task(
    bind=True,
    name="forum.tasks.recount_forum_task",
    autoretry_for=(MetadataStoreError,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def recount_forum_task(self, forum_id: int) -> dict[str, Any]:
    """Recount a single forum on a worker."""
    aggregate = recount.recount_forum(forum_id)
    if aggregate is None:
        logger.info("Recount task skipped unknown forum %s", forum_id)
        return {"status": "skipped", "forum_id": forum_id}
    return {"status": "ok", "aggregate": aggregate.as_dict()}


@shared_task(bind=True, name="forum.tasks.recount_subtree_task")
def recount_subtree_task(self, root_id: Optional[int] = None) -> dict[str, Any]:
    """Fan a subtree recount out as one task per forum."""
    forum_ids = recount.forum_ids_in_subtree(root_id)
    queue = _recount_queue()
    for forum_id in forum_ids:
        recount_forum_task.apply_async(args=(forum_id,), queue=queue)
    logger.info("Queued %d forum recount(s) under %s on %s", len(forum_ids), root_id, queue)
    return {"status": "queued", "root_id": root_id, "forums": forum_ids}
