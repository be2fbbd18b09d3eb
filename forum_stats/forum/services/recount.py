"""Full recount of forum aggregates, for repairs and after bulk imports."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from django.db import transaction

from forum.services import aggregates, content_tree
from forum.services.aggregates import ForumAggregate

logger = logging.getLogger(__name__)


@dataclass
class RecountReport:
    root_id: Optional[int]
    recounted: list[int] = field(default_factory=list)
    results: dict[int, ForumAggregate] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.recounted)


def recount_forum(forum_id: int) -> Optional[ForumAggregate]:
    """Recompute and overwrite every stored metric of one forum.

    Returns ``None`` when ``forum_id`` is not a forum. Running it twice with
    no change in between stores and returns the same aggregate.
    """

    if content_tree.get_forum(forum_id) is None:
        logger.info("Recount skipped: %s is not a forum", forum_id)
        return None
    with transaction.atomic():
        aggregate = aggregates.compute_aggregate(forum_id)
        aggregates.store_aggregate(aggregate)
    logger.debug("Recounted forum %s: %s", forum_id, aggregate)
    return aggregate


def forum_ids_in_subtree(root_id: Optional[int] = None) -> list[int]:
    return list(content_tree.forums_breadth_first(root_id))


def recount_subtree(root_id: Optional[int] = None) -> RecountReport:
    """Recount ``root_id`` and every forum below it (all forums when ``None``).

    Each forum commits on its own. If one fails the walk stops and the error
    propagates; forums already done keep their new values and the rest keep
    whatever they had before.
    """

    report = RecountReport(root_id=root_id)
    for forum_id in forum_ids_in_subtree(root_id):
        aggregate = recount_forum(forum_id)
        if aggregate is None:
            continue
        report.recounted.append(forum_id)
        report.results[forum_id] = aggregate
    logger.info("Recounted %d forum(s) under %s", report.total, root_id if root_id is not None else "all roots")
    return report
