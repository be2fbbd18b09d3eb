"""Translate content tree events into aggregate cache updates.

Creation takes the fast path: the owning forum's last topic/reply pointer
is moved directly and only the counters are invalidated. Removal,
reparenting and publish-state changes invalidate, since a pointer can not
be moved backwards without a rescan.
"""
from __future__ import annotations

import logging
from typing import Optional

from forum.models import Forum, Node, Reply, Topic
from forum.services import aggregates, content_tree, freshness
from forum.services.aggregates import COUNT_METRICS, UNSET, Metric

logger = logging.getLogger(__name__)

CHILD_METRICS = COUNT_METRICS + (Metric.LAST_TOPIC_ID, Metric.LAST_REPLY_ID)


def topic_created(topic: Topic) -> None:
    forum_id = topic.parent_id
    if not forum_id:
        return
    aggregates.invalidate(forum_id, *COUNT_METRICS)
    if not topic.is_published:
        return
    current = aggregates.stored_value(forum_id, Metric.LAST_TOPIC_ID)
    if current is UNSET:
        return
    if freshness.is_newer(topic.pk, current):
        aggregates.set_last_topic(forum_id, topic.pk)


def reply_created(reply: Reply) -> None:
    forum_id = content_tree.owning_forum_id(reply)
    if not forum_id:
        return
    aggregates.invalidate(forum_id, Metric.REPLY_COUNT, Metric.VOICE_COUNT)
    if not reply.is_published:
        return
    current = aggregates.stored_value(forum_id, Metric.LAST_REPLY_ID)
    if current is UNSET:
        # Freshness may still point at a topic time; let it recompose.
        aggregates.invalidate(forum_id, Metric.LAST_REPLY_ID)
        return
    if freshness.is_newer(reply.pk, current):
        aggregates.set_last_reply(forum_id, reply.pk)


def subforums_changed(parent_id: Optional[int]) -> None:
    # The placeholder count only moves through set_subforum_count().
    if parent_id and aggregates.exact_subforum_count_enabled():
        aggregates.invalidate(parent_id, Metric.SUBFORUM_COUNT)


def forum_created(forum: Forum) -> None:
    subforums_changed(forum.parent_id)


def children_changed(forum_id: Optional[int]) -> None:
    """A topic or reply of ``forum_id`` went away or stopped counting."""

    if forum_id:
        aggregates.invalidate(forum_id, *CHILD_METRICS)


def topic_removed(forum_id: Optional[int]) -> None:
    children_changed(forum_id)


def reply_removed(forum_id: Optional[int]) -> None:
    children_changed(forum_id)


def forum_removed(parent_id: Optional[int]) -> None:
    subforums_changed(parent_id)


def node_removed(node: Node, forum_id: Optional[int]) -> None:
    """Dispatch a deletion; ``forum_id`` is the owning forum captured before the delete."""

    if isinstance(node, Forum):
        forum_removed(node.parent_id)
    elif isinstance(node, Topic):
        topic_removed(forum_id)
    elif isinstance(node, Reply):
        reply_removed(forum_id)


def node_reparented(node: Node, old_parent_id: Optional[int]) -> None:
    if isinstance(node, Forum):
        forum_removed(old_parent_id)
        forum_created(node)
        return
    if isinstance(node, Topic):
        old_forum_id = old_parent_id
    elif isinstance(node, Reply):
        old_forum_id = content_tree.parent_id_of(old_parent_id) if old_parent_id else None
    else:
        return
    new_forum_id = content_tree.owning_forum_id(node)
    logger.debug("Node %s moved from forum %s to forum %s", node.pk, old_forum_id, new_forum_id)
    children_changed(old_forum_id)
    if new_forum_id != old_forum_id:
        children_changed(new_forum_id)


def publish_state_changed(node: Node) -> None:
    if isinstance(node, Forum):
        forum_removed(node.parent_id)
        return
    children_changed(content_tree.owning_forum_id(node))


def status_changed(forum_id: int) -> None:
    # Closed/open is resolved live and never feeds a counter.
    logger.debug("Status changed for forum %s; no aggregates to refresh", forum_id)


def visibility_changed(forum_id: int) -> None:
    # Counters are not filtered by visibility, so nothing is invalidated.
    logger.debug("Visibility changed for forum %s; no aggregates to refresh", forum_id)
