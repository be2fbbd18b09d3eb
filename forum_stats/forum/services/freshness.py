"""Most-recent-activity ("freshness") lookups for forums.

A forum's last activity is the time of its newest reply when it has any
reply at all, and only otherwise the time of its newest topic. The two are
never compared against each other.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from forum.models import Node, Reply, Topic


def newest_topic_id(forum_id: int) -> Optional[int]:
    """Id of the newest published topic directly under ``forum_id``."""

    return (
        Topic.objects.published()
        .filter(parent_id=forum_id)
        .newest_first()
        .values_list("pk", flat=True)
        .first()
    )


def newest_reply_id(forum_id: int) -> Optional[int]:
    """Id of the newest published reply in any topic of ``forum_id``."""

    return (
        Reply.objects.published()
        .filter(parent__parent_id=forum_id)
        .newest_first()
        .values_list("pk", flat=True)
        .first()
    )


def activity_time(node_id: Optional[int]) -> Optional[datetime]:
    if not node_id:
        return None
    return Node.objects.filter(pk=node_id).values_list("created_at", flat=True).first()


def author_of(node_id: Optional[int]) -> Optional[int]:
    if not node_id:
        return None
    return Node.objects.filter(pk=node_id).values_list("author_id", flat=True).first()


def compose_last_active(last_reply_id: Optional[int], last_topic_id: Optional[int]) -> Optional[datetime]:
    if last_reply_id:
        return activity_time(last_reply_id)
    if last_topic_id:
        return activity_time(last_topic_id)
    return None


def freshness_target(last_reply_id: Optional[int], last_topic_id: Optional[int]) -> Optional[int]:
    """Node a "last active" link should point at: the reply, else the topic."""

    return last_reply_id or last_topic_id or None


def is_newer(candidate_id: int, current_id: Optional[int]) -> bool:
    """True when ``candidate_id`` sorts after ``current_id`` (time, then id)."""

    if not current_id:
        return True
    rows = dict(Node.objects.filter(pk__in=[candidate_id, current_id]).values_list("pk", "created_at"))
    if current_id not in rows:
        return True
    if candidate_id not in rows:
        return False
    return (rows[candidate_id], candidate_id) > (rows[current_id], current_id)
