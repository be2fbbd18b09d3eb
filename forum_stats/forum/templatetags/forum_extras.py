from __future__ import annotations

from typing import Any, Optional

from django import template
from django.utils import timezone
from django.utils.timesince import timesince

from forum.models import Node
from forum.services import aggregates, status

register = template.Library()


def _forum_id(value: Any) -> Optional[int]:
    if isinstance(value, Node):
        return value.pk
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@register.filter(name="forum_topic_count")
def forum_topic_count(value: Any) -> int:
    return aggregates.forum_topic_count(_forum_id(value))


@register.filter(name="forum_reply_count")
def forum_reply_count(value: Any) -> int:
    return aggregates.forum_reply_count(_forum_id(value))


@register.filter(name="forum_voice_count")
def forum_voice_count(value: Any) -> int:
    return aggregates.forum_voice_count(_forum_id(value))


@register.filter(name="forum_subforum_count")
def forum_subforum_count(value: Any) -> int:
    return aggregates.forum_subforum_count(_forum_id(value))


@register.filter(name="forum_last_active")
def forum_last_active(value: Any) -> str:
    """Time since the forum's last activity, or an empty string."""

    last_active = aggregates.forum_last_active(_forum_id(value))
    if last_active is None:
        return ""
    return timesince(last_active, timezone.now())


@register.filter(name="forum_is_closed")
def forum_is_closed(value: Any) -> bool:
    return status.is_closed(_forum_id(value))


@register.filter(name="forum_is_private")
def forum_is_private(value: Any) -> bool:
    return status.is_private(_forum_id(value))


@register.simple_tag(name="forum_css_classes")
def forum_css_classes(value: Any, index: Optional[int] = None) -> str:
    classes = []
    if index is not None:
        classes.append("even" if index % 2 else "odd")
    classes.extend(status.css_classes(_forum_id(value)))
    return " ".join(classes)
