"""Typed access to the forum/topic/reply tree.

This is the only place that looks at ``Node.node_type``: everything handed
back is already a :class:`~forum.models.Forum`, :class:`~forum.models.Topic`
or :class:`~forum.models.Reply`, so the rest of the engine dispatches with
``isinstance`` and always passes node ids explicitly.
"""
from __future__ import annotations

import logging
from collections import deque
from datetime import datetime
from functools import reduce
from operator import or_
from typing import Optional, Sequence

from django.db import transaction
from django.db.models import Exists, OuterRef, Q
from django.utils import timezone

from forum.models import Agent, Forum, Node, NodeMeta, Reply, Topic
from forum.services import metadata

logger = logging.getLogger(__name__)

VISIBILITY_KEY = metadata.meta_key("visibility")
RESTRICTED_VISIBILITY = ("private", "hidden")


def get_node(node_id: Optional[int]) -> Optional[Node]:
    """Return the node as its Forum/Topic/Reply variant, or ``None``."""

    if not node_id:
        return None
    node = Node.objects.filter(pk=node_id).first()
    if node is None:
        return None
    return node.as_variant()


def get_forum(forum_id: Optional[int]) -> Optional[Forum]:
    node = get_node(forum_id)
    return node if isinstance(node, Forum) else None


def children(
    parent_id: int,
    node_type: Optional[str] = None,
    publish_state: Optional[str] = Node.STATE_PUBLISH,
) -> list[Node]:
    """Direct children of ``parent_id``, oldest first.

    ``publish_state=None`` lists children in every state.
    """

    queryset = Node.objects.filter(parent_id=parent_id)
    if node_type:
        queryset = queryset.filter(node_type=node_type)
    if publish_state:
        queryset = queryset.filter(publish_state=publish_state)
    return [node.as_variant() for node in queryset.order_by("created_at", "id")]


def parent_id_of(node_id: int) -> Optional[int]:
    return Node.objects.filter(pk=node_id).values_list("parent_id", flat=True).first()


def ancestors(node_id: int) -> list[int]:
    """Ancestor ids of ``node_id``, immediate parent first, root last."""

    chain: list[int] = []
    seen = {node_id}
    cursor = parent_id_of(node_id)
    while cursor is not None:
        if cursor in seen:
            logger.error("Cycle detected in parent chain of node %s at %s", node_id, cursor)
            break
        chain.append(cursor)
        seen.add(cursor)
        cursor = parent_id_of(cursor)
    return chain


def owning_forum_id(node: Optional[Node]) -> Optional[int]:
    """Resolve the forum a node counts towards.

    A forum owns itself, a topic belongs to its parent forum and a reply to
    the forum of its topic.
    """

    if isinstance(node, Forum):
        return node.pk
    if isinstance(node, Topic):
        return node.parent_id
    if isinstance(node, Reply):
        return parent_id_of(node.parent_id) if node.parent_id else None
    return None


def resolve_forum_id(node_id: Optional[int]) -> Optional[int]:
    return owning_forum_id(get_node(node_id))


def subforums(forum_id: int, *, include_private: bool = False) -> list[Forum]:
    """Published child forums ordered by position then title.

    Private and hidden forums are left out unless ``include_private`` is set.
    """

    if not forum_id:
        return []
    queryset = Forum.objects.published().filter(parent_id=forum_id)
    if not include_private:
        restricted = NodeMeta.objects.filter(
            reduce(or_, (Q(value=value) for value in RESTRICTED_VISIBILITY)),
            node_id=OuterRef("pk"),
            key=VISIBILITY_KEY,
        )
        queryset = queryset.exclude(Exists(restricted))
    return list(queryset.order_by("position", "title", "id"))


def _create(model, *, parent: Optional[Node], author: Optional[Agent], title: str, content: str,
            created_at: Optional[datetime], publish_state: str, position: int = 0) -> Node:
    node = model(
        parent=parent,
        author=author,
        title=title,
        content=content,
        publish_state=publish_state,
        position=position,
        created_at=created_at or timezone.now(),
    )
    node.node_type = model.objects.node_type
    node.full_clean()
    with transaction.atomic():
        node.save()
    return node


def create_forum(title: str, *, parent: Optional[Forum] = None, author: Optional[Agent] = None,
                 content: str = "", created_at: Optional[datetime] = None,
                 publish_state: str = Node.STATE_PUBLISH, position: int = 0) -> Forum:
    return _create(Forum, parent=parent, author=author, title=title, content=content,
                   created_at=created_at, publish_state=publish_state, position=position)


def create_topic(forum: Forum, title: str, *, author: Optional[Agent] = None, content: str = "",
                 created_at: Optional[datetime] = None, publish_state: str = Node.STATE_PUBLISH) -> Topic:
    return _create(Topic, parent=forum, author=author, title=title, content=content,
                   created_at=created_at, publish_state=publish_state)


def create_reply(topic: Topic, *, author: Optional[Agent] = None, content: str = "", title: str = "",
                 created_at: Optional[datetime] = None, publish_state: str = Node.STATE_PUBLISH) -> Reply:
    return _create(Reply, parent=topic, author=author, title=title, content=content,
                   created_at=created_at, publish_state=publish_state)


def forums_breadth_first(root_id: Optional[int] = None) -> Sequence[int]:
    """Forum ids of a subtree, parents before children.

    With ``root_id=None`` every root forum (and its descendants) is walked.
    """

    if root_id is None:
        frontier = deque(Forum.objects.filter(parent__isnull=True).order_by("position", "id").values_list("pk", flat=True))
    else:
        frontier = deque([root_id] if Forum.objects.filter(pk=root_id).exists() else [])
    ordered: list[int] = []
    seen: set[int] = set()
    while frontier:
        forum_id = frontier.popleft()
        if forum_id in seen:
            continue
        seen.add(forum_id)
        ordered.append(forum_id)
        frontier.extend(
            Forum.objects.filter(parent_id=forum_id).order_by("position", "id").values_list("pk", flat=True)
        )
    return ordered
