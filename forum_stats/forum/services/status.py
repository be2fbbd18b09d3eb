"""Effective open/closed and public/private state of forums.

Nothing here is cached: every call walks the ancestor chain again.

The two inherited flags follow different rules on purpose:

* closed: a forum is closed if it is closed itself or if any *category*
  ancestor is closed. A closed ancestor that is a plain forum does not
  close its descendants.
* private: a forum is private if it is private itself or if *any*
  ancestor is private, whatever its type.
"""
from __future__ import annotations

import logging
from typing import Optional

from forum.models import Forum
from forum.services import content_tree, hooks, metadata

logger = logging.getLogger(__name__)

TYPE_KEY = metadata.meta_key("type")
STATUS_KEY = metadata.meta_key("status")
VISIBILITY_KEY = content_tree.VISIBILITY_KEY

TYPE_FORUM = "forum"
TYPE_CATEGORY = "category"
STATUS_OPEN = "open"
STATUS_CLOSED = "closed"
VISIBILITY_PUBLIC = "public"
VISIBILITY_PRIVATE = "private"
VISIBILITY_HIDDEN = "hidden"


def forum_type(forum_id: Optional[int]) -> str:
    return _attribute(forum_id, TYPE_KEY, TYPE_FORUM)


def forum_status(forum_id: Optional[int]) -> str:
    return _attribute(forum_id, STATUS_KEY, STATUS_OPEN)


def forum_visibility(forum_id: Optional[int]) -> str:
    return _attribute(forum_id, VISIBILITY_KEY, VISIBILITY_PUBLIC)


def _attribute(forum_id: Optional[int], key: str, default: str) -> str:
    if not forum_id:
        return default
    value = metadata.get(forum_id, key)
    return value if isinstance(value, str) and value else default


def is_category(forum_id: Optional[int]) -> bool:
    return forum_type(forum_id) == TYPE_CATEGORY


def _own_closed(forum_id: int) -> bool:
    return forum_status(forum_id) == STATUS_CLOSED


def _own_private(forum_id: int) -> bool:
    return forum_visibility(forum_id) == VISIBILITY_PRIVATE


def _closed_category_ancestor(forum_id: int) -> Optional[int]:
    """First ancestor that is a closed category, nearest first."""

    for ancestor_id in content_tree.ancestors(forum_id):
        if is_category(ancestor_id) and _own_closed(ancestor_id):
            return ancestor_id
    return None


def _private_ancestor(forum_id: int) -> Optional[int]:
    """First ancestor of any type that is private, nearest first."""

    for ancestor_id in content_tree.ancestors(forum_id):
        if _own_private(ancestor_id):
            return ancestor_id
    return None


def is_closed(forum_id: Optional[int], check_ancestors: bool = True) -> bool:
    if not forum_id or content_tree.get_node(forum_id) is None:
        return False
    if _own_closed(forum_id):
        return True
    if check_ancestors:
        return _closed_category_ancestor(forum_id) is not None
    return False


def is_open(forum_id: Optional[int], check_ancestors: bool = True) -> bool:
    return not is_closed(forum_id, check_ancestors)


def is_private(forum_id: Optional[int], check_ancestors: bool = True) -> bool:
    if not forum_id or content_tree.get_node(forum_id) is None:
        return False
    if _own_private(forum_id):
        return True
    if check_ancestors:
        return _private_ancestor(forum_id) is not None
    return False


def css_classes(forum_id: Optional[int]) -> list[str]:
    classes = []
    if is_category(forum_id):
        classes.append("status-category")
    if is_private(forum_id):
        classes.append("status-private")
    return classes


# -- mutators ---------------------------------------------------------------

def _update(forum_id: int, key: str, value: str) -> Optional[int]:
    forum = content_tree.get_node(forum_id)
    if not isinstance(forum, Forum):
        logger.info("Ignoring %s=%s for non-forum node %s", key, value, forum_id)
        return None
    metadata.set(forum.pk, key, value)
    return forum.pk


def close_forum(forum_id: int) -> Optional[int]:
    updated = _update(forum_id, STATUS_KEY, STATUS_CLOSED)
    if updated:
        hooks.status_changed(updated)
    return updated


def open_forum(forum_id: int) -> Optional[int]:
    updated = _update(forum_id, STATUS_KEY, STATUS_OPEN)
    if updated:
        hooks.status_changed(updated)
    return updated


def categorize_forum(forum_id: int) -> Optional[int]:
    updated = _update(forum_id, TYPE_KEY, TYPE_CATEGORY)
    if updated:
        hooks.status_changed(updated)
    return updated


def normalize_forum(forum_id: int) -> Optional[int]:
    updated = _update(forum_id, TYPE_KEY, TYPE_FORUM)
    if updated:
        hooks.status_changed(updated)
    return updated


def privatize_forum(forum_id: int) -> Optional[int]:
    updated = _update(forum_id, VISIBILITY_KEY, VISIBILITY_PRIVATE)
    if updated:
        hooks.visibility_changed(updated)
    return updated


def publicize_forum(forum_id: int) -> Optional[int]:
    updated = _update(forum_id, VISIBILITY_KEY, VISIBILITY_PUBLIC)
    if updated:
        hooks.visibility_changed(updated)
    return updated


def hide_forum(forum_id: int) -> Optional[int]:
    updated = _update(forum_id, VISIBILITY_KEY, VISIBILITY_HIDDEN)
    if updated:
        hooks.visibility_changed(updated)
    return updated
