"""Model signal receivers feeding :mod:`forum.services.hooks`.

Receivers are connected without a sender so saves through the
``Forum``/``Topic``/``Reply`` proxies are seen as well as plain ``Node``
saves. A metadata store failure is logged and left for the next recount;
it never aborts the save or delete that triggered it.
"""
from __future__ import annotations

import logging

from django.db.models.signals import post_delete, post_save, pre_delete, pre_save

from forum.models import Forum, Node, Reply, Topic
from forum.services import content_tree, hooks
from forum.services.metadata import MetadataStoreError

logger = logging.getLogger(__name__)

_DISPATCH_PREFIX = "forum.signals"


def remember_previous_state(sender, instance, raw=False, **kwargs) -> None:
    if raw or not isinstance(instance, Node) or not instance.pk:
        return
    previous = Node.objects.filter(pk=instance.pk).values("parent_id", "publish_state").first()
    instance._previous_state = previous


def node_saved(sender, instance, created=False, raw=False, **kwargs) -> None:
    if raw or not isinstance(instance, Node):
        return
    node = instance.as_variant()
    try:
        if created:
            if isinstance(node, Topic):
                hooks.topic_created(node)
            elif isinstance(node, Reply):
                hooks.reply_created(node)
            elif isinstance(node, Forum):
                hooks.forum_created(node)
            return
        previous = getattr(instance, "_previous_state", None)
        if not previous:
            return
        if previous["parent_id"] != node.parent_id:
            hooks.node_reparented(node, previous["parent_id"])
        elif previous["publish_state"] != node.publish_state:
            hooks.publish_state_changed(node)
    except MetadataStoreError as exc:
        logger.warning("Aggregate update after saving node %s failed: %s", instance.pk, exc)
    finally:
        instance._previous_state = None


def remember_owning_forum(sender, instance, **kwargs) -> None:
    if isinstance(instance, Node):
        instance._owning_forum_id = content_tree.owning_forum_id(instance.as_variant())


def node_deleted(sender, instance, **kwargs) -> None:
    if not isinstance(instance, Node):
        return
    try:
        hooks.node_removed(instance.as_variant(), getattr(instance, "_owning_forum_id", None))
    except MetadataStoreError as exc:
        logger.warning("Aggregate update after deleting node %s failed: %s", instance.pk, exc)


def connect() -> None:
    pre_save.connect(remember_previous_state, dispatch_uid=f"{_DISPATCH_PREFIX}.pre_save")
    post_save.connect(node_saved, dispatch_uid=f"{_DISPATCH_PREFIX}.post_save")
    pre_delete.connect(remember_owning_forum, dispatch_uid=f"{_DISPATCH_PREFIX}.pre_delete")
    post_delete.connect(node_deleted, dispatch_uid=f"{_DISPATCH_PREFIX}.post_delete")


def disconnect() -> None:
    pre_save.disconnect(dispatch_uid=f"{_DISPATCH_PREFIX}.pre_save")
    post_save.disconnect(dispatch_uid=f"{_DISPATCH_PREFIX}.post_save")
    pre_delete.disconnect(dispatch_uid=f"{_DISPATCH_PREFIX}.pre_delete")
    post_delete.disconnect(dispatch_uid=f"{_DISPATCH_PREFIX}.post_delete")
