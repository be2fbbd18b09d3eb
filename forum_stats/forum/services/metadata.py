"""Key/value metadata attached to content tree nodes.

Every key the engine owns is namespaced with ``KEY_PREFIX`` so it cannot
collide with unrelated attachments. Reads never raise on a database error;
writes wrap the failure in :class:`MetadataStoreError` so callers can decide
whether it matters.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable

from django.db import DatabaseError, transaction

from forum.models import NodeMeta

logger = logging.getLogger(__name__)

KEY_PREFIX = "_forum_"


class MetadataStoreError(RuntimeError):
    """Raised when the metadata store cannot persist or remove a value."""

    def __init__(self, node_id: int, key: str, cause: Exception | None = None) -> None:
        super().__init__(f"metadata store write failed for node {node_id} key {key!r}: {cause}")
        self.node_id = node_id
        self.key = key
        self.cause = cause


def meta_key(name: str) -> str:
    return name if name.startswith(KEY_PREFIX) else f"{KEY_PREFIX}{name}"


def get(node_id: int, key: str, default: Any = None) -> Any:
    try:
        return NodeMeta.objects.values_list("value", flat=True).get(node_id=node_id, key=key)
    except NodeMeta.DoesNotExist:
        return default
    except DatabaseError as exc:
        logger.warning("metadata read failed for node %s key %s: %s", node_id, key, exc)
        return default


def set(node_id: int, key: str, value: Any) -> None:  # noqa: A001
    try:
        with transaction.atomic():
            NodeMeta.objects.update_or_create(node_id=node_id, key=key, defaults={"value": value})
    except DatabaseError as exc:
        raise MetadataStoreError(node_id, key, exc) from exc


def delete(node_id: int, key: str) -> int:
    return delete_many(node_id, [key])


def delete_many(node_id: int, keys: Iterable[str]) -> int:
    wanted = list(keys)
    if not wanted:
        return 0
    try:
        with transaction.atomic():
            deleted, _ = NodeMeta.objects.filter(node_id=node_id, key__in=wanted).delete()
    except DatabaseError as exc:
        raise MetadataStoreError(node_id, ",".join(wanted), exc) from exc
    return int(deleted)
