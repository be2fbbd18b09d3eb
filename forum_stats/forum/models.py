"""Data models for the forum content tree and its metadata store."""
from __future__ import annotations

import copy

from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone


class Agent(models.Model):
    """An author of forum nodes."""

    ROLE_ADMIN = "admin"
    ROLE_MODERATOR = "moderator"
    ROLE_MEMBER = "member"
    ROLE_BANNED = "banned"

    ROLE_CHOICES = [
        (ROLE_ADMIN, "admin"),
        (ROLE_MODERATOR, "moderator"),
        (ROLE_MEMBER, "member"),
        (ROLE_BANNED, "banned"),
    ]

    name = models.CharField(max_length=50, unique=True)
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=ROLE_MEMBER)
    registered_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]

    def __str__(self) -> str:  # pragma: no cover
        return self.name


class NodeQuerySet(models.QuerySet):
    def published(self) -> "NodeQuerySet":
        return self.filter(publish_state=Node.STATE_PUBLISH)

    def newest_first(self) -> "NodeQuerySet":
        return self.order_by("-created_at", "-id")


class NodeManager(models.Manager.from_queryset(NodeQuerySet)):
    """Manager restricted to one node type when ``node_type`` is set."""

    node_type: str | None = None

    def __init__(self, node_type: str | None = None) -> None:
        super().__init__()
        self.node_type = node_type

    def get_queryset(self) -> NodeQuerySet:
        queryset = super().get_queryset()
        if self.node_type:
            queryset = queryset.filter(node_type=self.node_type)
        return queryset


class Node(models.Model):
    """A forum, topic or reply in the content tree.

    Rows are typed by ``node_type``; callers never compare that string
    themselves but go through :meth:`as_variant`, which hands back the
    matching :class:`Forum`, :class:`Topic` or :class:`Reply` proxy.
    """

    TYPE_FORUM = "forum"
    TYPE_TOPIC = "topic"
    TYPE_REPLY = "reply"

    TYPE_CHOICES = [
        (TYPE_FORUM, "forum"),
        (TYPE_TOPIC, "topic"),
        (TYPE_REPLY, "reply"),
    ]

    STATE_PUBLISH = "publish"
    STATE_PENDING = "pending"
    STATE_DRAFT = "draft"
    STATE_TRASH = "trash"

    STATE_CHOICES = [
        (STATE_PUBLISH, "publish"),
        (STATE_PENDING, "pending"),
        (STATE_DRAFT, "draft"),
        (STATE_TRASH, "trash"),
    ]

    # Allowed parent type for each node type; ``None`` marks a root.
    PARENT_TYPES = {
        TYPE_FORUM: {TYPE_FORUM, None},
        TYPE_TOPIC: {TYPE_FORUM},
        TYPE_REPLY: {TYPE_TOPIC},
    }

    node_type = models.CharField(max_length=10, choices=TYPE_CHOICES, db_index=True)
    parent = models.ForeignKey(
        "self",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="children",
    )
    author = models.ForeignKey(
        "Agent",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="nodes",
    )
    title = models.CharField(max_length=200, blank=True)
    content = models.TextField(blank=True)
    publish_state = models.CharField(
        max_length=10, choices=STATE_CHOICES, default=STATE_PUBLISH, db_index=True
    )
    position = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    objects = NodeManager()

    class Meta:
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["parent", "node_type", "publish_state"], name="forum_node_parent_type_idx"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.node_type} #{self.pk} {self.title}".strip()

    @property
    def is_published(self) -> bool:
        return self.publish_state == self.STATE_PUBLISH

    def as_variant(self) -> "Node":
        """Return this row re-typed as its Forum/Topic/Reply proxy."""

        variant_cls = _VARIANTS.get(self.node_type)
        if variant_cls is None or isinstance(self, variant_cls):
            return self
        variant = copy.copy(self)
        variant.__class__ = variant_cls
        return variant

    def clean(self) -> None:
        allowed = self.PARENT_TYPES.get(self.node_type)
        if allowed is None:
            raise ValidationError({"node_type": f"Unknown node type {self.node_type!r}."})
        parent = self.parent if self.parent_id else None
        parent_type = parent.node_type if parent is not None else None
        if parent_type not in allowed:
            raise ValidationError(
                {"parent": f"A {self.node_type} cannot be placed under {parent_type or 'the root'}."}
            )
        if self.pk and parent is not None:
            seen = {self.pk}
            cursor = parent
            while cursor is not None:
                if cursor.pk in seen:
                    raise ValidationError({"parent": "Parent chain would form a cycle."})
                seen.add(cursor.pk)
                cursor = cursor.parent


class Forum(Node):
    objects = NodeManager(Node.TYPE_FORUM)

    class Meta:
        proxy = True

    def save(self, *args, **kwargs):
        self.node_type = Node.TYPE_FORUM
        super().save(*args, **kwargs)


class Topic(Node):
    objects = NodeManager(Node.TYPE_TOPIC)

    class Meta:
        proxy = True

    def save(self, *args, **kwargs):
        self.node_type = Node.TYPE_TOPIC
        super().save(*args, **kwargs)

    @property
    def forum_id(self) -> int | None:
        return self.parent_id


class Reply(Node):
    objects = NodeManager(Node.TYPE_REPLY)

    class Meta:
        proxy = True

    def save(self, *args, **kwargs):
        self.node_type = Node.TYPE_REPLY
        super().save(*args, **kwargs)

    @property
    def topic_id(self) -> int | None:
        return self.parent_id


_VARIANTS = {
    Node.TYPE_FORUM: Forum,
    Node.TYPE_TOPIC: Topic,
    Node.TYPE_REPLY: Reply,
}


class NodeMeta(models.Model):
    """Key/value attachment for a node (counters, pointers, status flags)."""

    node = models.ForeignKey("Node", on_delete=models.CASCADE, related_name="meta")
    key = models.CharField(max_length=64)
    value = models.JSONField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["node_id", "key"]
        constraints = [
            models.UniqueConstraint(fields=["node", "key"], name="forum_nodemeta_node_key"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.node_id}:{self.key}={self.value!r}"


class SiteSetting(models.Model):
    """Simple key/value store for runtime configuration."""

    key = models.CharField(max_length=100, unique=True)
    value = models.CharField(max_length=255)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["key"]

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.key}={self.value}"
