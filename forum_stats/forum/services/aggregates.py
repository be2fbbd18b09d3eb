"""Lazily computed, cached per-forum aggregates.

Each metric lives in the metadata store under its own ``_forum_*`` key. A
missing row (or the legacy empty string, or a value of the wrong type) means
the metric was never computed and is filled in on the next read. A stored
``0`` or ``null`` is a real, computed answer and is returned as is.

Reads never fail because the store refused a write: the freshly computed
value is returned and the failure is logged. The explicit writers
(``set_last_topic`` and friends) let :class:`MetadataStoreError` through.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone as dt_timezone
from enum import Enum
from typing import Any, Optional, Union

from django.db import transaction
from django.db.models import Q
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from forum.models import Forum, Node, Reply, Topic
from forum.services import configuration as config_service
from forum.services import content_tree, freshness, metadata
from forum.services.metadata import MetadataStoreError

logger = logging.getLogger(__name__)


class Unset:
    """Marker for a metric that has never been computed."""

    _instance: Optional["Unset"] = None

    def __new__(cls) -> "Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNSET"

    def __reduce__(self):
        return (Unset, ())


UNSET = Unset()


class Metric(str, Enum):
    SUBFORUM_COUNT = "subforum_count"
    TOPIC_COUNT = "topic_count"
    REPLY_COUNT = "reply_count"
    VOICE_COUNT = "voice_count"
    LAST_TOPIC_ID = "last_topic_id"
    LAST_REPLY_ID = "last_reply_id"
    LAST_ACTIVE = "last_active"

    @property
    def key(self) -> str:
        return metadata.meta_key(self.value)

    @property
    def is_counter(self) -> bool:
        return self in COUNTERS

    @property
    def empty(self) -> Any:
        return 0 if self.is_counter else None


COUNTERS = frozenset({Metric.SUBFORUM_COUNT, Metric.TOPIC_COUNT, Metric.REPLY_COUNT, Metric.VOICE_COUNT})
POINTERS = frozenset({Metric.LAST_TOPIC_ID, Metric.LAST_REPLY_ID})
COUNT_METRICS = (Metric.TOPIC_COUNT, Metric.REPLY_COUNT, Metric.VOICE_COUNT)

MetricValue = Union[int, datetime, None, Unset]


@dataclass(frozen=True)
class ForumAggregate:
    forum_id: int
    subforum_count: int
    topic_count: int
    reply_count: int
    voice_count: int
    last_topic_id: Optional[int]
    last_reply_id: Optional[int]
    last_active_at: Optional[datetime]

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        if self.last_active_at is not None:
            payload["last_active_at"] = self.last_active_at.isoformat()
        return payload


# -- encoding ---------------------------------------------------------------

def decode(metric: Metric, raw: Any) -> MetricValue:
    """Turn a stored value into a metric value, or ``UNSET`` if unusable."""

    if raw is UNSET or raw == "":
        return UNSET
    if metric.is_counter:
        if isinstance(raw, int) and not isinstance(raw, bool) and raw >= 0:
            return raw
        return UNSET
    if raw is None:
        return None
    if metric in POINTERS:
        if isinstance(raw, int) and not isinstance(raw, bool) and raw > 0:
            return raw
        return UNSET
    if isinstance(raw, str):
        try:
            parsed = parse_datetime(raw)
        except ValueError:
            return UNSET
        if parsed is None:
            return UNSET
        if timezone.is_naive(parsed):
            parsed = timezone.make_aware(parsed, dt_timezone.utc)
        return parsed
    return UNSET


def encode(metric: Metric, value: MetricValue) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _read(forum_id: int, metric: Metric) -> MetricValue:
    return decode(metric, metadata.get(forum_id, metric.key, UNSET))


def _write(forum_id: int, metric: Metric, value: MetricValue) -> None:
    metadata.set(forum_id, metric.key, encode(metric, value))


# -- computation ------------------------------------------------------------

def exact_subforum_count_enabled() -> bool:
    return config_service.get_bool("FORUM_EXACT_SUBFORUM_COUNT")


def count_subforums(forum_id: int) -> int:
    # Placeholder count: stays 0 unless exact counting is switched on or a
    # caller stores a value with set_subforum_count().
    if not exact_subforum_count_enabled():
        return 0
    return Forum.objects.published().filter(parent_id=forum_id).count()


def _recount_subforums(forum_id: int) -> int:
    if exact_subforum_count_enabled():
        return count_subforums(forum_id)
    stored = _read(forum_id, Metric.SUBFORUM_COUNT)
    return stored if stored is not UNSET else 0


def count_topics(forum_id: int) -> int:
    return Topic.objects.published().filter(parent_id=forum_id).count()


def count_replies(forum_id: int) -> int:
    return Reply.objects.published().filter(parent__parent_id=forum_id).count()


def count_voices(forum_id: int) -> int:
    """Distinct authors of published topics and replies; never below one."""

    in_forum = Q(node_type=Node.TYPE_TOPIC, parent_id=forum_id) | Q(
        node_type=Node.TYPE_REPLY, parent__parent_id=forum_id
    )
    voices = (
        Node.objects.published()
        .filter(in_forum, author__isnull=False)
        .order_by()
        .values("author_id")
        .distinct()
        .count()
    )
    return voices or 1


def compute(forum_id: int, metric: Metric) -> MetricValue:
    """Compute ``metric`` for ``forum_id`` from the current tree state."""

    metric = Metric(metric)
    if metric is Metric.SUBFORUM_COUNT:
        return count_subforums(forum_id)
    if metric is Metric.TOPIC_COUNT:
        return count_topics(forum_id)
    if metric is Metric.REPLY_COUNT:
        return count_replies(forum_id)
    if metric is Metric.VOICE_COUNT:
        return count_voices(forum_id)
    if metric is Metric.LAST_TOPIC_ID:
        return freshness.newest_topic_id(forum_id)
    if metric is Metric.LAST_REPLY_ID:
        return freshness.newest_reply_id(forum_id)
    return freshness.compose_last_active(
        get_or_compute(forum_id, Metric.LAST_REPLY_ID),
        get_or_compute(forum_id, Metric.LAST_TOPIC_ID),
    )


def compute_aggregate(forum_id: int) -> ForumAggregate:
    """Every metric computed from scratch.

    The only cached value consulted is a caller-provided subforum count,
    which is kept while exact subforum counting is off.
    """

    last_topic_id = freshness.newest_topic_id(forum_id)
    last_reply_id = freshness.newest_reply_id(forum_id)
    return ForumAggregate(
        forum_id=forum_id,
        subforum_count=_recount_subforums(forum_id),
        topic_count=count_topics(forum_id),
        reply_count=count_replies(forum_id),
        voice_count=count_voices(forum_id),
        last_topic_id=last_topic_id,
        last_reply_id=last_reply_id,
        last_active_at=freshness.compose_last_active(last_reply_id, last_topic_id),
    )


def store_aggregate(aggregate: ForumAggregate) -> None:
    """Overwrite every stored metric of one forum in a single transaction."""

    values = {
        Metric.SUBFORUM_COUNT: aggregate.subforum_count,
        Metric.TOPIC_COUNT: aggregate.topic_count,
        Metric.REPLY_COUNT: aggregate.reply_count,
        Metric.VOICE_COUNT: aggregate.voice_count,
        Metric.LAST_TOPIC_ID: aggregate.last_topic_id,
        Metric.LAST_REPLY_ID: aggregate.last_reply_id,
        Metric.LAST_ACTIVE: aggregate.last_active_at,
    }
    with transaction.atomic():
        for metric, value in values.items():
            _write(aggregate.forum_id, metric, value)


# -- cache ------------------------------------------------------------------

def get_or_compute(node_id: Optional[int], metric: Metric) -> MetricValue:
    """Cached value of ``metric`` for the forum owning ``node_id``.

    Unknown ids yield the metric's empty value (``0`` or ``None``).
    """

    metric = Metric(metric)
    forum_id = content_tree.resolve_forum_id(node_id)
    if forum_id is None:
        return metric.empty
    stored = _read(forum_id, metric)
    if stored is not UNSET:
        return stored
    value = compute(forum_id, metric)
    logger.debug("Computed %s for forum %s: %r", metric.value, forum_id, value)
    try:
        _write(forum_id, metric, value)
    except MetadataStoreError as exc:
        logger.warning("Could not cache %s for forum %s: %s", metric.value, forum_id, exc)
    return value


def is_computed(forum_id: int, metric: Metric) -> bool:
    return _read(forum_id, Metric(metric)) is not UNSET


def stored_value(forum_id: int, metric: Metric) -> MetricValue:
    """Raw cached state without computing: a value, ``None`` or ``UNSET``."""

    return _read(forum_id, Metric(metric))


def invalidate(forum_id: int, *metrics: Metric) -> int:
    """Reset metrics (all of them by default) to the never-computed state."""

    targets = {Metric(metric) for metric in metrics} or set(Metric)
    if targets & POINTERS:
        targets.add(Metric.LAST_ACTIVE)
    removed = metadata.delete_many(forum_id, sorted(metric.key for metric in targets))
    logger.debug("Invalidated %s for forum %s", sorted(m.value for m in targets), forum_id)
    return removed


def forum_aggregate(node_id: Optional[int]) -> Optional[ForumAggregate]:
    forum_id = content_tree.resolve_forum_id(node_id)
    if forum_id is None:
        return None
    return ForumAggregate(
        forum_id=forum_id,
        subforum_count=get_or_compute(forum_id, Metric.SUBFORUM_COUNT),
        topic_count=get_or_compute(forum_id, Metric.TOPIC_COUNT),
        reply_count=get_or_compute(forum_id, Metric.REPLY_COUNT),
        voice_count=get_or_compute(forum_id, Metric.VOICE_COUNT),
        last_topic_id=get_or_compute(forum_id, Metric.LAST_TOPIC_ID),
        last_reply_id=get_or_compute(forum_id, Metric.LAST_REPLY_ID),
        last_active_at=get_or_compute(forum_id, Metric.LAST_ACTIVE),
    )


# -- fast-path writers --------------------------------------------------------

def set_last_topic(forum_id: int, topic_id: int) -> bool:
    topic = content_tree.get_node(topic_id)
    if not isinstance(topic, Topic) or content_tree.get_forum(forum_id) is None:
        return False
    with transaction.atomic():
        _write(forum_id, Metric.LAST_TOPIC_ID, topic.pk)
        last_reply = _read(forum_id, Metric.LAST_REPLY_ID)
        if last_reply is None:
            _write(forum_id, Metric.LAST_ACTIVE, topic.created_at)
        elif last_reply is UNSET:
            metadata.delete(forum_id, Metric.LAST_ACTIVE.key)
    return True


def set_last_reply(forum_id: int, reply_id: int) -> bool:
    reply = content_tree.get_node(reply_id)
    if not isinstance(reply, Reply) or content_tree.get_forum(forum_id) is None:
        return False
    with transaction.atomic():
        _write(forum_id, Metric.LAST_REPLY_ID, reply.pk)
        _write(forum_id, Metric.LAST_ACTIVE, reply.created_at)
    return True


def set_last_active(forum_id: int, when: Optional[datetime] = None) -> bool:
    if content_tree.get_forum(forum_id) is None:
        return False
    _write(forum_id, Metric.LAST_ACTIVE, when or timezone.now())
    return True


def set_subforum_count(forum_id: int, value: int) -> bool:
    if content_tree.get_forum(forum_id) is None:
        return False
    _write(forum_id, Metric.SUBFORUM_COUNT, max(int(value), 0))
    return True


# -- accessors ----------------------------------------------------------------

def forum_subforum_count(forum_id: Optional[int]) -> int:
    return get_or_compute(forum_id, Metric.SUBFORUM_COUNT)


def forum_topic_count(forum_id: Optional[int]) -> int:
    return get_or_compute(forum_id, Metric.TOPIC_COUNT)


def forum_reply_count(forum_id: Optional[int]) -> int:
    return get_or_compute(forum_id, Metric.REPLY_COUNT)


def forum_voice_count(forum_id: Optional[int]) -> int:
    return get_or_compute(forum_id, Metric.VOICE_COUNT)


def forum_last_topic_id(forum_id: Optional[int]) -> Optional[int]:
    return get_or_compute(forum_id, Metric.LAST_TOPIC_ID)


def forum_last_reply_id(forum_id: Optional[int]) -> Optional[int]:
    return get_or_compute(forum_id, Metric.LAST_REPLY_ID)


def forum_last_active(forum_id: Optional[int]) -> Optional[datetime]:
    return get_or_compute(forum_id, Metric.LAST_ACTIVE)


def forum_freshness_target_id(forum_id: Optional[int]) -> Optional[int]:
    return freshness.freshness_target(forum_last_reply_id(forum_id), forum_last_topic_id(forum_id))


def forum_last_topic_author_id(forum_id: Optional[int]) -> Optional[int]:
    return freshness.author_of(forum_last_topic_id(forum_id))


def forum_last_reply_author_id(forum_id: Optional[int]) -> Optional[int]:
    return freshness.author_of(forum_last_reply_id(forum_id))
