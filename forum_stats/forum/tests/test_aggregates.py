from __future__ import annotations

from datetime import datetime, timedelta, timezone as dt_timezone
from unittest import mock

from django.db import DatabaseError
from django.test import TestCase

from forum.models import Agent, Node, NodeMeta
from forum.services import aggregates, content_tree, metadata
from forum.services.aggregates import UNSET, Metric
from forum.services.metadata import MetadataStoreError

EPOCH = datetime(2024, 1, 1, tzinfo=dt_timezone.utc)


def at(seconds: int) -> datetime:
    return EPOCH + timedelta(seconds=seconds)


class SentinelTests(TestCase):
    def setUp(self) -> None:
        self.forum = content_tree.create_forum("Empty")

    def test_fresh_forum_topic_count_is_computed_zero(self) -> None:
        self.assertFalse(aggregates.is_computed(self.forum.pk, Metric.TOPIC_COUNT))
        self.assertIs(aggregates.stored_value(self.forum.pk, Metric.TOPIC_COUNT), UNSET)

        self.assertEqual(aggregates.get_or_compute(self.forum.pk, Metric.TOPIC_COUNT), 0)

        self.assertTrue(aggregates.is_computed(self.forum.pk, Metric.TOPIC_COUNT))
        self.assertEqual(aggregates.stored_value(self.forum.pk, Metric.TOPIC_COUNT), 0)
        row = NodeMeta.objects.get(node=self.forum, key="_forum_topic_count")
        self.assertEqual(row.value, 0)

    def test_missing_pointer_is_cached_as_none(self) -> None:
        self.assertIsNone(aggregates.get_or_compute(self.forum.pk, Metric.LAST_TOPIC_ID))
        self.assertTrue(aggregates.is_computed(self.forum.pk, Metric.LAST_TOPIC_ID))
        self.assertIsNone(aggregates.stored_value(self.forum.pk, Metric.LAST_TOPIC_ID))

    def test_unset_is_falsy_and_distinct_from_zero_and_none(self) -> None:
        self.assertFalse(UNSET)
        self.assertIsNot(UNSET, None)
        self.assertNotEqual(UNSET, 0)
        self.assertIs(aggregates.Unset(), UNSET)
        self.assertEqual(repr(UNSET), "UNSET")

    def test_legacy_empty_string_reads_as_unset(self) -> None:
        NodeMeta.objects.create(node=self.forum, key="_forum_topic_count", value="")
        self.assertFalse(aggregates.is_computed(self.forum.pk, Metric.TOPIC_COUNT))
        self.assertEqual(aggregates.forum_topic_count(self.forum.pk), 0)
        self.assertEqual(NodeMeta.objects.get(node=self.forum, key="_forum_topic_count").value, 0)

    def test_malformed_values_trigger_recompute(self) -> None:
        content_tree.create_topic(self.forum, "Hello", created_at=at(10))
        NodeMeta.objects.filter(node=self.forum).delete()
        NodeMeta.objects.create(node=self.forum, key="_forum_topic_count", value="seven")
        NodeMeta.objects.create(node=self.forum, key="_forum_reply_count", value=True)
        NodeMeta.objects.create(node=self.forum, key="_forum_last_topic_id", value={"id": 3})
        NodeMeta.objects.create(node=self.forum, key="_forum_last_active", value="not a date")

        self.assertEqual(aggregates.forum_topic_count(self.forum.pk), 1)
        self.assertEqual(aggregates.forum_reply_count(self.forum.pk), 0)
        self.assertIsNotNone(aggregates.forum_last_topic_id(self.forum.pk))
        self.assertEqual(aggregates.forum_last_active(self.forum.pk), at(10))

    def test_decode_accepts_naive_timestamps_as_utc(self) -> None:
        decoded = aggregates.decode(Metric.LAST_ACTIVE, "2024-01-01T00:01:40")
        self.assertEqual(decoded, at(100))
        self.assertIs(aggregates.decode(Metric.VOICE_COUNT, -1), UNSET)
        self.assertIs(aggregates.decode(Metric.LAST_REPLY_ID, 0), UNSET)
        self.assertIsNone(aggregates.decode(Metric.LAST_REPLY_ID, None))


class CountTests(TestCase):
    @classmethod
    def setUpTestData(cls) -> None:
        cls.alice = Agent.objects.create(name="alice")
        cls.bob = Agent.objects.create(name="bob")
        cls.carol = Agent.objects.create(name="carol")
        cls.forum = content_tree.create_forum("General", author=cls.alice)
        cls.other = content_tree.create_forum("Elsewhere", author=cls.alice)
        cls.topic = content_tree.create_topic(cls.forum, "First", author=cls.alice, created_at=at(100))
        cls.draft = content_tree.create_topic(
            cls.forum, "Draft", author=cls.carol, created_at=at(150), publish_state=Node.STATE_DRAFT
        )
        content_tree.create_topic(cls.other, "Unrelated", author=cls.carol, created_at=at(120))
        cls.reply = content_tree.create_reply(cls.topic, author=cls.bob, created_at=at(200))
        content_tree.create_reply(cls.topic, author=cls.bob, created_at=at(210))
        content_tree.create_reply(cls.topic, author=cls.carol, created_at=at(220), publish_state=Node.STATE_TRASH)

    def test_topic_count_only_counts_published_direct_topics(self) -> None:
        self.assertEqual(aggregates.forum_topic_count(self.forum.pk), 1)

    def test_reply_count_resolves_through_topics(self) -> None:
        self.assertEqual(aggregates.forum_reply_count(self.forum.pk), 2)
        self.assertEqual(aggregates.forum_reply_count(self.other.pk), 0)

    def test_voice_count_is_distinct_published_authors(self) -> None:
        self.assertEqual(aggregates.forum_voice_count(self.forum.pk), 2)

    def test_voice_count_floors_at_one(self) -> None:
        empty = content_tree.create_forum("Quiet")
        self.assertEqual(aggregates.forum_voice_count(empty.pk), 1)
        anonymous = content_tree.create_forum("Anonymous")
        content_tree.create_topic(anonymous, "No author", created_at=at(5))
        self.assertEqual(aggregates.forum_voice_count(anonymous.pk), 1)

    def test_topic_and_reply_ids_resolve_to_owning_forum(self) -> None:
        self.assertEqual(aggregates.get_or_compute(self.topic.pk, Metric.TOPIC_COUNT), 1)
        self.assertEqual(aggregates.get_or_compute(self.reply.pk, Metric.REPLY_COUNT), 2)
        self.assertTrue(aggregates.is_computed(self.forum.pk, Metric.REPLY_COUNT))

    def test_cached_value_is_returned_without_recompute(self) -> None:
        metadata.set(self.forum.pk, Metric.TOPIC_COUNT.key, 41)
        with mock.patch("forum.services.aggregates.count_topics") as count_mock:
            self.assertEqual(aggregates.forum_topic_count(self.forum.pk), 41)
        count_mock.assert_not_called()

    def test_invalidate_resets_to_unset(self) -> None:
        aggregates.forum_aggregate(self.forum.pk)
        aggregates.invalidate(self.forum.pk, Metric.REPLY_COUNT)
        self.assertFalse(aggregates.is_computed(self.forum.pk, Metric.REPLY_COUNT))
        self.assertTrue(aggregates.is_computed(self.forum.pk, Metric.TOPIC_COUNT))

    def test_invalidating_a_pointer_also_resets_last_active(self) -> None:
        aggregates.forum_aggregate(self.forum.pk)
        aggregates.invalidate(self.forum.pk, Metric.LAST_REPLY_ID)
        self.assertFalse(aggregates.is_computed(self.forum.pk, Metric.LAST_ACTIVE))
        self.assertTrue(aggregates.is_computed(self.forum.pk, Metric.LAST_TOPIC_ID))

    def test_invalidate_without_metrics_clears_everything(self) -> None:
        aggregates.forum_aggregate(self.forum.pk)
        aggregates.invalidate(self.forum.pk)
        for metric in Metric:
            self.assertFalse(aggregates.is_computed(self.forum.pk, metric), metric)


class UnknownNodeTests(TestCase):
    def test_unknown_forum_yields_empty_values(self) -> None:
        self.assertEqual(aggregates.get_or_compute(987654, Metric.TOPIC_COUNT), 0)
        self.assertEqual(aggregates.forum_voice_count(987654), 0)
        self.assertIsNone(aggregates.forum_last_reply_id(987654))
        self.assertIsNone(aggregates.forum_last_active(None))
        self.assertIsNone(aggregates.forum_aggregate(987654))
        self.assertFalse(NodeMeta.objects.exists())

    def test_fast_path_writers_ignore_unknown_nodes(self) -> None:
        forum = content_tree.create_forum("Real")
        self.assertFalse(aggregates.set_last_topic(forum.pk, 424242))
        self.assertFalse(aggregates.set_last_reply(424242, 1))
        self.assertFalse(aggregates.set_last_active(424242))


class StoreFailureTests(TestCase):
    def setUp(self) -> None:
        self.forum = content_tree.create_forum("Fragile")
        self.topic = content_tree.create_topic(self.forum, "Only", created_at=at(30))

    def test_read_returns_computed_value_when_store_write_fails(self) -> None:
        aggregates.invalidate(self.forum.pk)
        with mock.patch(
            "forum.services.metadata.set", side_effect=MetadataStoreError(self.forum.pk, "_forum_topic_count")
        ):
            with self.assertLogs("forum.services.aggregates", level="WARNING") as logs:
                self.assertEqual(aggregates.forum_topic_count(self.forum.pk), 1)
        self.assertIn("Could not cache topic_count", "\n".join(logs.output))
        self.assertFalse(aggregates.is_computed(self.forum.pk, Metric.TOPIC_COUNT))

    def test_store_wraps_database_errors(self) -> None:
        with mock.patch.object(NodeMeta.objects, "update_or_create", side_effect=DatabaseError("disk full")):
            with self.assertRaises(MetadataStoreError) as ctx:
                metadata.set(self.forum.pk, "_forum_topic_count", 3)
        self.assertEqual(ctx.exception.node_id, self.forum.pk)
        self.assertIsInstance(ctx.exception.cause, DatabaseError)

    def test_fast_path_writer_surfaces_store_failure(self) -> None:
        with mock.patch(
            "forum.services.metadata.set", side_effect=MetadataStoreError(self.forum.pk, "_forum_last_topic_id")
        ):
            with self.assertRaises(MetadataStoreError):
                aggregates.set_last_topic(self.forum.pk, self.topic.pk)


class FastPathWriterTests(TestCase):
    def setUp(self) -> None:
        self.forum = content_tree.create_forum("Busy")
        self.topic = content_tree.create_topic(self.forum, "Thread", created_at=at(100))
        self.reply = content_tree.create_reply(self.topic, created_at=at(300))

    def test_set_last_reply_moves_last_active(self) -> None:
        self.assertTrue(aggregates.set_last_reply(self.forum.pk, self.reply.pk))
        self.assertEqual(aggregates.stored_value(self.forum.pk, Metric.LAST_REPLY_ID), self.reply.pk)
        self.assertEqual(aggregates.stored_value(self.forum.pk, Metric.LAST_ACTIVE), at(300))

    def test_set_last_topic_keeps_reply_freshness(self) -> None:
        aggregates.set_last_reply(self.forum.pk, self.reply.pk)
        newer = content_tree.create_topic(self.forum, "Later", created_at=at(500))
        aggregates.set_last_topic(self.forum.pk, newer.pk)
        self.assertEqual(aggregates.forum_last_active(self.forum.pk), at(300))

    def test_set_last_topic_moves_last_active_when_forum_has_no_replies(self) -> None:
        quiet = content_tree.create_forum("Quiet")
        topic = content_tree.create_topic(quiet, "Lonely", created_at=at(700))
        self.assertIsNone(aggregates.forum_last_reply_id(quiet.pk))
        aggregates.set_last_topic(quiet.pk, topic.pk)
        self.assertEqual(aggregates.stored_value(quiet.pk, Metric.LAST_ACTIVE), at(700))

    def test_set_last_topic_rejects_replies(self) -> None:
        self.assertFalse(aggregates.set_last_topic(self.forum.pk, self.reply.pk))

    def test_set_last_active_defaults_to_now(self) -> None:
        self.assertTrue(aggregates.set_last_active(self.forum.pk))
        self.assertIsNotNone(aggregates.stored_value(self.forum.pk, Metric.LAST_ACTIVE))

    def test_set_subforum_count_stores_caller_value(self) -> None:
        self.assertTrue(aggregates.set_subforum_count(self.forum.pk, 4))
        self.assertEqual(aggregates.forum_subforum_count(self.forum.pk), 4)


class EndToEndTests(TestCase):
    def test_create_reply_then_delete_it(self) -> None:
        u1 = Agent.objects.create(name="u1")
        u2 = Agent.objects.create(name="u2")
        f1 = content_tree.create_forum("F1")
        t1 = content_tree.create_topic(f1, "T1", author=u1, created_at=at(100))
        r1 = content_tree.create_reply(t1, author=u2, created_at=at(200))

        self.assertEqual(aggregates.forum_topic_count(f1.pk), 1)
        self.assertEqual(aggregates.forum_reply_count(f1.pk), 1)
        self.assertEqual(aggregates.forum_voice_count(f1.pk), 2)
        self.assertEqual(aggregates.forum_last_reply_id(f1.pk), r1.pk)
        self.assertEqual(aggregates.forum_last_active(f1.pk), at(200))

        r1.delete()

        self.assertEqual(aggregates.forum_reply_count(f1.pk), 0)
        self.assertIsNone(aggregates.forum_last_reply_id(f1.pk))
        self.assertEqual(aggregates.forum_last_active(f1.pk), at(100))
        self.assertEqual(aggregates.forum_freshness_target_id(f1.pk), t1.pk)

    def test_forum_aggregate_snapshot(self) -> None:
        f1 = content_tree.create_forum("F1")
        t1 = content_tree.create_topic(f1, "T1", created_at=at(100))
        snapshot = aggregates.forum_aggregate(f1.pk)
        self.assertEqual(snapshot.topic_count, 1)
        self.assertEqual(snapshot.last_topic_id, t1.pk)
        self.assertIsNone(snapshot.last_reply_id)
        self.assertEqual(snapshot.as_dict()["last_active_at"], at(100).isoformat())
