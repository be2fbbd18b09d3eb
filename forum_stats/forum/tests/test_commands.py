from __future__ import annotations

from io import StringIO
from unittest import mock

from django.core.management import CommandError, call_command
from django.test import TestCase

from forum.services import aggregates, content_tree, status
from forum.services.aggregates import Metric


class RecountForumsCommandTests(TestCase):
    def setUp(self) -> None:
        self.root = content_tree.create_forum("Root")
        self.child = content_tree.create_forum("Child", parent=self.root)
        self.topic = content_tree.create_topic(self.child, "Topic")

    def test_recounts_every_forum(self) -> None:
        out = StringIO()
        call_command("recount_forums", stdout=out)
        output = out.getvalue()
        self.assertIn("Recounted 2 forum(s).", output)
        self.assertIn(f"forum {self.child.pk}: topics=1 replies=0 voices=1", output)
        self.assertTrue(aggregates.is_computed(self.root.pk, Metric.TOPIC_COUNT))

    def test_recounts_single_subtree(self) -> None:
        out = StringIO()
        call_command("recount_forums", forum=self.child.pk, stdout=out)
        self.assertIn("Recounted 1 forum(s).", out.getvalue())
        self.assertFalse(aggregates.is_computed(self.root.pk, Metric.TOPIC_COUNT))

    def test_unknown_forum_is_an_error(self) -> None:
        with self.assertRaises(CommandError):
            call_command("recount_forums", forum=self.topic.pk, stdout=StringIO())

    def test_audit_reports_uncomputed_forums(self) -> None:
        aggregates.forum_aggregate(self.root.pk)
        out = StringIO()
        call_command("recount_forums", audit=True, stdout=out)
        output = out.getvalue()
        self.assertIn(f"forum {self.child.pk}: not computed:", output)
        self.assertNotIn(f"forum {self.root.pk}: not computed", output)
        self.assertIn("Audit: 1 of 2 forum(s)", output)
        self.assertFalse(aggregates.is_computed(self.child.pk, Metric.TOPIC_COUNT))

    @mock.patch("forum.tasks.recount_subtree_task.delay")
    def test_async_queues_subtree_task(self, delay_mock) -> None:
        out = StringIO()
        call_command("recount_forums", forum=self.root.pk, use_async=True, stdout=out)
        delay_mock.assert_called_once_with(self.root.pk)
        self.assertIn("Queued recount", out.getvalue())


class ForumStatusCommandTests(TestCase):
    def setUp(self) -> None:
        self.forum = content_tree.create_forum("Board")

    def test_shows_current_state(self) -> None:
        out = StringIO()
        call_command("forum_status", str(self.forum.pk), stdout=out)
        output = out.getvalue()
        self.assertIn("type: forum", output)
        self.assertIn("status: open (effective: open)", output)
        self.assertIn("visibility: public (effective: public)", output)

    def test_applies_action(self) -> None:
        out = StringIO()
        call_command("forum_status", str(self.forum.pk), "close", stdout=out)
        self.assertTrue(status.is_closed(self.forum.pk))
        self.assertIn("close applied", out.getvalue())

    def test_rejects_non_forum(self) -> None:
        topic = content_tree.create_topic(self.forum, "Topic")
        with self.assertRaises(CommandError):
            call_command("forum_status", str(topic.pk), "privatize", stdout=StringIO())
