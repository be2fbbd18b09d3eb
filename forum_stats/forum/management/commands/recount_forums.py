from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from forum.models import Forum
from forum.services import aggregates, recount
from forum.services.aggregates import Metric


class Command(BaseCommand):
    help = "Recount cached forum aggregates (topic/reply/voice counts and freshness pointers)."

    def add_arguments(self, parser):  # pragma: no cover - CLI plumbing
        parser.add_argument("--forum", type=int, help="Recount only this forum and the forums below it.")
        parser.add_argument(
            "--async",
            action="store_true",
            dest="use_async",
            help="Queue one Celery task per forum instead of recounting inline.",
        )
        parser.add_argument(
            "--audit",
            action="store_true",
            help="Only report forums whose counters have not been computed yet.",
        )

    def handle(self, *args, **options):
        root_id = options.get("forum")
        if root_id is not None and not Forum.objects.filter(pk=root_id).exists():
            raise CommandError(f"Forum {root_id} does not exist.")

        if options.get("audit"):
            self._audit(root_id)
            return

        if options.get("use_async"):
            from forum.tasks import recount_subtree_task

            recount_subtree_task.delay(root_id)
            self.stdout.write(self.style.SUCCESS(f"Queued recount for {root_id or 'all forums'}."))
            return

        report = recount.recount_subtree(root_id)
        for forum_id in report.recounted:
            aggregate = report.results[forum_id]
            self.stdout.write(
                f"  forum {forum_id}: topics={aggregate.topic_count} replies={aggregate.reply_count} "
                f"voices={aggregate.voice_count} last_active={aggregate.last_active_at or '-'}"
            )
        self.stdout.write(self.style.SUCCESS(f"Recounted {report.total} forum(s)."))

    def _audit(self, root_id):
        stale = 0
        forum_ids = recount.forum_ids_in_subtree(root_id)
        for forum_id in forum_ids:
            missing = [metric.value for metric in Metric if not aggregates.is_computed(forum_id, metric)]
            if missing:
                stale += 1
                self.stdout.write(f"  forum {forum_id}: not computed: {', '.join(missing)}")
        self.stdout.write(f"Audit: {stale} of {len(forum_ids)} forum(s) have uncomputed metrics.")
        if stale:
            self.stdout.write("Run again without --audit to recount them.")
