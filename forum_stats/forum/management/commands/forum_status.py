from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from forum.services import status


_ACTIONS = {
    "close": status.close_forum,
    "open": status.open_forum,
    "categorize": status.categorize_forum,
    "normalize": status.normalize_forum,
    "privatize": status.privatize_forum,
    "publicize": status.publicize_forum,
    "hide": status.hide_forum,
}


class Command(BaseCommand):
    help = "Show or change a forum's type, open/closed status and visibility."

    def add_arguments(self, parser) -> None:  # pragma: no cover - CLI wiring
        parser.add_argument("forum", type=int, help="Forum id.")
        parser.add_argument("action", nargs="?", choices=sorted(_ACTIONS), help="Change to apply.")

    def handle(self, *args, **options) -> None:
        forum_id = options["forum"]
        action = options.get("action")
        if action:
            if _ACTIONS[action](forum_id) is None:
                raise CommandError(f"Node {forum_id} is not a forum.")
            self.stdout.write(self.style.SUCCESS(f"Forum {forum_id}: {action} applied"))

        self.stdout.write(f"  type: {status.forum_type(forum_id)}")
        self.stdout.write(f"  status: {status.forum_status(forum_id)} (effective: {'closed' if status.is_closed(forum_id) else 'open'})")
        self.stdout.write(
            f"  visibility: {status.forum_visibility(forum_id)} "
            f"(effective: {'private' if status.is_private(forum_id) else 'public'})"
        )
