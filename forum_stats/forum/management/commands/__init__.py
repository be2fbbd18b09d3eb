"""Operator commands: ``recount_forums`` and ``forum_status``."""
