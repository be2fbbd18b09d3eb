from __future__ import annotations

from typing import Any, Optional

from django.conf import settings
from django.db import OperationalError, ProgrammingError, connections

from forum.models import SiteSetting

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def get_value(key: str, default: Optional[str] = None, *, using: str = "default") -> Optional[str]:
    table = SiteSetting._meta.db_table
    if not _table_exists(using, table):
        return default
    try:
        return SiteSetting.objects.using(using).get(key=key).value
    except SiteSetting.DoesNotExist:
        return default
    except (OperationalError, ProgrammingError):
        return default


def set_value(key: str, value: Any) -> None:
    if isinstance(value, bool):
        value = "1" if value else "0"
    SiteSetting.objects.update_or_create(key=key, defaults={"value": str(value)})


def get_int(key: str, default: int = 0, *, using: str = "default") -> int:
    raw = get_value(key, None, using=using)
    try:
        return int(raw) if raw is not None else default
    except (TypeError, ValueError):
        return default


def get_bool(key: str, default: Optional[bool] = None) -> bool:
    """Runtime flag: SiteSetting row first, then the Django setting of the same name."""

    fallback = bool(getattr(settings, key, False)) if default is None else default
    raw = get_value(key, None)
    if raw is None:
        return fallback
    lowered = raw.strip().lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    return fallback


def _table_exists(connection_alias: str, table_name: str) -> bool:
    try:
        return table_name in connections[connection_alias].introspection.table_names()
    except (OperationalError, ProgrammingError):
        return False
