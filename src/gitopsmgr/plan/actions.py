"""Plan actions for gitopsmgr."""

from __future__ import annotations

from enum import Enum


class Action(str, Enum):
    """Supported plan actions."""

    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"
