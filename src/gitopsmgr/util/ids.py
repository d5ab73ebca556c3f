from __future__ import annotations

import uuid


def new_uuid() -> str:
    """Generate a UUID4 string (object uids)."""
    return str(uuid.uuid4())


def _prefixed(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def new_plan_id() -> str:
    return _prefixed("plan")


def new_op_id() -> str:
    return _prefixed("op")


def new_run_id() -> str:
    """Id correlating the log lines of one reconciliation run."""
    return _prefixed("run")
