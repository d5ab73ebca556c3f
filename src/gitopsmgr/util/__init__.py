from .cancel import CancelToken
from .hashing import canonical_json, sha256_of
from .ids import new_op_id, new_plan_id, new_run_id, new_uuid
from .retry import call_with_retry
from .time import after, normalize_dt, now_utc, to_rfc3339

__all__ = [
    "CancelToken",
    "call_with_retry",
    "canonical_json",
    "sha256_of",
    "new_uuid",
    "new_plan_id",
    "new_op_id",
    "new_run_id",
    "now_utc",
    "after",
    "to_rfc3339",
    "normalize_dt",
]
