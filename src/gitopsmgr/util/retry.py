"""Retry loop with exponential backoff for transient collaborator failures."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Optional, TypeVar

from gitopsmgr.errors import GitOpsMgrError, is_transient

from .cancel import CancelToken

if TYPE_CHECKING:
    from gitopsmgr.models import RetryPolicy

T = TypeVar("T")

logger = logging.getLogger(__name__)


def call_with_retry(
    func: Callable[[], T],
    *,
    policy: "RetryPolicy",
    token: CancelToken,
    map_exception: Callable[[Exception], GitOpsMgrError],
    what: str,
    should_retry: Optional[Callable[[GitOpsMgrError], bool]] = None,
) -> T:
    """
    Call func, retrying transient failures up to policy.limit times.

    Every exception is first mapped to a gitopsmgr error. Sleeps between
    attempts go through the token so cancellation interrupts them.
    """
    retry_if = should_retry or is_transient
    for attempt in range(policy.limit + 1):
        token.check()
        try:
            return func()
        except Exception as exc:
            mapped = exc if isinstance(exc, GitOpsMgrError) else map_exception(exc)
            if retry_if(mapped) and attempt < policy.limit:
                delay = policy.delay_for(attempt + 1)
                logger.warning(
                    f"{what} failed ({mapped.kind}), retry {attempt + 1}/{policy.limit} "
                    f"in {delay:g}s: {mapped}"
                )
                token.sleep(delay)
                continue
            if mapped is exc:
                raise
            raise mapped from exc

    raise GitOpsMgrError("Unexpected retry loop termination")
