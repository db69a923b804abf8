"""
Non-fatal side effects.

Notifications, emails, rewards and audit entries run after a settlement has
already been committed. A failure in any of them is logged and swallowed here,
once, so that no call site can accidentally unwind or un-acknowledge a
settlement that already happened.
"""
from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class NonFatalResult:
    """Outcome of a best-effort effect."""

    effect: str
    ok: bool
    value: Any = None
    error: Optional[BaseException] = None


def run_nonfatal(effect: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> NonFatalResult:
    """Run `fn`, log any exception under `effect`, and always return.

    Args:
        effect: Short name of the side effect, used as the log key.
        fn: Callable to run.

    Returns:
        NonFatalResult carrying the return value or the captured exception.
    """
    try:
        return NonFatalResult(effect=effect, ok=True, value=fn(*args, **kwargs))
    except Exception as exc:
        logger.error("side_effect_failed", effect=effect, error=str(exc), exc_info=True)
        return NonFatalResult(effect=effect, ok=False, error=exc)
