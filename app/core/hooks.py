"""Post-commit hooks for best-effort side effects (reminder delivery, notifications, calendar sync).

Hooks run after the primary write has committed. A failing hook never rolls the write back;
its error is logged and handed back to the caller as a warning string.
"""

import inspect
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

FEE_COLLECTION_CREATED = "fee_collection_created"
PAYMENT_RECORDED = "payment_recorded"
FEE_COLLECTION_CANCELLED = "fee_collection_cancelled"
FEE_REMINDER = "fee_reminder"


class HookRegistry:
    def __init__(self) -> None:
        self._hooks: Dict[str, List[Callable[..., Any]]] = defaultdict(list)

    def register(self, event: str, fn: Callable[..., Any]) -> Callable[..., Any]:
        self._hooks[event].append(fn)
        return fn

    def unregister(self, event: str, fn: Callable[..., Any]) -> None:
        if fn in self._hooks.get(event, []):
            self._hooks[event].remove(fn)

    def clear(self) -> None:
        self._hooks.clear()

    async def dispatch(self, event: str, *args: Any, **kwargs: Any) -> List[str]:
        """Call every hook for event in registration order. Returns one warning per failed hook."""
        warnings: List[str] = []
        for fn in list(self._hooks.get(event, [])):
            try:
                result = fn(*args, **kwargs)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # hook failures must not surface as request failures
                name = getattr(fn, "__name__", repr(fn))
                logger.warning("Post-commit hook %s for %s failed: %s", name, event, exc)
                warnings.append(f"{event}: {name} failed: {exc}")
        return warnings


hooks = HookRegistry()
