import asyncio
import logging
from typing import Any, Dict, Optional

_MISSING = object()


class ExpiringMap:
    """Keyed values that revert on their own after a delay.

    Each ``set`` may schedule a revert on the running event loop. The revert
    either restores ``rest_value`` or, when no rest value is given, removes
    the key. Setting a key again cancels the revert still pending for it, so
    a stale timer from an earlier mark can never clear a newer value.
    """

    def __init__(self, rest_value: Any = _MISSING):
        self._rest_value = rest_value
        self._values: Dict[str, Any] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}

    @property
    def deletes_on_expiry(self) -> bool:
        return self._rest_value is _MISSING

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def set(self, key: str, value: Any, expire_after: Optional[float] = None):
        self._cancel_timer(key)
        self._values[key] = value
        if expire_after is not None:
            self._schedule(key, expire_after)

    def expire(self, key: str, delay: Optional[float] = None):
        """Revert ``key`` now, or after ``delay`` seconds"""
        self._cancel_timer(key)
        if delay:
            self._schedule(key, delay)
        else:
            self._revert(key)

    def pending(self, key: str) -> bool:
        return key in self._timers

    def snapshot(self) -> Dict[str, Any]:
        return dict(self._values)

    def clear(self):
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._values.clear()

    def _schedule(self, key: str, delay: float):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logging.warning(f"No running event loop, expiring {key!r} immediately")
            self._revert(key)
            return
        self._timers[key] = loop.call_later(delay, self._on_timer, key)

    def _on_timer(self, key: str):
        self._timers.pop(key, None)
        self._revert(key)

    def _revert(self, key: str):
        if self.deletes_on_expiry:
            self._values.pop(key, None)
        elif key in self._values:
            self._values[key] = self._rest_value

    def _cancel_timer(self, key: str):
        handle = self._timers.pop(key, None)
        if handle is not None:
            handle.cancel()
