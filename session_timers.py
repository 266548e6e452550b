from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional


class SessionTimers:
    """Cancellable one-shot timers keyed by ``(session_id, name)``.

    Scheduling a name that is already pending replaces it. A callback only runs
    if its handle is still the registered one, so a timer that was cancelled or
    replaced never fires late.
    """

    def __init__(self) -> None:
        self._handles: dict[tuple[int, str], asyncio.TimerHandle] = {}
        self._deadlines: dict[tuple[int, str], float] = {}

    def schedule(self, session_id: int, name: str, delay_s: float, callback: Callable[[], None]) -> None:
        loop = asyncio.get_running_loop()
        key = (session_id, name)
        self.cancel(session_id, name)

        def _fire() -> None:
            if self._handles.get(key) is not handle:
                return
            self._handles.pop(key, None)
            self._deadlines.pop(key, None)
            callback()

        handle = loop.call_later(max(0.0, delay_s), _fire)
        self._handles[key] = handle
        self._deadlines[key] = time.monotonic() + max(0.0, delay_s)

    def cancel(self, session_id: int, name: str) -> bool:
        key = (session_id, name)
        handle = self._handles.pop(key, None)
        self._deadlines.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_session(self, session_id: int) -> int:
        keys = [key for key in self._handles if key[0] == session_id]
        for key in keys:
            self.cancel(*key)
        return len(keys)

    def cancel_all_except(self, session_id: int) -> int:
        stale = {key[0] for key in self._handles if key[0] != session_id}
        cancelled = sum(self.cancel_session(stale_id) for stale_id in stale)
        if cancelled:
            logging.debug("session_timers_stale_cancelled count=%d", cancelled)
        return cancelled

    def cancel_all(self) -> int:
        keys = list(self._handles)
        for key in keys:
            self.cancel(*key)
        return len(keys)

    def is_pending(self, session_id: int, name: str) -> bool:
        return (session_id, name) in self._handles

    def pending_count(self, session_id: Optional[int] = None) -> int:
        if session_id is None:
            return len(self._handles)
        return sum(1 for key in self._handles if key[0] == session_id)

    def remaining(self, session_id: int, name: str) -> Optional[float]:
        deadline = self._deadlines.get((session_id, name))
        if deadline is None:
            return None
        return max(0.0, deadline - time.monotonic())
