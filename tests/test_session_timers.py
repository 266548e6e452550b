from __future__ import annotations

import asyncio
import unittest

from session_timers import SessionTimers
from tests.fakes import settle


class SessionTimersTests(unittest.TestCase):
    def test_timer_fires_once_and_is_removed(self) -> None:
        async def scenario() -> tuple[list[str], bool]:
            timers = SessionTimers()
            fired: list[str] = []
            timers.schedule(1, "silence", 0.01, lambda: fired.append("silence"))
            await settle(0.05)
            return fired, timers.is_pending(1, "silence")

        fired, pending = asyncio.run(scenario())
        self.assertEqual(fired, ["silence"])
        self.assertFalse(pending)

    def test_rescheduling_replaces_pending_timer(self) -> None:
        async def scenario() -> list[int]:
            timers = SessionTimers()
            fired: list[int] = []
            timers.schedule(1, "debounce", 0.02, lambda: fired.append(1))
            timers.schedule(1, "debounce", 0.02, lambda: fired.append(2))
            await settle(0.06)
            return fired

        self.assertEqual(asyncio.run(scenario()), [2])

    def test_cancelled_timer_never_fires(self) -> None:
        async def scenario() -> tuple[list[str], bool, bool]:
            timers = SessionTimers()
            fired: list[str] = []
            timers.schedule(3, "silence", 0.01, lambda: fired.append("late"))
            first = timers.cancel(3, "silence")
            second = timers.cancel(3, "silence")
            await settle(0.03)
            return fired, first, second

        fired, first, second = asyncio.run(scenario())
        self.assertEqual(fired, [])
        self.assertTrue(first)
        self.assertFalse(second)

    def test_cancel_all_except_keeps_current_session(self) -> None:
        async def scenario() -> tuple[int, int, int]:
            timers = SessionTimers()
            for session_id in (1, 2, 3):
                timers.schedule(session_id, "silence", 5.0, lambda: None)
                timers.schedule(session_id, "debounce", 5.0, lambda: None)
            cancelled = timers.cancel_all_except(3)
            remaining = timers.pending_count()
            current = timers.pending_count(3)
            timers.cancel_all()
            return cancelled, remaining, current

        self.assertEqual(asyncio.run(scenario()), (4, 2, 2))

    def test_remaining_counts_down_to_none(self) -> None:
        async def scenario() -> tuple[float, object]:
            timers = SessionTimers()
            timers.schedule(1, "silence", 1.0, lambda: None)
            await settle(0.05)
            remaining = timers.remaining(1, "silence")
            timers.cancel_session(1)
            return remaining, timers.remaining(1, "silence")

        remaining, after_cancel = asyncio.run(scenario())
        self.assertGreater(remaining, 0.5)
        self.assertLess(remaining, 1.0)
        self.assertIsNone(after_cancel)


if __name__ == "__main__":
    unittest.main()
