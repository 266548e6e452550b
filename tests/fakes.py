from __future__ import annotations

import asyncio
from typing import Optional

from speech_engine import RecognitionEngine, RecognitionEvent


class FakeRecognitionEngine(RecognitionEngine):
    def __init__(
        self,
        supported: bool = True,
        permission: bool = True,
        fail_open: bool = False,
        end_on_stop: bool = True,
    ) -> None:
        self.supported = supported
        self.permission = permission
        self.fail_open = fail_open
        self.end_on_stop = end_on_stop
        self.events: Optional[asyncio.Queue[RecognitionEvent]] = None
        self.locale = ""
        self.open_calls = 0
        self.stop_calls = 0
        self.abort_calls = 0
        self.permission_requests = 0

    def is_supported(self) -> bool:
        return self.supported

    async def request_permission(self) -> bool:
        self.permission_requests += 1
        return self.permission

    async def open(self, locale: str, events: asyncio.Queue[RecognitionEvent]) -> None:
        if self.fail_open:
            raise RuntimeError("device busy")
        self.open_calls += 1
        self.locale = locale
        self.events = events
        events.put_nowait(RecognitionEvent.start())

    def stop(self) -> None:
        self.stop_calls += 1
        if self.end_on_stop and self.events is not None:
            self.events.put_nowait(RecognitionEvent.end())

    def abort(self) -> None:
        self.abort_calls += 1
        self.events = None

    def emit(self, event: RecognitionEvent) -> None:
        assert self.events is not None
        self.events.put_nowait(event)

    def interim(self, text: str) -> None:
        self.emit(RecognitionEvent.result(text, is_final=False))

    def final(self, text: str) -> None:
        self.emit(RecognitionEvent.result(text, is_final=True))


async def settle(delay: float = 0.0) -> None:
    await asyncio.sleep(delay)
    for _ in range(3):
        await asyncio.sleep(0)
