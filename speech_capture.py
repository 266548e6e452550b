from __future__ import annotations

import asyncio
import itertools
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from errors import (
    MicrophonePermissionError,
    Notification,
    Notifier,
    RecognitionError,
    RecognitionErrorKind,
    TranslatorError,
    UnsupportedPlatformError,
)
from session_timers import SessionTimers
from speech_engine import RecognitionEngine, RecognitionEvent, RecognitionEventKind


class CaptureStatus(str, Enum):
    IDLE = "idle"
    REQUESTING_PERMISSION = "requesting-permission"
    LISTENING = "listening"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class CaptureSession:
    session_id: int
    status: CaptureStatus = CaptureStatus.IDLE
    finalized: list[str] = field(default_factory=list)
    interim: str = ""
    stop_requested: bool = False
    emitted: bool = False
    ended: bool = False

    @property
    def transcript(self) -> str:
        parts = [*self.finalized, self.interim]
        return re.sub(r"\s+", " ", " ".join(part for part in parts if part)).strip()


class SpeechCapture:
    """Microphone dictation with silence auto-stop.

    Engine events are consumed from a queue by one pump task per session. The
    final transcript is handed to ``on_transcription`` only from the engine's
    ``end`` event, once per session. With ``streaming`` enabled, transcripts
    longer than ``min_intermediate_chars`` are also forwarded to
    ``on_intermediate`` after ``debounce_s`` without a newer result.
    """

    SILENCE_TIMER = "silence"
    DEBOUNCE_TIMER = "debounce"

    def __init__(
        self,
        engine: RecognitionEngine,
        on_transcription: Callable[[str], None],
        notify: Optional[Notifier] = None,
        *,
        on_intermediate: Optional[Callable[[str], None]] = None,
        on_status_changed: Optional[Callable[[CaptureStatus], None]] = None,
        on_transcript_changed: Optional[Callable[[str], None]] = None,
        silence_duration_s: float = 5.0,
        streaming: bool = False,
        debounce_s: float = 1.5,
        min_intermediate_chars: int = 10,
        locale: str = "en-US",
        timers: Optional[SessionTimers] = None,
    ) -> None:
        self._engine = engine
        self._on_transcription = on_transcription
        self._notify = notify or (lambda notification: None)
        self._on_intermediate = on_intermediate
        self._on_status_changed = on_status_changed
        self._on_transcript_changed = on_transcript_changed
        self.silence_duration_s = silence_duration_s
        self.streaming = streaming
        self.debounce_s = debounce_s
        self.min_intermediate_chars = min_intermediate_chars
        self.locale = locale
        self._timers = timers or SessionTimers()
        self._ids = itertools.count(1)
        self._session: Optional[CaptureSession] = None
        self._pump_task: Optional[asyncio.Task[None]] = None
        self.last_error: Optional[TranslatorError] = None

    @property
    def session(self) -> Optional[CaptureSession]:
        return self._session

    @property
    def status(self) -> CaptureStatus:
        return self._session.status if self._session else CaptureStatus.IDLE

    @property
    def transcript(self) -> str:
        return self._session.transcript if self._session else ""

    def silence_remaining(self) -> Optional[float]:
        session = self._session
        if session is None:
            return None
        return self._timers.remaining(session.session_id, self.SILENCE_TIMER)

    async def start(self) -> None:
        self._teardown()
        session = CaptureSession(next(self._ids))
        self._session = session
        self.last_error = None
        self._timers.cancel_all_except(session.session_id)
        self._emit_transcript_changed("")

        if not self._engine.is_supported():
            self._fail(
                session,
                UnsupportedPlatformError(
                    "Speech recognition is not available. Install a Vosk model and set VOSK_MODEL_PATH."
                ),
            )
            return

        self._set_status(session, CaptureStatus.REQUESTING_PERMISSION)
        granted = await self._engine.request_permission()
        if self._session is not session:
            return
        if not granted:
            self._fail(session, MicrophonePermissionError("Please allow microphone access to use voice input."))
            return
        if session.stop_requested:
            self._set_status(session, CaptureStatus.IDLE)
            return

        events: asyncio.Queue[RecognitionEvent] = asyncio.Queue()
        try:
            await self._engine.open(self.locale, events)
        except Exception as exc:  # noqa: BLE001 - engine startup boundary
            logging.warning("speech_capture_open_failed session=%d error=%s", session.session_id, exc)
            if self._session is not session:
                return
            self._fail(
                session,
                RecognitionError(
                    RecognitionErrorKind.GENERIC,
                    message="Failed to start voice recognition. Please try again.",
                ),
            )
            return
        if self._session is not session:
            return
        if session.stop_requested:
            self._engine.abort()
            self._set_status(session, CaptureStatus.IDLE)
            return

        task = asyncio.create_task(self._pump(session, events), name=f"speech-capture-{session.session_id}")
        task.add_done_callback(self._on_pump_done)
        self._pump_task = task
        self._arm_silence_timer(session)

    def stop(self) -> None:
        session = self._session
        if session is None or session.stop_requested or session.ended:
            return
        session.stop_requested = True
        self._cancel_timers(session)
        if session.status is CaptureStatus.REQUESTING_PERMISSION:
            return
        if self._pump_task is None:
            return
        self._set_status(session, CaptureStatus.PROCESSING)
        logging.info("speech_capture_stop session=%d chars=%d", session.session_id, len(session.transcript))
        self._engine.stop()

    async def retry(self) -> None:
        self.last_error = None
        await self.start()

    def close(self) -> None:
        self._teardown()
        self._timers.cancel_all()
        self._session = None

    async def _pump(self, session: CaptureSession, events: asyncio.Queue[RecognitionEvent]) -> None:
        while True:
            event = await events.get()
            if self._session is not session:
                return
            if event.kind is RecognitionEventKind.START:
                self._handle_start(session)
            elif event.kind is RecognitionEventKind.RESULT:
                self._handle_result(session, event)
            elif event.kind is RecognitionEventKind.ERROR:
                self._handle_error(session, event.error_code)
            elif event.kind is RecognitionEventKind.END:
                self._handle_end(session)
                return

    def _handle_start(self, session: CaptureSession) -> None:
        if session.stop_requested:
            return
        self._set_status(session, CaptureStatus.LISTENING)
        logging.info("speech_capture_listening session=%d locale=%s", session.session_id, self.locale)
        self._notify(
            Notification(
                "Recording Started",
                f"Speak now. Recording will stop after {self.silence_duration_s:g} seconds of silence.",
            )
        )

    def _handle_result(self, session: CaptureSession, event: RecognitionEvent) -> None:
        text = (event.text or "").strip()
        if event.is_final:
            if text:
                session.finalized.append(text)
            session.interim = ""
        else:
            session.interim = text
        transcript = session.transcript
        self._emit_transcript_changed(transcript)
        if session.stop_requested:
            return

        self._arm_silence_timer(session)
        if not (self.streaming and self._on_intermediate):
            return
        self._timers.cancel(session.session_id, self.DEBOUNCE_TIMER)
        if len(transcript) > self.min_intermediate_chars:
            self._timers.schedule(
                session.session_id,
                self.DEBOUNCE_TIMER,
                self.debounce_s,
                lambda: self._emit_intermediate(session, transcript),
            )

    def _handle_error(self, session: CaptureSession, code: str) -> None:
        error = RecognitionError.from_code(code)
        logging.warning(
            "speech_capture_error session=%d code=%s kind=%s",
            session.session_id,
            code,
            error.kind.value,
        )
        if not error.fatal:
            if error.kind is RecognitionErrorKind.NO_SPEECH:
                self._notify(Notification(error.title, error.message))
            return
        self.last_error = error
        self._set_status(session, CaptureStatus.ERROR)
        self._notify(error.to_notification())
        if not session.stop_requested:
            session.stop_requested = True
            self._cancel_timers(session)
            self._engine.stop()

    def _handle_end(self, session: CaptureSession) -> None:
        session.ended = True
        self._cancel_timers(session)
        transcript = session.transcript
        logging.info("speech_capture_end session=%d chars=%d", session.session_id, len(transcript))
        if transcript and not session.emitted:
            session.emitted = True
            self._set_status(session, CaptureStatus.COMPLETE)
            self._on_transcription(transcript)
            self._notify(Notification("Recording Complete", "Audio transcribed successfully. Ready for translation."))
            return
        if session.status is not CaptureStatus.ERROR:
            self._set_status(session, CaptureStatus.IDLE)

    def _emit_intermediate(self, session: CaptureSession, transcript: str) -> None:
        if self._session is not session or session.stop_requested or self._on_intermediate is None:
            return
        logging.debug("speech_capture_intermediate session=%d chars=%d", session.session_id, len(transcript))
        self._on_intermediate(transcript)

    def _on_silence(self, session: CaptureSession) -> None:
        if self._session is not session or session.stop_requested:
            return
        logging.info("speech_capture_silence session=%d after_s=%.2f", session.session_id, self.silence_duration_s)
        self.stop()

    def _arm_silence_timer(self, session: CaptureSession) -> None:
        self._timers.schedule(
            session.session_id,
            self.SILENCE_TIMER,
            self.silence_duration_s,
            lambda: self._on_silence(session),
        )

    def _cancel_timers(self, session: CaptureSession) -> None:
        self._timers.cancel_session(session.session_id)

    def _fail(self, session: CaptureSession, error: TranslatorError) -> None:
        self.last_error = error
        self._cancel_timers(session)
        self._set_status(session, CaptureStatus.ERROR)
        self._notify(error.to_notification())

    def _teardown(self) -> None:
        previous = self._session
        if previous is not None:
            self._cancel_timers(previous)
            previous.stop_requested = True
        task, self._pump_task = self._pump_task, None
        if task is not None and not task.done():
            task.cancel()
        if previous is not None and not previous.ended:
            self._engine.abort()

    def _set_status(self, session: CaptureSession, status: CaptureStatus) -> None:
        if session.status is status:
            return
        session.status = status
        if self._session is session and self._on_status_changed is not None:
            self._on_status_changed(status)

    def _emit_transcript_changed(self, transcript: str) -> None:
        if self._on_transcript_changed is not None:
            self._on_transcript_changed(transcript)

    def _on_pump_done(self, task: asyncio.Task[None]) -> None:
        if self._pump_task is task:
            self._pump_task = None
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        logging.error("speech_capture_pump_failed error=%s", exc, exc_info=exc)
        session = self._session
        if session is not None:
            self._fail(session, RecognitionError(RecognitionErrorKind.GENERIC))
