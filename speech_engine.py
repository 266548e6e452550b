from __future__ import annotations

import asyncio
import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import sounddevice as sd
import vosk


class RecognitionEventKind(str, Enum):
    START = "start"
    RESULT = "result"
    ERROR = "error"
    END = "end"


@dataclass(frozen=True)
class RecognitionEvent:
    kind: RecognitionEventKind
    text: str = ""
    is_final: bool = False
    error_code: str = ""

    @classmethod
    def start(cls) -> "RecognitionEvent":
        return cls(RecognitionEventKind.START)

    @classmethod
    def result(cls, text: str, is_final: bool) -> "RecognitionEvent":
        return cls(RecognitionEventKind.RESULT, text=text, is_final=is_final)

    @classmethod
    def error(cls, code: str) -> "RecognitionEvent":
        return cls(RecognitionEventKind.ERROR, error_code=code)

    @classmethod
    def end(cls) -> "RecognitionEvent":
        return cls(RecognitionEventKind.END)


class RecognitionEngine(ABC):
    """Continuous speech recognizer that reports through an event queue.

    ``open`` starts a session that publishes ``start``, any number of
    ``result``/``error`` events and exactly one ``end``, either after ``stop``
    or after the engine loses its input. ``abort`` releases the session
    without publishing anything further, including from an ``open`` that is
    still in progress.
    """

    @abstractmethod
    def is_supported(self) -> bool: ...

    @abstractmethod
    async def request_permission(self) -> bool: ...

    @abstractmethod
    async def open(self, locale: str, events: asyncio.Queue[RecognitionEvent]) -> None: ...

    @abstractmethod
    def stop(self) -> None: ...

    @abstractmethod
    def abort(self) -> None: ...


class VoskMicrophoneEngine(RecognitionEngine):
    AUDIO_CAPTURE_CODE = "audio-capture"
    RECOGNIZER_FAILURE_CODE = "recognizer-failure"
    MAX_OVERFLOW_BLOCKS = 20

    def __init__(
        self,
        model_path: Optional[str],
        sample_rate: int = 16000,
        blocksize: int = 4000,
        device: Optional[str] = None,
    ) -> None:
        self._model_path = model_path
        self._sample_rate = sample_rate
        self._blocksize = blocksize
        self._device = device
        self._models: dict[Path, vosk.Model] = {}
        self._model_lock = threading.Lock()
        self._lock = threading.Lock()
        self._stream: Optional[sd.RawInputStream] = None
        self._recognizer: Optional[vosk.KaldiRecognizer] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._events: Optional[asyncio.Queue[RecognitionEvent]] = None
        self._last_partial = ""
        self._token = 0
        self._failure_code = ""
        self._overflow_blocks = 0

    def is_supported(self) -> bool:
        if not self._model_path:
            return False
        return Path(self._model_path).is_dir()

    async def request_permission(self) -> bool:
        return await asyncio.to_thread(self._check_input)

    async def open(self, locale: str, events: asyncio.Queue[RecognitionEvent]) -> None:
        self.abort()
        token = self._token
        model = await asyncio.to_thread(self._load_model, locale)
        if token != self._token:
            logging.info("speech_engine_open_superseded locale=%s", locale)
            return

        self._loop = asyncio.get_running_loop()
        self._events = events
        self._last_partial = ""
        self._failure_code = ""
        self._overflow_blocks = 0
        with self._lock:
            self._recognizer = vosk.KaldiRecognizer(model, self._sample_rate)
        try:
            stream = await asyncio.to_thread(self._start_stream, token)
        except sd.PortAudioError:
            if token == self._token:
                self.abort()
            raise
        if token != self._token:
            stream.close()
            logging.info("speech_engine_open_superseded locale=%s", locale)
            return
        self._stream = stream
        logging.info("speech_engine_open locale=%s sample_rate=%d", locale, self._sample_rate)
        self._publish(RecognitionEvent.start())

    def stop(self) -> None:
        if self._stream is None:
            return
        self._close_stream()
        with self._lock:
            recognizer = self._recognizer
            self._recognizer = None
        if recognizer is not None:
            text = self._read_text(recognizer.FinalResult(), "text")
            if text:
                self._publish(RecognitionEvent.result(text, is_final=True))
        self._publish(RecognitionEvent.end())

    def abort(self) -> None:
        self._close_stream()
        with self._lock:
            self._recognizer = None
        self._events = None

    def _start_stream(self, token: int) -> sd.RawInputStream:
        stream = sd.RawInputStream(
            samplerate=self._sample_rate,
            blocksize=self._blocksize,
            dtype="int16",
            channels=1,
            callback=self._audio_callback,
            finished_callback=lambda: self._on_stream_finished(token),
            device=self._device,
        )
        try:
            stream.start()
        except sd.PortAudioError:
            stream.close()
            raise
        return stream

    def _audio_callback(self, indata, frames, time_info, status) -> None:
        del frames, time_info
        if status:
            logging.debug("speech_engine_status status=%s", status)
        if status and status.input_overflow:
            self._overflow_blocks += 1
            if self._overflow_blocks >= self.MAX_OVERFLOW_BLOCKS:
                logging.warning("speech_engine_overflow blocks=%d", self._overflow_blocks)
                self._failure_code = self.AUDIO_CAPTURE_CODE
                raise sd.CallbackAbort
        else:
            self._overflow_blocks = 0

        with self._lock:
            recognizer = self._recognizer
            if recognizer is None:
                return
            try:
                accepted = recognizer.AcceptWaveform(bytes(indata))
                raw = recognizer.Result() if accepted else recognizer.PartialResult()
            except Exception as exc:  # noqa: BLE001 - audio thread boundary
                logging.error("speech_engine_recognizer_failed error=%s", exc)
                self._failure_code = self.RECOGNIZER_FAILURE_CODE
                raise sd.CallbackAbort from exc

        if accepted:
            text = self._read_text(raw, "text")
            self._last_partial = ""
            if text:
                self._publish(RecognitionEvent.result(text, is_final=True))
            return
        partial = self._read_text(raw, "partial")
        if partial and partial != self._last_partial:
            self._last_partial = partial
            self._publish(RecognitionEvent.result(partial, is_final=False))

    def _on_stream_finished(self, token: int) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._handle_stream_lost, token)

    def _handle_stream_lost(self, token: int) -> None:
        # Runs on the loop; a stream closed by stop/abort has a stale token.
        if token != self._token:
            return
        code = self._failure_code or self.AUDIO_CAPTURE_CODE
        logging.warning("speech_engine_stream_lost code=%s", code)
        self._close_stream()
        with self._lock:
            self._recognizer = None
        self._publish(RecognitionEvent.error(code))
        self._publish(RecognitionEvent.end())
        self._events = None

    def _publish(self, event: RecognitionEvent) -> None:
        loop, events = self._loop, self._events
        if loop is None or events is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(events.put_nowait, event)

    def _close_stream(self) -> None:
        self._token += 1
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()

    def _check_input(self) -> bool:
        try:
            sd.check_input_settings(
                device=self._device,
                channels=1,
                dtype="int16",
                samplerate=self._sample_rate,
            )
        except (sd.PortAudioError, ValueError) as exc:
            logging.warning("speech_engine_permission_denied error=%s", exc)
            return False
        return True

    def _load_model(self, locale: str) -> vosk.Model:
        model_dir = self._resolve_model_dir(locale)
        with self._model_lock:
            model = self._models.get(model_dir)
            if model is None:
                vosk.SetLogLevel(-1)
                model = vosk.Model(str(model_dir))
                self._models[model_dir] = model
                logging.info("speech_engine_model_loaded path=%s", model_dir)
        return model

    def _resolve_model_dir(self, locale: str) -> Path:
        if not self._model_path:
            raise FileNotFoundError("VOSK_MODEL_PATH is not configured.")
        base = Path(self._model_path).expanduser().resolve()
        language = (locale or "").split("-", 1)[0].lower()
        for candidate in (base / locale, base / language):
            if locale and candidate.is_dir():
                return candidate
        return base

    @staticmethod
    def _read_text(raw: str, key: str) -> str:
        try:
            payload = json.loads(raw or "{}")
        except json.JSONDecodeError:
            return ""
        return str(payload.get(key, "") or "").strip()
