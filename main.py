from __future__ import annotations

import asyncio
import logging
import os
import sys
from typing import Any, Coroutine, Optional

import httpx
from dotenv import load_dotenv
from PyQt6.QtWidgets import QApplication
from qasync import QEventLoop

from audio_playback import AudioPlayer
from config_utils import ClientSettings
from errors import ImageSupersededError, Notification, ServiceError, TranslatorError
from image_capture import ImageCapturePipeline, ImageFile
from remote_services import ImageTextClient, ServiceContext, TextToSpeechClient, TranslationClient
from speech_capture import SpeechCapture
from speech_engine import RecognitionEngine, VoskMicrophoneEngine
from translation_orchestrator import TranslationOrchestrator
from translation_types import INPUT_TYPE_IMAGE, INPUT_TYPE_TEXT
from translator_window import TranslatorWindow


class TranslatorController:
    def __init__(
        self,
        ui: TranslatorWindow,
        loop: asyncio.AbstractEventLoop,
        settings: Optional[ClientSettings] = None,
        engine: Optional[RecognitionEngine] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        player: Optional[AudioPlayer] = None,
    ) -> None:
        self.ui = ui
        self.loop = loop
        self.settings = settings or ClientSettings.from_env()
        self.context = ServiceContext.from_settings(self.settings)
        self._http = http_client or httpx.AsyncClient(timeout=self.settings.timeout_s)

        self.translation_client = TranslationClient(self.context, self._http)
        self.image_client = ImageTextClient(self.context, self._http)
        self.tts_client = TextToSpeechClient(self.context, self._http, player)
        self.orchestrator = TranslationOrchestrator(self.translation_client, on_loading_changed=self.ui.set_loading)
        self.images = ImageCapturePipeline(self.image_client, max_bytes=self.settings.max_image_bytes)
        self.capture = SpeechCapture(
            engine or VoskMicrophoneEngine(self.settings.vosk_model_path),
            self._on_voice_transcription,
            self.notify,
            on_intermediate=self._on_intermediate_transcription if self.settings.streaming else None,
            on_status_changed=self.ui.set_capture_status,
            on_transcript_changed=self.ui.set_live_transcript,
            silence_duration_s=self.settings.silence_duration_s,
            streaming=self.settings.streaming,
            debounce_s=self.settings.debounce_s,
            min_intermediate_chars=self.settings.min_intermediate_chars,
            locale=self.settings.speech_locale,
        )
        self.current_input_type = INPUT_TYPE_TEXT
        self._speaking = False
        self._tasks: set[asyncio.Task[Any]] = set()

        self.ui.translate_requested.connect(lambda: self._spawn(self.translate_current(), "translate"))
        self.ui.record_toggled.connect(self._on_record_toggled)
        self.ui.retry_requested.connect(lambda: self._spawn(self.capture.retry(), "capture-retry"))
        self.ui.image_selected.connect(lambda path: self._spawn(self.submit_image(path), "image-submit"))
        self.ui.image_removed.connect(self.remove_image)
        self.ui.speak_requested.connect(lambda: self._spawn(self.speak_translation(), "speak"))
        self.ui.copy_requested.connect(self.copy_translation)
        self.ui.input_edited.connect(self._on_input_edited)
        self.ui.set_countdown_source(self.capture.silence_remaining)
        self.ui.set_status(f"Ready. Service: {self.context.base_url}")

    def notify(self, notification: Notification) -> None:
        log = logging.warning if notification.destructive else logging.info
        log("notification title=%r description=%r", notification.title, notification.description)
        self.ui.show_notification(notification)

    async def translate_current(self) -> None:
        try:
            result = await self.orchestrator.translate(
                self.ui.input_text(),
                self.ui.target_language(),
                self.current_input_type,
            )
        except ServiceError as exc:
            self.notify(Notification("Translation Error", exc.message, destructive=True))
            return
        except TranslatorError as exc:
            self.notify(exc.to_notification())
            return
        self.ui.set_translation(result.translated_text)

    async def submit_image(self, path: str) -> None:
        try:
            image = ImageFile.from_path(path, max_bytes=self.images.max_bytes)
        except OSError as exc:
            logging.warning("image_read_failed path=%s error=%s", path, exc)
            self.notify(Notification("Image Processing Failed", "Could not read the selected file.", destructive=True))
            return
        except TranslatorError as exc:
            self.notify(exc.to_notification())
            return
        try:
            attachment = await self.images.submit(image)
        except ImageSupersededError:
            logging.debug("image_submit_superseded path=%s", path)
            return
        except TranslatorError as exc:
            self.ui.set_preview(None)
            self.notify(exc.to_notification())
            return
        if attachment is None:
            self.ui.set_preview(None)
            self.notify(
                Notification(
                    "No Text Found",
                    "No readable text found in the image. Try uploading a clearer image.",
                    destructive=True,
                )
            )
            return
        self.ui.set_preview(attachment.preview.path)
        self.ui.set_input_text(attachment.extracted_text)
        self.current_input_type = INPUT_TYPE_IMAGE
        self.notify(Notification("Text Extracted", "Text has been extracted from the image!"))

    def remove_image(self) -> None:
        self.images.remove()
        self.ui.set_preview(None)
        if self.current_input_type == INPUT_TYPE_IMAGE:
            self.current_input_type = INPUT_TYPE_TEXT

    async def speak_translation(self) -> None:
        if self._speaking:
            return
        self._speaking = True
        self.ui.set_busy_speaking(True)
        try:
            await self.tts_client.speak(self.ui.translation_text())
        except TranslatorError as exc:
            self.notify(Notification("Text-to-Speech Error", exc.message, destructive=True))
        finally:
            self._speaking = False
            self.ui.set_busy_speaking(False)

    def copy_translation(self) -> None:
        text = self.ui.translation_text().strip()
        if not text:
            self.notify(Notification("Nothing to Copy", "Translate something first.", destructive=True))
            return
        clipboard = QApplication.clipboard()
        if clipboard is None:
            self.notify(Notification("Copy Failed", "The clipboard is not available.", destructive=True))
            return
        clipboard.setText(text)
        if clipboard.text() != text:
            self.notify(Notification("Copy Failed", "Could not write to the clipboard.", destructive=True))
            return
        self.notify(Notification("Copied", "Translation copied to clipboard."))

    def shutdown_sync(self) -> None:
        self.capture.close()
        self.images.close()
        for task in list(self._tasks):
            if not task.done():
                task.cancel()

    async def aclose(self) -> None:
        self.shutdown_sync()
        await self._http.aclose()

    def _on_voice_transcription(self, transcript: str) -> None:
        self.ui.set_input_text(transcript)
        self.current_input_type = INPUT_TYPE_TEXT
        self.notify(Notification("Voice Captured", "Speech has been transcribed successfully!"))

    def _on_intermediate_transcription(self, transcript: str) -> None:
        self.ui.set_input_text(transcript)
        self.current_input_type = INPUT_TYPE_TEXT
        if self.orchestrator.is_loading or not self.ui.target_language():
            logging.debug("intermediate_translation_skipped chars=%d", len(transcript))
            return
        self._spawn(self.translate_current(), "translate-intermediate")

    def _on_record_toggled(self, should_record: bool) -> None:
        if should_record:
            self._spawn(self.capture.start(), "capture-start")
        else:
            self.capture.stop()

    def _on_input_edited(self) -> None:
        if not self.ui.input_text().strip() and self.images.attachment is None:
            self.current_input_type = INPUT_TYPE_TEXT

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task[None]:
        task = self.loop.create_task(coro, name=name)
        self._tasks.add(task)

        def _finalize(done_task: asyncio.Task[None]) -> None:
            self._tasks.discard(done_task)
            try:
                done_task.result()
            except asyncio.CancelledError:
                pass
            except Exception as exc:  # noqa: BLE001 - task boundary
                logging.error("task_failed name=%s error=%s", name, exc, exc_info=exc)
                self.notify(Notification("Unexpected Error", str(exc) or type(exc).__name__, destructive=True))

        task.add_done_callback(_finalize)
        return task


def main() -> None:
    load_dotenv()
    log_level_name = (os.getenv("LOG_LEVEL", "INFO") or "INFO").upper()
    log_level = getattr(logging, log_level_name, logging.INFO)
    logging.basicConfig(level=log_level, format="%(asctime)s %(levelname)s %(message)s")

    app = QApplication(sys.argv)
    loop = QEventLoop(app)
    asyncio.set_event_loop(loop)

    window = TranslatorWindow()
    controller = TranslatorController(window, loop)
    app.aboutToQuit.connect(controller.shutdown_sync)
    window.show()

    with loop:
        loop.run_forever()
        loop.run_until_complete(controller.aclose())


if __name__ == "__main__":
    main()
