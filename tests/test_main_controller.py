from __future__ import annotations

import asyncio
import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock

import httpx
from PyQt6.QtWidgets import QApplication

from config_utils import ClientSettings
from errors import ImageSupersededError
from main import TranslatorController
from tests.fakes import FakeRecognitionEngine
from translation_types import INPUT_TYPE_IMAGE, INPUT_TYPE_TEXT
from translator_window import TranslatorWindow


def _settings() -> ClientSettings:
    return ClientSettings(
        service_url="https://proxy.test/functions/v1",
        access_key="client-key",
        timeout_s=5.0,
        silence_duration_s=5.0,
        streaming=False,
        debounce_s=1.5,
        min_intermediate_chars=10,
        vosk_model_path=None,
        speech_locale="en-US",
        max_image_bytes=1024 * 1024,
    )


class TranslatorControllerTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")
        cls._app = QApplication.instance() or QApplication([])

    def setUp(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responses: dict[str, httpx.Response] = {
            "translate-multimodal": httpx.Response(200, json={"translatedText": "Hello"}),
            "extract-image-text": httpx.Response(200, json={"extractedText": "STOP"}),
            "text-to-speech": httpx.Response(200, json={"audioContent": "SUQz"}),
        }
        self.loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.loop)
        self.window = TranslatorWindow()
        self.player = AsyncMock()
        self.controller = TranslatorController(
            self.window,
            self.loop,
            settings=_settings(),
            engine=FakeRecognitionEngine(),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(self._handle)),
            player=self.player,
        )

    def tearDown(self) -> None:
        self.loop.run_until_complete(self.controller.aclose())
        self.window.close()
        self.loop.close()
        asyncio.set_event_loop(None)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses[request.url.path.rsplit("/", 1)[-1]]

    def _select_language(self, name: str) -> None:
        self.window.language_combo.setCurrentIndex(self.window.language_combo.findData(name))

    def test_translate_shows_result_and_sends_access_key(self) -> None:
        self.window.set_input_text("Hola")
        self._select_language("English")
        self.loop.run_until_complete(self.controller.translate_current())
        self.assertEqual(self.window.translation_text(), "Hello")
        self.assertTrue(self.window.translate_button.isEnabled())
        self.assertEqual(self.requests[0].headers["apikey"], "client-key")
        self.assertEqual(json.loads(self.requests[0].content)["inputType"], "text")

    def test_missing_language_notifies_without_request(self) -> None:
        self.window.set_input_text("Hola")
        self.loop.run_until_complete(self.controller.translate_current())
        self.assertEqual(self.requests, [])
        self.assertIn("Please select a target language.", self.window.notification_label.text())

    def test_unauthorized_translation_reports_api_key_problem(self) -> None:
        self.responses["translate-multimodal"] = httpx.Response(401, json={"error": "Unauthorized"})
        self.window.set_input_text("Hola")
        self._select_language("English")
        self.loop.run_until_complete(self.controller.translate_current())
        self.assertEqual(self.window.translation_text(), "")
        self.assertIn("Translation Error", self.window.notification_label.text())
        self.assertIn("API key", self.window.notification_label.text())

    def test_image_text_becomes_input_and_switches_tier(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "sign.png"
            path.write_bytes(b"\x89PNG\r\n\x1a\nbytes")
            self.loop.run_until_complete(self.controller.submit_image(str(path)))
        self.assertEqual(self.window.input_text(), "STOP")
        self.assertEqual(self.controller.current_input_type, INPUT_TYPE_IMAGE)
        self.assertFalse(self.window.remove_image_button.isHidden())

        self._select_language("English")
        self.loop.run_until_complete(self.controller.translate_current())
        self.assertEqual(json.loads(self.requests[-1].content)["inputType"], "image")

        self.controller.remove_image()
        self.assertEqual(self.controller.current_input_type, INPUT_TYPE_TEXT)
        self.assertIsNone(self.controller.images.attachment)

    def test_image_without_text_notifies(self) -> None:
        self.responses["extract-image-text"] = httpx.Response(200, json={"extractedText": ""})
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "blank.png"
            path.write_bytes(b"\x89PNG\r\n\x1a\nbytes")
            self.loop.run_until_complete(self.controller.submit_image(str(path)))
        self.assertIn("No Text Found", self.window.notification_label.text())
        self.assertEqual(self.controller.current_input_type, INPUT_TYPE_TEXT)

    def test_replaced_image_submission_is_dropped_quietly(self) -> None:
        self.controller.images.submit = AsyncMock(side_effect=ImageSupersededError("A newer image replaced this one."))
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "old.png"
            path.write_bytes(b"\x89PNG\r\n\x1a\nbytes")
            self.loop.run_until_complete(self.controller.submit_image(str(path)))
        self.assertTrue(self.window.notification_label.isHidden())
        self.assertEqual(self.window.input_text(), "")
        self.assertEqual(self.controller.current_input_type, INPUT_TYPE_TEXT)

    def test_voice_transcript_fills_input(self) -> None:
        self.controller.current_input_type = INPUT_TYPE_IMAGE
        self.controller._on_voice_transcription("buenos dias")
        self.assertEqual(self.window.input_text(), "buenos dias")
        self.assertEqual(self.controller.current_input_type, INPUT_TYPE_TEXT)

    def test_speak_plays_translation_audio(self) -> None:
        self.window.set_translation("Hello")
        self.loop.run_until_complete(self.controller.speak_translation())
        self.player.play_base64.assert_awaited_once_with("SUQz")
        self.assertTrue(self.window.speak_button.isEnabled())

    def test_speak_failure_is_reported(self) -> None:
        self.responses["text-to-speech"] = httpx.Response(500)
        self.window.set_translation("Hello")
        self.loop.run_until_complete(self.controller.speak_translation())
        self.player.play_base64.assert_not_awaited()
        self.assertIn("Text-to-Speech Error", self.window.notification_label.text())

    def test_copy_without_translation_notifies(self) -> None:
        self.controller.copy_translation()
        self.assertIn("Nothing to Copy", self.window.notification_label.text())


if __name__ == "__main__":
    unittest.main()
