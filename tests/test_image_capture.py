from __future__ import annotations

import asyncio
import base64
import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, patch

from errors import (
    ImageProcessingError,
    ImageSupersededError,
    InvalidResponseError,
    ServiceError,
    ServiceErrorKind,
    ValidationError,
)
from image_capture import ImageCapturePipeline, ImageFile, PreviewStore, strip_data_uri_prefix

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image-bytes"


class ImageCaptureTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.store = PreviewStore(self._tmp.name)
        self.client = AsyncMock()
        self.pipeline = ImageCapturePipeline(self.client, self.store, max_bytes=1024)

    def tearDown(self) -> None:
        self.pipeline.close()
        self._tmp.cleanup()

    def test_extracted_text_keeps_preview_alive(self) -> None:
        self.client.extract_text.return_value = "STOP"
        attachment = asyncio.run(self.pipeline.submit(ImageFile("sign.png", "image/png", PNG_BYTES)))
        self.assertIsNotNone(attachment)
        self.assertEqual(attachment.extracted_text, "STOP")
        self.assertEqual(attachment.encoded_payload, base64.b64encode(PNG_BYTES).decode("ascii"))
        self.assertTrue(attachment.preview.path.exists())
        self.assertEqual(self.store.live_count, 1)
        self.client.extract_text.assert_awaited_once_with(attachment.encoded_payload)

    def test_invalid_type_or_size_makes_no_call(self) -> None:
        cases = (
            (ImageFile("notes.txt", "text/plain", b"hello"), "Invalid File Type"),
            (ImageFile("huge.png", "image/png", b"x" * 2048), "File Too Large"),
        )
        for image, title in cases:
            with self.subTest(title=title):
                with self.assertRaises(ValidationError) as ctx:
                    asyncio.run(self.pipeline.submit(image))
                self.assertEqual(ctx.exception.title, title)
        self.client.extract_text.assert_not_awaited()
        self.assertEqual(self.store.live_count, 0)

    def test_no_text_releases_preview(self) -> None:
        self.client.extract_text.return_value = "   "
        result = asyncio.run(self.pipeline.submit(ImageFile("blank.png", "image/png", PNG_BYTES)))
        self.assertIsNone(result)
        self.assertIsNone(self.pipeline.attachment)
        self.assertEqual(self.store.live_count, 0)
        self.assertEqual(list(Path(self._tmp.name).iterdir()), [])

    def test_new_submission_releases_previous_preview(self) -> None:
        self.client.extract_text.side_effect = ["first", "second"]
        first = asyncio.run(self.pipeline.submit(ImageFile("a.png", "image/png", PNG_BYTES)))
        second = asyncio.run(self.pipeline.submit(ImageFile("b.png", "image/png", PNG_BYTES)))
        self.assertTrue(first.preview.revoked)
        self.assertFalse(first.preview.path.exists())
        self.assertFalse(second.preview.revoked)
        self.assertEqual(self.store.live_count, 1)

    def test_remove_is_idempotent(self) -> None:
        self.client.extract_text.return_value = "text"
        attachment = asyncio.run(self.pipeline.submit(ImageFile("a.png", "image/png", PNG_BYTES)))
        self.pipeline.remove()
        self.pipeline.remove()
        self.assertTrue(attachment.preview.revoked)
        self.assertEqual(attachment.extracted_text, "")
        self.assertIsNone(self.pipeline.attachment)
        self.assertFalse(attachment.preview.revoke())

    def test_service_validation_message_passes_through(self) -> None:
        self.client.extract_text.side_effect = ServiceError(
            ServiceErrorKind.GENERIC_HTTP, "Image too large (max 10MB)", 400
        )
        with self.assertRaises(ImageProcessingError) as ctx:
            asyncio.run(self.pipeline.submit(ImageFile("a.png", "image/png", PNG_BYTES)))
        self.assertEqual(ctx.exception.message, "Image too large (max 10MB)")
        self.assertEqual(self.store.live_count, 0)

    def test_other_failures_use_generic_message(self) -> None:
        failures = (
            ServiceError(ServiceErrorKind.SERVICE_ERROR, "upstream detail", 500),
            InvalidResponseError("Invalid response from image text extraction service"),
        )
        for failure in failures:
            with self.subTest(failure=type(failure).__name__):
                self.client.extract_text.side_effect = failure
                with self.assertRaises(ImageProcessingError) as ctx:
                    asyncio.run(self.pipeline.submit(ImageFile("a.png", "image/png", PNG_BYTES)))
                self.assertEqual(ctx.exception.message, ImageCapturePipeline.GENERIC_FAILURE)
        self.assertEqual(self.store.live_count, 0)

    def test_overlapping_submissions_keep_only_newest(self) -> None:
        first_image = ImageFile("a.png", "image/png", PNG_BYTES + b"a")
        second_image = ImageFile("b.png", "image/png", PNG_BYTES + b"b")

        async def scenario() -> tuple[object, BaseException | None]:
            gates = {
                ImageCapturePipeline.encode_image(first_image.data): (asyncio.Event(), "first text"),
                ImageCapturePipeline.encode_image(second_image.data): (asyncio.Event(), "second text"),
            }

            async def extract(payload: str) -> str:
                gate, text = gates[payload]
                await gate.wait()
                return text

            self.client.extract_text.side_effect = extract
            first = asyncio.create_task(self.pipeline.submit(first_image))
            await asyncio.sleep(0)
            second = asyncio.create_task(self.pipeline.submit(second_image))
            await asyncio.sleep(0)
            self.assertEqual(self.store.live_count, 1)
            for gate, _ in reversed(list(gates.values())):
                gate.set()
                await asyncio.sleep(0)
            newest = await second
            stale_error = (await asyncio.gather(first, return_exceptions=True))[0]
            return newest, stale_error

        newest, stale_error = asyncio.run(scenario())
        self.assertIsInstance(stale_error, ImageSupersededError)
        self.assertIs(self.pipeline.attachment, newest)
        self.assertEqual(self.pipeline.attachment.extracted_text, "second text")
        self.assertFalse(newest.preview.revoked)
        self.assertEqual(self.store.live_count, 1)

    def test_stale_failure_is_reported_as_superseded(self) -> None:
        async def scenario() -> BaseException | None:
            gate = asyncio.Event()

            async def extract(payload: str) -> str:
                await gate.wait()
                raise ServiceError(ServiceErrorKind.SERVICE_ERROR, "upstream detail", 500)

            self.client.extract_text.side_effect = extract
            pending = asyncio.create_task(self.pipeline.submit(ImageFile("a.png", "image/png", PNG_BYTES)))
            await asyncio.sleep(0)
            self.pipeline.remove()
            gate.set()
            return (await asyncio.gather(pending, return_exceptions=True))[0]

        self.assertIsInstance(asyncio.run(scenario()), ImageSupersededError)
        self.assertIsNone(self.pipeline.attachment)
        self.assertEqual(self.store.live_count, 0)


class ImageFileTests(unittest.TestCase):
    def test_data_uri_prefix_is_stripped(self) -> None:
        self.assertEqual(strip_data_uri_prefix("data:image/png;base64,QUJD"), "QUJD")
        self.assertEqual(strip_data_uri_prefix("QUJD"), "QUJD")

    def test_from_path_guesses_mime_type(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "photo.png"
            path.write_bytes(PNG_BYTES)
            image = ImageFile.from_path(path)
        self.assertEqual(image.mime_type, "image/png")
        self.assertEqual(image.size, len(PNG_BYTES))

    def test_from_path_rejects_oversized_file_before_reading(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "huge.png"
            path.write_bytes(b"x" * 2048)
            with patch.object(Path, "read_bytes") as read_bytes:
                with self.assertRaises(ValidationError) as ctx:
                    ImageFile.from_path(path, max_bytes=1024)
        self.assertEqual(ctx.exception.title, "File Too Large")
        read_bytes.assert_not_called()


if __name__ == "__main__":
    unittest.main()
