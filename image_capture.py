from __future__ import annotations

import base64
import logging
import mimetypes
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Optional, Union

from config_utils import DEFAULT_MAX_IMAGE_BYTES
from errors import ImageProcessingError, ImageSupersededError, ServiceError, TranslatorError, ValidationError
from remote_services import ImageTextClient

_DATA_URI_PREFIX = re.compile(r"^data:[^,]*;base64,", re.IGNORECASE)

INVALID_TYPE_MESSAGE: Final[str] = "Please upload a valid image file (e.g., .jpg, .png)."
TOO_LARGE_MESSAGE: Final[str] = "Image is too large. Please upload a smaller image."


def strip_data_uri_prefix(payload: str) -> str:
    return _DATA_URI_PREFIX.sub("", (payload or "").strip(), count=1)


def _too_large() -> ValidationError:
    return ValidationError(TOO_LARGE_MESSAGE, title="File Too Large")


@dataclass(frozen=True)
class ImageFile:
    name: str
    mime_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_path(cls, path: Union[str, Path], max_bytes: Optional[int] = None) -> "ImageFile":
        file_path = Path(path)
        if max_bytes is not None and file_path.stat().st_size > max_bytes:
            raise _too_large()
        mime_type, _ = mimetypes.guess_type(file_path.name)
        return cls(name=file_path.name, mime_type=mime_type or "application/octet-stream", data=file_path.read_bytes())


class PreviewHandle:
    """Temporary on-disk copy of an image, valid until ``revoke``."""

    def __init__(self, path: Path, store: "PreviewStore") -> None:
        self._path = path
        self._store = store
        self._revoked = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def revoked(self) -> bool:
        return self._revoked

    def revoke(self) -> bool:
        if self._revoked:
            return False
        self._revoked = True
        self._path.unlink(missing_ok=True)
        self._store._forget(self)
        return True


class PreviewStore:
    def __init__(self, directory: Optional[Union[str, Path]] = None) -> None:
        self._directory = Path(directory) if directory else None
        self._live: set[PreviewHandle] = set()

    @property
    def live_count(self) -> int:
        return len(self._live)

    def create(self, image: ImageFile) -> PreviewHandle:
        suffix = Path(image.name).suffix or mimetypes.guess_extension(image.mime_type) or ""
        fd, raw_path = tempfile.mkstemp(prefix="preview-", suffix=suffix, dir=self._directory)
        with os.fdopen(fd, "wb") as handle:
            handle.write(image.data)
        preview = PreviewHandle(Path(raw_path), self)
        self._live.add(preview)
        return preview

    def release_all(self) -> int:
        handles = list(self._live)
        for handle in handles:
            handle.revoke()
        return len(handles)

    def _forget(self, handle: PreviewHandle) -> None:
        self._live.discard(handle)


@dataclass
class ImageAttachment:
    raw_bytes: bytes
    encoded_payload: str
    preview: PreviewHandle
    extracted_text: str = ""


class ImageCapturePipeline:
    """Turns a picked image into extracted text plus a preview.

    Only the most recent submission may become the attachment. Each ``submit``
    (and each ``remove``) bumps a generation counter; a submission that finds
    the counter moved when its OCR call returns raises ``ImageSupersededError``.
    The preview of a submission still in flight is revoked as soon as a newer
    one starts, so at most one preview is live.
    """

    GENERIC_FAILURE: Final[str] = "Could not process the image. Try again later or with a different image."

    def __init__(
        self,
        client: ImageTextClient,
        previews: Optional[PreviewStore] = None,
        max_bytes: int = DEFAULT_MAX_IMAGE_BYTES,
    ) -> None:
        self._client = client
        self._previews = previews or PreviewStore()
        self._max_bytes = max_bytes
        self._attachment: Optional[ImageAttachment] = None
        self._pending_preview: Optional[PreviewHandle] = None
        self._generation = 0

    @property
    def attachment(self) -> Optional[ImageAttachment]:
        return self._attachment

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    def validate(self, image: ImageFile) -> None:
        if not (image.mime_type or "").lower().startswith("image/"):
            raise ValidationError(INVALID_TYPE_MESSAGE, title="Invalid File Type")
        if image.size > self._max_bytes:
            raise _too_large()
        if image.size == 0:
            raise ValidationError("The selected image is empty.", title="Invalid File Type")

    async def submit(self, image: ImageFile) -> Optional[ImageAttachment]:
        """Extract text from ``image``; ``None`` means no readable text was found."""
        self.validate(image)
        self._generation += 1
        generation = self._generation
        self._release_attachment()

        preview = self._previews.create(image)
        self._pending_preview = preview
        keep_preview = False
        try:
            payload = self.encode_image(image.data)
            try:
                text = await self._client.extract_text(payload)
            except TranslatorError as exc:
                self._ensure_current(generation, image)
                error = self._processing_error(exc)
                if error is exc:
                    raise
                raise error from exc
            self._ensure_current(generation, image)

            if not text.strip():
                logging.info("image_capture_no_text name=%s bytes=%d", image.name, image.size)
                return None
            attachment = ImageAttachment(
                raw_bytes=image.data,
                encoded_payload=payload,
                preview=preview,
                extracted_text=text.strip(),
            )
            self._pending_preview = None
            self._release_attachment()
            self._attachment = attachment
            keep_preview = True
            logging.info("image_capture_text name=%s chars=%d", image.name, len(attachment.extracted_text))
            return attachment
        finally:
            if self._pending_preview is preview:
                self._pending_preview = None
            if not keep_preview:
                preview.revoke()

    def remove(self) -> None:
        self._generation += 1
        self._release_attachment()

    def close(self) -> None:
        self.remove()
        self._previews.release_all()

    @staticmethod
    def encode_image(data: bytes) -> str:
        return strip_data_uri_prefix(base64.b64encode(data).decode("ascii"))

    def _ensure_current(self, generation: int, image: ImageFile) -> None:
        if generation == self._generation:
            return
        logging.info("image_capture_superseded name=%s generation=%d", image.name, generation)
        raise ImageSupersededError("A newer image replaced this one.")

    def _processing_error(self, exc: TranslatorError) -> TranslatorError:
        if isinstance(exc, ValidationError):
            return exc
        if isinstance(exc, ServiceError):
            logging.warning("image_capture_failed kind=%s status=%s", exc.kind.value, exc.status_code)
            return ImageProcessingError(exc.message if exc.is_validation else self.GENERIC_FAILURE)
        logging.warning("image_capture_failed error=%s", exc)
        return ImageProcessingError(self.GENERIC_FAILURE)

    def _release_attachment(self) -> None:
        pending, self._pending_preview = self._pending_preview, None
        if pending is not None:
            pending.revoke()
        attachment, self._attachment = self._attachment, None
        if attachment is None:
            return
        attachment.preview.revoke()
        attachment.extracted_text = ""
