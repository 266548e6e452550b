from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional


@dataclass(frozen=True)
class Notification:
    title: str
    description: str
    destructive: bool = False


Notifier = Callable[[Notification], None]


class TranslatorError(Exception):
    """Base class for failures that are reported to the user as a notification."""

    title = "Error"

    def __init__(self, message: str, title: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if title:
            self.title = title

    def to_notification(self) -> Notification:
        return Notification(title=self.title, description=self.message, destructive=True)


class ValidationError(TranslatorError):
    title = "Invalid Input"


class MicrophonePermissionError(TranslatorError):
    title = "Microphone Access Required"


class UnsupportedPlatformError(TranslatorError):
    title = "Speech Recognition Not Supported"


class RecognitionErrorKind(str, Enum):
    PERMISSION_DENIED = "permission-denied"
    NO_SPEECH = "no-speech-detected"
    AUDIO_CAPTURE = "audio-capture-failure"
    NETWORK = "network-failure"
    ABORTED = "aborted"
    GENERIC = "generic"


_RECOGNITION_CODES = {
    "not-allowed": RecognitionErrorKind.PERMISSION_DENIED,
    "service-not-allowed": RecognitionErrorKind.PERMISSION_DENIED,
    "no-speech": RecognitionErrorKind.NO_SPEECH,
    "audio-capture": RecognitionErrorKind.AUDIO_CAPTURE,
    "network": RecognitionErrorKind.NETWORK,
    "aborted": RecognitionErrorKind.ABORTED,
}

_RECOGNITION_MESSAGES = {
    RecognitionErrorKind.PERMISSION_DENIED: "Microphone access denied. Please allow microphone access and try again.",
    RecognitionErrorKind.NO_SPEECH: "No speech detected. Please speak more clearly.",
    RecognitionErrorKind.AUDIO_CAPTURE: "Couldn't capture audio. Check your microphone connection.",
    RecognitionErrorKind.NETWORK: "Network error. Check your internet connection.",
    RecognitionErrorKind.ABORTED: "Voice recognition was cancelled.",
    RecognitionErrorKind.GENERIC: "Voice recognition failed. Please try again.",
}


class RecognitionError(TranslatorError):
    title = "Voice Input Error"

    def __init__(self, kind: RecognitionErrorKind, code: str = "", message: Optional[str] = None) -> None:
        super().__init__(message or _RECOGNITION_MESSAGES[kind])
        self.kind = kind
        self.code = code

    @classmethod
    def from_code(cls, code: str) -> "RecognitionError":
        kind = _RECOGNITION_CODES.get((code or "").strip().lower(), RecognitionErrorKind.GENERIC)
        return cls(kind, code)

    @property
    def fatal(self) -> bool:
        return self.kind not in (RecognitionErrorKind.NO_SPEECH, RecognitionErrorKind.ABORTED)


class ServiceErrorKind(str, Enum):
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate-limited"
    SERVICE_ERROR = "service-error"
    GENERIC_HTTP = "generic-http-error"


class ServiceError(TranslatorError):
    title = "Service Error"

    def __init__(self, kind: ServiceErrorKind, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code

    @property
    def is_validation(self) -> bool:
        # The proxy answers 400 only for rejected input; the message is safe to show.
        return self.kind is ServiceErrorKind.GENERIC_HTTP and self.status_code == 400


class InvalidResponseError(TranslatorError):
    title = "Service Error"


class ImageProcessingError(TranslatorError):
    title = "Image Processing Failed"


class ImageSupersededError(TranslatorError):
    """A newer image submission (or removal) replaced this one before it finished."""

    title = "Image Replaced"


class TranslationInProgressError(TranslatorError):
    title = "Translation In Progress"


class PlaybackError(TranslatorError):
    title = "Playback Error"
