from __future__ import annotations

import locale
import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_SERVICE_URL = "http://127.0.0.1:8000/functions/v1"
DEFAULT_MAX_IMAGE_BYTES = 50 * 1024 * 1024


def read_float_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def read_int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def read_bool_env(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    return default


def read_str_env(name: str, default: Optional[str] = None) -> Optional[str]:
    raw = (os.getenv(name) or "").strip()
    return raw or default


def default_speech_locale() -> str:
    configured = read_str_env("SPEECH_LOCALE")
    if configured:
        return configured
    language, _ = locale.getlocale()
    if not language or language in {"C", "POSIX"}:
        return "en-US"
    return language.split(".", 1)[0].replace("_", "-")


@dataclass(frozen=True)
class ClientSettings:
    service_url: str
    access_key: Optional[str]
    timeout_s: float
    silence_duration_s: float
    streaming: bool
    debounce_s: float
    min_intermediate_chars: int
    vosk_model_path: Optional[str]
    speech_locale: str
    max_image_bytes: int

    @classmethod
    def from_env(cls) -> "ClientSettings":
        return cls(
            service_url=read_str_env("TRANSLATOR_SERVICE_URL", DEFAULT_SERVICE_URL) or DEFAULT_SERVICE_URL,
            access_key=read_str_env("TRANSLATOR_ACCESS_KEY"),
            timeout_s=read_float_env("SERVICE_TIMEOUT_SECONDS", 60.0),
            silence_duration_s=read_float_env("SILENCE_DURATION_SECONDS", 5.0),
            streaming=read_bool_env("STREAMING_TRANSCRIPTION", False),
            debounce_s=read_float_env("STREAMING_DEBOUNCE_SECONDS", 1.5),
            min_intermediate_chars=read_int_env("STREAMING_MIN_CHARS", 10),
            vosk_model_path=read_str_env("VOSK_MODEL_PATH"),
            speech_locale=default_speech_locale(),
            max_image_bytes=read_int_env("MAX_IMAGE_BYTES", DEFAULT_MAX_IMAGE_BYTES),
        )


@dataclass(frozen=True)
class ProxySettings:
    openai_api_key: Optional[str]
    access_key: Optional[str]
    ocr_model: str
    tts_model: str
    tts_voice: str

    @classmethod
    def from_env(cls) -> "ProxySettings":
        return cls(
            openai_api_key=read_str_env("OPENAI_API_KEY"),
            access_key=read_str_env("PROXY_ACCESS_KEY"),
            ocr_model=read_str_env("OCR_MODEL", "gpt-4o-mini") or "gpt-4o-mini",
            tts_model=read_str_env("TTS_MODEL", "tts-1") or "tts-1",
            tts_voice=read_str_env("TTS_VOICE", "nova") or "nova",
        )
