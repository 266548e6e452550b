from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from config_utils import read_str_env

INPUT_TYPE_TEXT: Final[str] = "text"
INPUT_TYPE_IMAGE: Final[str] = "image"
INPUT_TYPES: Final[tuple[str, ...]] = (INPUT_TYPE_TEXT, INPUT_TYPE_IMAGE)

DEFAULT_TEXT_MODEL: Final[str] = "gpt-4o"
DEFAULT_IMAGE_MODEL: Final[str] = "gpt-4o-mini"

SUPPORTED_LANGUAGES: Final[tuple[tuple[str, str], ...]] = (
    ("en", "English"),
    ("es", "Spanish"),
    ("fr", "French"),
    ("de", "German"),
    ("it", "Italian"),
    ("pt", "Portuguese"),
    ("nl", "Dutch"),
    ("ru", "Russian"),
    ("uk", "Ukrainian"),
    ("pl", "Polish"),
    ("tr", "Turkish"),
    ("ar", "Arabic"),
    ("he", "Hebrew"),
    ("hi", "Hindi"),
    ("bn", "Bengali"),
    ("zh", "Chinese (Simplified)"),
    ("zh-TW", "Chinese (Traditional)"),
    ("ja", "Japanese"),
    ("ko", "Korean"),
    ("vi", "Vietnamese"),
    ("th", "Thai"),
    ("id", "Indonesian"),
    ("sv", "Swedish"),
    ("el", "Greek"),
)


def model_tiers() -> dict[str, str]:
    text_model = read_str_env("TRANSLATION_TEXT_MODEL", DEFAULT_TEXT_MODEL) or DEFAULT_TEXT_MODEL
    image_model = read_str_env("TRANSLATION_IMAGE_MODEL", DEFAULT_IMAGE_MODEL) or DEFAULT_IMAGE_MODEL
    return {INPUT_TYPE_TEXT: text_model, INPUT_TYPE_IMAGE: image_model}


def select_model_tier(input_type: str) -> str:
    tiers = model_tiers()
    return tiers.get((input_type or "").strip().lower(), tiers[INPUT_TYPE_TEXT])


@dataclass(frozen=True)
class TranslationRequest:
    source_text: str
    target_language: str
    input_type: str = INPUT_TYPE_TEXT

    @property
    def model_tier(self) -> str:
        return select_model_tier(self.input_type)

    def to_payload(self) -> dict[str, str]:
        return {
            "text": self.source_text,
            "targetLanguage": self.target_language,
            "inputType": self.input_type,
        }


@dataclass(frozen=True)
class TranslationResult:
    translated_text: str
    input_type: str
    model_tier: str
