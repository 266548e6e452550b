from __future__ import annotations

import logging
from time import perf_counter
from typing import Callable, Optional

from errors import TranslationInProgressError, ValidationError
from remote_services import TranslationClient
from translation_types import INPUT_TYPE_TEXT, TranslationRequest, TranslationResult


class TranslationOrchestrator:
    """Runs one translation at a time through the translation service."""

    def __init__(
        self,
        client: TranslationClient,
        on_loading_changed: Optional[Callable[[bool], None]] = None,
    ) -> None:
        self._client = client
        self._on_loading_changed = on_loading_changed
        self._loading = False
        self.last_result: Optional[TranslationResult] = None

    @property
    def is_loading(self) -> bool:
        return self._loading

    async def translate(
        self,
        text: str,
        target_language: str,
        input_type: str = INPUT_TYPE_TEXT,
    ) -> TranslationResult:
        if self._loading:
            raise TranslationInProgressError("A translation is already in progress.")
        cleaned = (text or "").strip()
        target = (target_language or "").strip()
        if not cleaned:
            raise ValidationError("Please enter text to translate.")
        if not target:
            raise ValidationError("Please select a target language.")

        request = TranslationRequest(
            source_text=cleaned,
            target_language=target,
            input_type=(input_type or INPUT_TYPE_TEXT).strip().lower(),
        )
        tier = request.model_tier
        self._set_loading(True)
        started = perf_counter()
        try:
            translated = await self._client.translate(request)
        finally:
            self._set_loading(False)
        elapsed = perf_counter() - started
        logging.info(
            "translation_done input_type=%s tier=%s target=%s chars=%d elapsed_s=%.3f",
            request.input_type,
            tier,
            target,
            len(translated),
            elapsed,
        )
        result = TranslationResult(translated_text=translated, input_type=request.input_type, model_tier=tier)
        self.last_result = result
        return result

    def _set_loading(self, loading: bool) -> None:
        self._loading = loading
        if self._on_loading_changed is not None:
            self._on_loading_changed(loading)
