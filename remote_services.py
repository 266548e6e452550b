from __future__ import annotations

import logging
from typing import Any, Final, Optional

import httpx

from audio_playback import AudioPlayer
from config_utils import ClientSettings
from errors import InvalidResponseError, ServiceError, ServiceErrorKind, ValidationError
from translation_types import TranslationRequest


class ServiceContext:
    """Where the translation service lives and which access key to present.

    The key is a proxy access key, never an upstream model-provider secret. It
    lives only as long as this object.
    """

    ACCESS_KEY_HEADER: Final[str] = "apikey"

    def __init__(self, base_url: str, access_key: Optional[str] = None, timeout_s: float = 60.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._access_key: Optional[str] = None
        if access_key:
            self.set_access_key(access_key)

    @classmethod
    def from_settings(cls, settings: ClientSettings) -> "ServiceContext":
        return cls(settings.service_url, access_key=settings.access_key, timeout_s=settings.timeout_s)

    @property
    def has_access_key(self) -> bool:
        return self._access_key is not None

    def set_access_key(self, access_key: str) -> None:
        cleaned = (access_key or "").strip()
        if not cleaned:
            raise ValidationError("Access key must not be empty.")
        self._access_key = cleaned

    def clear_access_key(self) -> None:
        self._access_key = None

    def endpoint(self, name: str) -> str:
        return f"{self.base_url}/{name.lstrip('/')}"

    def headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._access_key:
            headers[self.ACCESS_KEY_HEADER] = self._access_key
            headers["Authorization"] = f"Bearer {self._access_key}"
        return headers


class _JsonServiceClient:
    ENDPOINT: str = ""
    LABEL: str = ""

    def __init__(self, context: ServiceContext, http_client: Optional[httpx.AsyncClient] = None) -> None:
        self._context = context
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=context.timeout_s)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def _post_json(self, payload: dict[str, Any], field: str) -> Any:
        url = self._context.endpoint(self.ENDPOINT)
        try:
            response = await self._http.post(url, json=payload, headers=self._context.headers())
        except httpx.HTTPError as exc:
            logging.warning("service_transport_error service=%s error=%s", self.ENDPOINT, exc)
            raise ServiceError(
                ServiceErrorKind.GENERIC_HTTP,
                f"{self.LABEL} request failed: {str(exc) or type(exc).__name__}",
            ) from exc

        if not response.is_success:
            error = self._classify(response)
            logging.warning(
                "service_http_error service=%s status=%d kind=%s",
                self.ENDPOINT,
                response.status_code,
                error.kind.value,
            )
            raise error

        try:
            data = response.json()
        except ValueError as exc:
            raise InvalidResponseError(f"Invalid response from {self.LABEL.lower()} service") from exc
        if not isinstance(data, dict) or field not in data:
            raise InvalidResponseError(f"Invalid response from {self.LABEL.lower()} service")
        return data[field]

    def _classify(self, response: httpx.Response) -> ServiceError:
        status = response.status_code
        if status == 401:
            return ServiceError(
                ServiceErrorKind.UNAUTHORIZED,
                "Invalid API key. Please check your API key.",
                status,
            )
        if status == 429:
            return ServiceError(
                ServiceErrorKind.RATE_LIMITED,
                "Rate limit exceeded. Please try again later.",
                status,
            )
        if status >= 500:
            return ServiceError(
                ServiceErrorKind.SERVICE_ERROR,
                f"{self.LABEL} service error. Please try again later.",
                status,
            )
        detail = self._error_detail(response)
        return ServiceError(
            ServiceErrorKind.GENERIC_HTTP,
            detail or f"{self.LABEL} failed: {status} {response.reason_phrase}".strip(),
            status,
        )

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return ""
        if isinstance(body, dict) and isinstance(body.get("error"), str):
            return body["error"].strip()
        return ""


class TranslationClient(_JsonServiceClient):
    ENDPOINT = "translate-multimodal"
    LABEL = "Translation"

    async def translate(self, request: TranslationRequest) -> str:
        value = await self._post_json(request.to_payload(), "translatedText")
        if not isinstance(value, str) or not value.strip():
            raise InvalidResponseError("Invalid response from translation service")
        return value.strip()


class ImageTextClient(_JsonServiceClient):
    ENDPOINT = "extract-image-text"
    LABEL = "Image text extraction"

    async def extract_text(self, base64_image: str) -> str:
        value = await self._post_json({"base64Image": base64_image}, "extractedText")
        if value is None:
            return ""
        if not isinstance(value, str):
            raise InvalidResponseError("Invalid response from image text extraction service")
        return value.strip()


class TextToSpeechClient(_JsonServiceClient):
    ENDPOINT = "text-to-speech"
    LABEL = "Text-to-speech"

    def __init__(
        self,
        context: ServiceContext,
        http_client: Optional[httpx.AsyncClient] = None,
        player: Optional[AudioPlayer] = None,
    ) -> None:
        super().__init__(context, http_client)
        self._player = player or AudioPlayer()

    async def synthesize(self, text: str) -> str:
        value = await self._post_json({"text": text}, "audioContent")
        if not isinstance(value, str) or not value:
            raise InvalidResponseError("Invalid response from text-to-speech service")
        return value

    async def speak(self, text: str) -> None:
        cleaned = (text or "").strip()
        if not cleaned:
            raise ValidationError("There is no text to speak.")
        audio_content = await self.synthesize(cleaned)
        await self._player.play_base64(audio_content)
