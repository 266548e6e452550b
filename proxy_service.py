from __future__ import annotations

import base64
import hmac
import json
import logging
import os
import re
from typing import Any, Awaitable, Callable, Final, Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from openai import APIStatusError, AsyncOpenAI

from config_utils import ProxySettings, read_int_env, read_str_env
from translation_types import INPUT_TYPE_TEXT, select_model_tier

ROUTE_PREFIX: Final[str] = "/functions/v1"
MAX_TEXT_CHARS: Final[int] = 10000
MAX_TARGET_LANGUAGE_CHARS: Final[int] = 100
MAX_SPEECH_CHARS: Final[int] = 5000
MAX_BASE64_IMAGE_CHARS: Final[int] = 14000000
UNAUTHORIZED_MESSAGE: Final[str] = "Invalid API key. Please check your API key."

SECURITY_HEADERS: Final[dict[str, str]] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}
_SUSPICIOUS_PATTERNS: Final[tuple[re.Pattern[str], ...]] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (r"<script", r"javascript:", r"vbscript:", r"onload=", r"onerror=")
)
_BASE64_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")


class RequestRejected(Exception):
    """Client input failed validation. The message is safe to return verbatim."""


class TranslationProxy:
    """Server side of the translate, image-text and speech endpoints.

    Holds the only copy of the OpenAI key. Handlers raise ``RequestRejected``
    for bad input; every other failure is reported to the caller as a generic
    message by the route layer.
    """

    def __init__(self, settings: ProxySettings, client: Optional[AsyncOpenAI] = None) -> None:
        self._settings = settings
        self._client = client
        if self._client is None and settings.openai_api_key:
            self._client = AsyncOpenAI(api_key=settings.openai_api_key)
        self._translation_max_tokens = read_int_env("TRANSLATION_MAX_TOKENS", 2000)
        self._ocr_max_tokens = read_int_env("OCR_MAX_TOKENS", 1000)

    def is_authorized(self, api_key: Optional[str], authorization: Optional[str]) -> bool:
        expected = self._settings.access_key
        if not expected:
            return True
        presented = (api_key or "").strip()
        if not presented and authorization:
            scheme, _, token = authorization.partition(" ")
            presented = token.strip() if scheme.lower() == "bearer" else ""
        return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))

    async def translate(self, payload: dict[str, Any]) -> dict[str, str]:
        text = payload.get("text")
        target_language = payload.get("targetLanguage")
        input_type = payload.get("inputType") or INPUT_TYPE_TEXT
        if not text or not target_language:
            raise RequestRejected("Missing required parameters")
        if not isinstance(text, str) or not isinstance(target_language, str) or not isinstance(input_type, str):
            raise RequestRejected("Invalid parameter types")
        if len(text) > MAX_TEXT_CHARS:
            raise RequestRejected("Text length exceeds maximum limit")
        if len(target_language) > MAX_TARGET_LANGUAGE_CHARS:
            raise RequestRejected("Target language parameter too long")
        self._reject_suspicious(text)

        model = select_model_tier(input_type)
        logging.info(
            "proxy_translate model=%s input_type=%s target=%s text=%r",
            model,
            input_type,
            target_language,
            text[:100],
        )
        system_prompt = (
            "You are a professional translator. Your task is to:\n"
            "1. Detect the source language of the input text\n"
            f"2. Translate the text accurately to {target_language}\n"
            "3. Maintain the original meaning, tone, and context\n"
            "4. Only return the translation, no explanations or additional text\n\n"
            f"Input type: {input_type}"
        )
        response = await self._require_client().chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": f'Translate this text to {target_language}: "{text}"'},
            ],
            temperature=0.3,
            max_tokens=self._translation_max_tokens,
        )
        content = self._first_message_content(response)
        if content is None:
            raise RuntimeError("Invalid response from OpenAI API")
        return {"translatedText": content.strip()}

    async def extract_image_text(self, payload: dict[str, Any]) -> dict[str, str]:
        base64_image = payload.get("base64Image")
        if not base64_image:
            raise RequestRejected("Missing base64Image parameter")
        if not isinstance(base64_image, str):
            raise RequestRejected("Invalid parameter type")
        if len(base64_image) > MAX_BASE64_IMAGE_CHARS:
            raise RequestRejected("Image size exceeds maximum limit")
        if not _BASE64_PATTERN.match(base64_image):
            raise RequestRejected("Invalid base64 format")

        logging.info("proxy_extract_image_text model=%s chars=%d", self._settings.ocr_model, len(base64_image))
        response = await self._require_client().chat.completions.create(
            model=self._settings.ocr_model,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "text",
                            "text": (
                                "Extract all readable text from this image. "
                                "Return only the text content, no explanations or formatting."
                            ),
                        },
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:image/jpeg;base64,{base64_image}"},
                        },
                    ],
                }
            ],
            max_tokens=self._ocr_max_tokens,
        )
        content = self._first_message_content(response)
        return {"extractedText": (content or "").strip()}

    async def text_to_speech(self, payload: dict[str, Any]) -> dict[str, str]:
        text = payload.get("text")
        if not text:
            raise RequestRejected("Missing required parameters")
        if not isinstance(text, str):
            raise RequestRejected("Invalid parameter type")
        if len(text) > MAX_SPEECH_CHARS:
            raise RequestRejected("Text length exceeds maximum limit for speech synthesis")
        self._reject_suspicious(text)

        logging.info(
            "proxy_text_to_speech model=%s voice=%s text=%r",
            self._settings.tts_model,
            self._settings.tts_voice,
            text[:100],
        )
        response = await self._require_client().audio.speech.create(
            model=self._settings.tts_model,
            voice=self._settings.tts_voice,
            input=text,
            response_format="mp3",
            speed=1.0,
        )
        return {"audioContent": base64.b64encode(response.content).decode("ascii")}

    def _require_client(self) -> AsyncOpenAI:
        if self._client is None:
            raise RuntimeError("OpenAI API key is not configured")
        return self._client

    @staticmethod
    def _reject_suspicious(text: str) -> None:
        if any(pattern.search(text) for pattern in _SUSPICIOUS_PATTERNS):
            raise RequestRejected("Invalid content detected")

    @staticmethod
    def _first_message_content(response: Any) -> Optional[str]:
        choices = getattr(response, "choices", None)
        if not choices:
            return None
        message = getattr(choices[0], "message", None)
        if message is None:
            return None
        return message.content or ""


Handler = Callable[[dict[str, Any]], Awaitable[dict[str, str]]]


def create_app(settings: Optional[ProxySettings] = None, client: Optional[AsyncOpenAI] = None) -> FastAPI:
    proxy = TranslationProxy(settings or ProxySettings.from_env(), client)
    app = FastAPI(title="Multimodal Translator Proxy")
    app.state.proxy = proxy
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.update(SECURITY_HEADERS)
        return response

    _add_route(app, proxy, "translate-multimodal", proxy.translate, "Translation service temporarily unavailable", 100)
    _add_route(
        app,
        proxy,
        "extract-image-text",
        proxy.extract_image_text,
        "Image processing service temporarily unavailable",
        20,
    )
    _add_route(app, proxy, "text-to-speech", proxy.text_to_speech, "Text-to-speech service temporarily unavailable", 50)
    return app


def _add_route(
    app: FastAPI,
    proxy: TranslationProxy,
    name: str,
    handler: Handler,
    generic_message: str,
    rate_limit: int,
) -> None:
    error_headers = {"X-RateLimit-Limit": str(rate_limit), "X-RateLimit-Window": "3600"}

    async def endpoint(request: Request) -> JSONResponse:
        if not proxy.is_authorized(request.headers.get("apikey"), request.headers.get("authorization")):
            return JSONResponse({"error": UNAUTHORIZED_MESSAGE}, status_code=401, headers=error_headers)
        try:
            payload = await _read_payload(request)
            body = await handler(payload)
        except RequestRejected as exc:
            logging.info("proxy_rejected endpoint=%s reason=%s", name, exc)
            return JSONResponse({"error": str(exc)}, status_code=400, headers=error_headers)
        except APIStatusError as exc:
            logging.error("proxy_upstream_error endpoint=%s status=%d error=%s", name, exc.status_code, exc)
            return JSONResponse({"error": generic_message}, status_code=500, headers=error_headers)
        except Exception as exc:  # noqa: BLE001 - service boundary
            logging.error("proxy_failed endpoint=%s error=%s", name, exc)
            return JSONResponse({"error": generic_message}, status_code=500, headers=error_headers)
        return JSONResponse(body)

    app.add_api_route(f"{ROUTE_PREFIX}/{name}", endpoint, methods=["POST"], name=name)


async def _read_payload(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise RequestRejected("Missing required parameters") from exc
    if not isinstance(payload, dict):
        raise RequestRejected("Invalid parameter types")
    return payload


def main() -> None:
    load_dotenv()
    log_level_name = (os.getenv("LOG_LEVEL", "INFO") or "INFO").upper()
    log_level = getattr(logging, log_level_name, logging.INFO)
    logging.basicConfig(level=log_level, format="%(asctime)s %(levelname)s %(message)s")
    host = read_str_env("PROXY_HOST", "127.0.0.1") or "127.0.0.1"
    uvicorn.run(create_app(), host=host, port=read_int_env("PROXY_PORT", 8000))


if __name__ == "__main__":
    main()
