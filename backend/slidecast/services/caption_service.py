"""
Caption generation using the Gemini API.

Sends one audio payload and asks for word-level timestamps as a JSON array
of {word, start, end}. The response is validated strictly: a malformed
response is an error, never an empty caption track.
"""

import base64
import json
import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from slidecast.config import Settings, get_settings
from slidecast.exceptions import CaptionFormatError, CaptionServiceError
from slidecast.schemas.captions import CaptionWord

logger = logging.getLogger(__name__)

CAPTION_PROMPT = """You are an expert audio transcription service.
Transcribe the provided audio file with precise word-level timestamps.
The output must be a valid JSON array of objects.
Each object in the array must have three properties:
1. "word": a string representing a single word.
2. "start": a number representing the start time of the word in seconds (float).
3. "end": a number representing the end time of the word in seconds (float).

Do not include any text, explanation, or markdown formatting outside of the JSON array. The response should be only the JSON."""

CAPTION_RESPONSE_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "word": {"type": "STRING"},
            "start": {"type": "NUMBER"},
            "end": {"type": "NUMBER"},
        },
        "required": ["word", "start", "end"],
    },
}


def parse_caption_payload(raw: Any) -> list[CaptionWord]:
    """Validate a caption response into CaptionWords.

    Args:
        raw: JSON text, or already-decoded JSON data

    Returns:
        Caption words in response order (may be empty for silent audio)

    Raises:
        CaptionFormatError: If the response is not a well-formed caption list
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CaptionFormatError(
                f"The AI model returned an invalid format ({e.msg}). "
                "Please try a different audio file."
            ) from e

    if not isinstance(raw, list):
        raise CaptionFormatError("Invalid caption format received from API: not an array")

    if raw:
        first = raw[0]
        if not isinstance(first, dict) or "word" not in first or "start" not in first:
            raise CaptionFormatError("Invalid caption format received from API: missing required fields")

    words: list[CaptionWord] = []
    for index, item in enumerate(raw):
        try:
            words.append(CaptionWord.model_validate(item))
        except ValidationError as e:
            first_error = e.errors()[0]
            raise CaptionFormatError(
                f"Invalid caption at index {index}: {first_error.get('msg', 'validation error')}"
            ) from e
    return words


class CaptionService:
    """
    Service for generating word captions from audio with Gemini.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize caption service.

        Args:
            settings: Settings override (defaults to get_settings())
            transport: httpx transport override, used by tests
        """
        self.settings = settings or get_settings()
        self._transport = transport

    def _build_request_body(self, audio: bytes, mime_type: str) -> dict[str, Any]:
        return {
            "contents": [
                {
                    "parts": [
                        {"text": CAPTION_PROMPT},
                        {
                            "inline_data": {
                                "mime_type": mime_type,
                                "data": base64.b64encode(audio).decode("ascii"),
                            }
                        },
                    ]
                }
            ],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": CAPTION_RESPONSE_SCHEMA,
            },
        }

    async def generate_captions(self, audio: bytes, mime_type: str) -> list[CaptionWord]:
        """
        Generate word captions for an audio payload.

        Args:
            audio: Raw audio bytes
            mime_type: Declared media type of the audio (e.g. audio/mpeg)

        Returns:
            Ordered caption words

        Raises:
            CaptionServiceError: If the API cannot be reached or rejects the request
            CaptionFormatError: If the API response is malformed
        """
        api_key = self.settings.gemini_api_key
        if not api_key:
            raise CaptionServiceError("GEMINI_API_KEY not configured")
        if not audio:
            raise CaptionServiceError("Audio payload is empty")

        url = f"{self.settings.gemini_base_url}/models/{self.settings.gemini_model}:generateContent"
        logger.info(f"[CAPTIONS] Requesting captions ({mime_type}, {len(audio)} bytes)")

        try:
            async with httpx.AsyncClient(
                timeout=self.settings.caption_request_timeout_s,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    url,
                    headers={"x-goog-api-key": api_key},
                    json=self._build_request_body(audio, mime_type),
                )
        except httpx.HTTPError as e:
            logger.error(f"[CAPTIONS] Request failed: {e}")
            raise CaptionServiceError(f"Failed to communicate with the generative AI model: {e}") from e

        if response.status_code != 200:
            logger.error(f"[CAPTIONS] API error: {response.status_code} - {response.text[:500]}")
            raise CaptionServiceError(f"Gemini API error: {response.status_code}")

        text = self._extract_text(response)
        words = parse_caption_payload(text.strip())
        logger.info(f"[CAPTIONS] Received {len(words)} caption words")
        return words

    def _extract_text(self, response: httpx.Response) -> str:
        """Pull the model's text out of a generateContent response."""
        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise CaptionFormatError("Caption service returned a non-JSON response") from e

        candidates = data.get("candidates") if isinstance(data, dict) else None
        if not candidates:
            raise CaptionFormatError("Caption service returned no candidates")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
        if not text:
            raise CaptionFormatError("Caption service returned an empty response")
        return text
