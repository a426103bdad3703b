"""HTTP client for a CityQuest server.

One method per endpoint. Streaming methods yield raw chunks as they arrive
and stop as soon as their CancelToken is set.
"""

import json
import logging
from typing import AsyncIterator, Optional, Sequence

import httpx

from .cancellation import CancelToken
from .config import DEFAULT_SERVER_URL
from .errors import ProtocolError, UpstreamError
from .models import Attraction, IntentReply

logger = logging.getLogger(__name__)


class CityQuestClient:
    """Client for the CityQuest HTTP API."""

    def __init__(
        self,
        base_url: str = DEFAULT_SERVER_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 120.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(base_url=self.base_url, transport=transport, timeout=timeout)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "CityQuestClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    @staticmethod
    def _error_message(body: bytes, default: str) -> str:
        try:
            return json.loads(body).get("error") or default
        except (ValueError, AttributeError):
            return default

    def _check(self, response: httpx.Response, default: str) -> None:
        if response.status_code != 200:
            message = self._error_message(response.content, default)
            raise UpstreamError(message, status_code=response.status_code)

    async def _check_stream(self, response: httpx.Response, default: str) -> None:
        if response.status_code != 200:
            body = await response.aread()
            message = self._error_message(body, default)
            raise UpstreamError(message, status_code=response.status_code)

    @staticmethod
    def _json_object(response: httpx.Response, what: str) -> dict:
        try:
            data = response.json()
        except ValueError as e:
            logger.warning(f"Non-JSON {what} response: {response.text[:200]}")
            raise ProtocolError(f"Invalid {what} data received") from e
        if not isinstance(data, dict):
            raise ProtocolError(f"Invalid {what} data received")
        return data

    async def _post(self, path: str, **kwargs) -> httpx.Response:
        try:
            return await self.client.post(path, **kwargs)
        except httpx.RequestError as e:
            logger.warning(f"Request to {self.base_url}{path} failed: {e}")
            raise UpstreamError(f"Cannot connect to CityQuest server at {self.base_url}") from e

    async def find_attractions(self, city: str) -> list[Attraction]:
        response = await self._post("/attractions", json={"city": city})
        self._check(response, "Failed to fetch attractions")

        data = self._json_object(response, "attractions")
        if not isinstance(data.get("attractions"), list):
            raise ProtocolError("Invalid attractions data received")
        return [Attraction.from_dict(a) for a in data["attractions"]]

    async def stream_adventure(
        self,
        city: str,
        attractions: Sequence[Attraction],
        cancel: Optional[CancelToken] = None,
    ) -> AsyncIterator[bytes]:
        """Yield raw chunks of the NDJSON envelope stream."""
        body = {"city": city, "attractions": [a.to_dict() for a in attractions]}
        try:
            async with self.client.stream("POST", "/adventure", json=body) as response:
                await self._check_stream(response, "Failed to generate adventure")
                async for chunk in response.aiter_bytes():
                    if cancel is not None and cancel.cancelled:
                        logger.debug("Adventure stream closed after cancellation")
                        return
                    yield chunk
        except httpx.RequestError as e:
            logger.warning(f"Adventure stream failed: {e}")
            raise UpstreamError("Lost connection to the CityQuest server") from e

    async def stream_additional_info(
        self,
        location: str,
        city: str,
        user_input: str = "",
        cancel: Optional[CancelToken] = None,
    ) -> AsyncIterator[str]:
        """Yield text fragments of a follow-up fact as they arrive."""
        body = {"location": location, "city": city, "userInput": user_input}
        try:
            async with self.client.stream("POST", "/additional-info", json=body) as response:
                await self._check_stream(response, "Failed to fetch additional info")
                async for text in response.aiter_text():
                    if cancel is not None and cancel.cancelled:
                        return
                    if text:
                        yield text
        except httpx.RequestError as e:
            logger.warning(f"Additional info stream failed: {e}")
            raise UpstreamError("Lost connection to the CityQuest server") from e

    async def process_input(self, text: str, card_kind: str) -> IntentReply:
        response = await self._post(
            "/process-input",
            json={"input": text, "cardType": card_kind},
        )
        self._check(response, "Failed to process input")
        data = self._json_object(response, "intent")
        return IntentReply(
            action=str(data.get("action") or "other"),
            response_text=str(data.get("responseText") or ""),
        )

    # IntentDelegate for the CommandInterpreter
    async def classify(self, text: str, card_kind: str) -> IntentReply:
        return await self.process_input(text, card_kind)

    async def speech_to_text(self, audio: bytes, content_type: str = "audio/webm") -> str:
        response = await self._post(
            "/speech-to-text",
            files={"audio": ("recording.webm", audio, content_type)},
        )
        self._check(response, "Failed to transcribe audio")
        return str(self._json_object(response, "transcription").get("text", ""))

    async def text_to_speech(self, text: str) -> bytes:
        response = await self._post("/text-to-speech", json={"text": text})
        self._check(response, "Failed to convert text to speech")
        return response.content
