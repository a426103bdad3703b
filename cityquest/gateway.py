"""Gateway to the upstream AI provider.

Speaks the OpenAI-compatible HTTP API for four capabilities:
- Chat completion (/chat/completions), plain, JSON mode, tool calls or SSE streamed
- Image generation (/images/generations)
- Speech-to-text (/audio/transcriptions)
- Text-to-speech (/audio/speech)

Provider-specific response shapes are translated into plain values here;
failures surface as UpstreamError, ProtocolError or MissingCredential.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

import httpx

from .config import AppConfig
from .errors import ProtocolError, UpstreamError
from .models import ToolCall

logger = logging.getLogger(__name__)

# End-of-stream marker sent by the provider as the last SSE data line
STREAM_TERMINATOR = "[DONE]"

_END_OF_STREAM = object()


@dataclass
class ChatRequest:
    """Request for a chat completion."""
    system: str
    prompt: str
    streamed: bool = False
    json_mode: bool = False
    tools: Optional[list[dict[str, Any]]] = None  # Function tools; enables tool calls
    model: Optional[str] = None  # Uses config.chat_model if None

    @property
    def tools_enabled(self) -> bool:
        return bool(self.tools)


@dataclass
class ChatResult:
    """Non-streamed chat completion.

    Exactly one of the fields is meaningful depending on the request:
    ``data`` for JSON mode, ``tool_calls`` when tools were enabled and the
    model used them, ``text`` otherwise.
    """
    text: str = ""
    data: Optional[dict[str, Any]] = None
    tool_calls: list[ToolCall] = field(default_factory=list)


class GatewayClient:
    """
    Client for the upstream provider.

    One httpx.AsyncClient is shared by all calls. Pass ``transport`` to
    substitute the network (httpx.MockTransport in tests).
    """

    def __init__(self, config: AppConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.client = httpx.AsyncClient(
            base_url=config.api_base,
            timeout=config.timeout,
            transport=transport,
            limits=httpx.Limits(
                max_keepalive_connections=5,
                max_connections=10,
                keepalive_expiry=30.0,
            ),
        )

    async def aclose(self) -> None:
        """Close the HTTP client. Call on shutdown."""
        await self.client.aclose()

    def _headers(self) -> dict[str, str]:
        # Raises MissingCredential before anything touches the network
        return {"Authorization": f"Bearer {self.config.require_api_key()}"}

    def _chat_payload(self, req: ChatRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": req.model or self.config.chat_model,
            "messages": [
                {"role": "system", "content": req.system},
                {"role": "user", "content": req.prompt},
            ],
        }
        if req.streamed:
            payload["stream"] = True
        if req.json_mode:
            payload["response_format"] = {"type": "json_object"}
        if req.tools_enabled:
            payload["tools"] = req.tools
            payload["tool_choice"] = "auto"
        return payload

    async def _post(self, path: str, **kwargs) -> httpx.Response:
        headers = self._headers()
        try:
            response = await self.client.post(path, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"Upstream request to {path} timed out: {e}")
            raise UpstreamError("Upstream provider timed out") from e
        except httpx.RequestError as e:
            logger.warning(f"Could not reach upstream provider at {path}: {e}")
            raise UpstreamError("Could not connect to upstream provider") from e

        if response.status_code != 200:
            self._raise_for_status(path, response.status_code, response.text)
        return response

    def _raise_for_status(self, path: str, status_code: int, body: str) -> None:
        body = body[:500]  # Truncate for logs
        logger.warning(f"Upstream {path} returned {status_code}: {body}")
        raise UpstreamError(
            f"Upstream provider error ({status_code})",
            status_code=status_code,
            body=body,
        )

    # =========================================================================
    # Chat completion
    # =========================================================================

    async def complete(self, req: ChatRequest) -> ChatResult:
        """Run a non-streamed chat completion."""
        if req.streamed:
            raise ValueError("Use stream_chat() for streamed requests")

        payload = self._chat_payload(req)
        logger.debug(
            f"Chat request: model={payload['model']}, json_mode={req.json_mode}, "
            f"tools={req.tools_enabled}, prompt_chars={len(req.prompt)}"
        )
        response = await self._post("/chat/completions", json=payload)

        try:
            data = response.json()
            message = data["choices"][0]["message"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.warning(f"Chat response missing message: {response.text[:200]}")
            raise UpstreamError("Upstream provider returned no completion") from e

        if req.tools_enabled and message.get("tool_calls"):
            return ChatResult(tool_calls=[self._parse_tool_call(c) for c in message["tool_calls"]])

        content = message.get("content") or ""

        if req.json_mode:
            try:
                parsed = json.loads(content)
            except json.JSONDecodeError as e:
                logger.warning(f"JSON mode content did not parse: {content[:200]}")
                raise ProtocolError("Upstream JSON output could not be parsed") from e
            if not isinstance(parsed, dict):
                raise ProtocolError("Upstream JSON output is not an object")
            return ChatResult(text=content, data=parsed)

        return ChatResult(text=content)

    def _parse_tool_call(self, call: dict[str, Any]) -> ToolCall:
        function = call.get("function") or {}
        name = function.get("name", "")
        raw_args = function.get("arguments") or "{}"
        try:
            arguments = json.loads(raw_args)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Tool call '{name}' has malformed arguments") from e
        if not isinstance(arguments, dict):
            raise ProtocolError(f"Tool call '{name}' arguments are not an object")
        return ToolCall(name=name, arguments=arguments)

    async def stream_chat(self, req: ChatRequest) -> AsyncIterator[str]:
        """
        Run a streamed chat completion, yielding text fragments as they arrive.

        The sequence is finite and ends at the provider's [DONE] marker (or
        when the connection closes). It cannot be restarted.
        """
        payload = self._chat_payload(req)
        payload["stream"] = True
        headers = self._headers()

        # connect fails fast; read bounds the gap between two fragments
        stream_timeout = httpx.Timeout(
            connect=10.0,
            read=60.0,
            write=30.0,
            pool=10.0,
        )

        fragment_count = 0
        try:
            async with self.client.stream(
                "POST",
                "/chat/completions",
                json=payload,
                headers=headers,
                timeout=stream_timeout,
            ) as response:
                if response.status_code != 200:
                    error_text = (await response.aread()).decode("utf-8", errors="replace")
                    self._raise_for_status("/chat/completions", response.status_code, error_text)

                async for line in response.aiter_lines():
                    fragment = self._parse_sse_line(line)
                    if fragment is None:
                        continue
                    if fragment is _END_OF_STREAM:
                        break
                    if fragment:
                        fragment_count += 1
                        yield fragment

        except httpx.TimeoutException as e:
            logger.warning(f"Upstream stream timed out after {fragment_count} fragments: {e}")
            raise UpstreamError("Upstream provider stream timed out") from e
        except httpx.RequestError as e:
            logger.warning(f"Upstream stream connection failed: {e}")
            raise UpstreamError("Could not connect to upstream provider") from e

        logger.debug(f"Upstream stream complete: {fragment_count} fragments")

    def _parse_sse_line(self, line: str) -> Any:
        """Decode one SSE line.

        Returns None for lines that carry no data, _END_OF_STREAM at the
        end marker, otherwise the (possibly empty) content delta.
        """
        if not line or line.startswith(":"):
            return None
        if not line.startswith("data:"):
            return None

        data_str = line[5:].strip()
        if data_str == STREAM_TERMINATOR:
            return _END_OF_STREAM

        try:
            chunk = json.loads(data_str)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse SSE chunk: {data_str[:100]}")
            raise ProtocolError("Upstream stream chunk is not valid JSON") from e

        try:
            choices = chunk.get("choices") or []
            if not choices:
                return ""
            delta = choices[0].get("delta") or {}
            return delta.get("content") or ""
        except AttributeError as e:
            raise ProtocolError("Upstream stream chunk has an unexpected shape") from e

    # =========================================================================
    # Images and audio
    # =========================================================================

    async def generate_image(self, prompt: str) -> str:
        """Generate one image and return its URL."""
        response = await self._post(
            "/images/generations",
            json={
                "model": self.config.image_model,
                "prompt": prompt,
                "n": 1,
                "size": self.config.image_size,
            },
        )
        try:
            url = response.json()["data"][0]["url"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.warning(f"Image response missing url: {response.text[:200]}")
            raise UpstreamError("Upstream provider returned no image") from e
        if not url:
            raise UpstreamError("Upstream provider returned no image")
        return url

    async def transcribe(
        self,
        audio: bytes,
        filename: str = "recording.webm",
        content_type: str = "audio/webm",
    ) -> str:
        """Transcribe recorded audio to text."""
        response = await self._post(
            "/audio/transcriptions",
            files={"file": (filename, audio, content_type)},
            data={"model": self.config.transcription_model},
        )
        try:
            return str(response.json()["text"])
        except (ValueError, KeyError, TypeError) as e:
            raise UpstreamError("Upstream provider returned no transcription") from e

    async def synthesize(self, text: str) -> bytes:
        """Convert text to speech, returning MP3 audio bytes."""
        response = await self._post(
            "/audio/speech",
            json={
                "model": self.config.speech_model,
                "voice": self.config.speech_voice,
                "input": text,
            },
        )
        return response.content
