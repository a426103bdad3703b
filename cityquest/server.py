"""CityQuest HTTP server.

Endpoints (all POST except /health):
    /attractions      {city}                          -> {attractions: [...]}
    /adventure        {city, attractions: [{name}]}   -> NDJSON envelope stream
    /additional-info  {location, city, userInput?}    -> raw text fragments
    /process-input    {input, cardType}               -> {action, responseText}
    /speech-to-text   multipart "audio"               -> {text}
    /text-to-speech   {text}                          -> audio/mpeg bytes

Missing fields are 400 {error}; credential and upstream failures are
500 {error}. Streamed endpoints report later failures in-band because the
status line is already sent.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, Field
from rich.console import Console

from . import __version__
from .config import AppConfig
from .errors import MissingCredential, ProtocolError, UpstreamError, ValidationError
from .gateway import GatewayClient
from .models import encode_envelope
from .relay import AdventureHandler, AmbientFactHandler, AttractionsHandler, IntentHandler

logger = logging.getLogger(__name__)

console = Console()

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",  # Disable proxy buffering
}


# =============================================================================
# Request bodies
# =============================================================================

class AttractionsRequest(BaseModel):
    city: Optional[str] = None


class AttractionRef(BaseModel):
    name: str


class AdventureRequest(BaseModel):
    city: Optional[str] = None
    attractions: Optional[list[AttractionRef]] = None


class AdditionalInfoRequest(BaseModel):
    location: Optional[str] = None
    city: Optional[str] = None
    user_input: str = Field(default="", alias="userInput")


class ProcessInputRequest(BaseModel):
    input: Optional[str] = None
    card_type: Optional[str] = Field(default=None, alias="cardType")


class TextToSpeechRequest(BaseModel):
    text: Optional[str] = None


def _require(value: Any, message: str) -> None:
    if not value or (isinstance(value, str) and not value.strip()):
        raise ValidationError(message)


# =============================================================================
# App factory
# =============================================================================

def create_app(config: AppConfig, gateway: Optional[GatewayClient] = None) -> FastAPI:
    """Build the HTTP app around an explicit config (and optionally a gateway)."""
    gateway = gateway or GatewayClient(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await gateway.aclose()

    app = FastAPI(
        title="CityQuest",
        description="City attractions, streamed mystery adventures and narration",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.gateway = gateway

    attractions_handler = AttractionsHandler(gateway)
    adventure_handler = AdventureHandler(gateway)
    facts_handler = AmbientFactHandler(gateway)
    intent_handler = IntentHandler(gateway)

    # -------------------------------------------------------------------------
    # Error mapping
    # -------------------------------------------------------------------------

    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def malformed_body(request: Request, exc: RequestValidationError):
        logger.debug(f"Malformed request body for {request.url.path}: {exc.errors()}")
        return JSONResponse(status_code=400, content={"error": "Malformed request body"})

    @app.exception_handler(MissingCredential)
    async def missing_credential(request: Request, exc: MissingCredential):
        logger.error(f"{request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"error": str(exc)})

    @app.exception_handler(UpstreamError)
    async def upstream_error(request: Request, exc: UpstreamError):
        logger.error(f"{request.url.path}: upstream failure: {exc}")
        return JSONResponse(status_code=500, content={"error": str(exc)})

    @app.exception_handler(ProtocolError)
    async def protocol_error(request: Request, exc: ProtocolError):
        logger.error(f"{request.url.path}: protocol failure: {exc}")
        return JSONResponse(status_code=500, content={"error": str(exc)})

    # -------------------------------------------------------------------------
    # Endpoints
    # -------------------------------------------------------------------------

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "credential_configured": config.has_api_key,
        }

    @app.post("/attractions")
    async def attractions(body: AttractionsRequest):
        _require(body.city, "City is required")
        config.require_api_key()

        found = await attractions_handler.find(body.city.strip())
        return {"attractions": [a.to_dict() for a in found]}

    @app.post("/adventure")
    async def adventure(body: AdventureRequest):
        _require(body.city, "City and attractions are required")
        _require(body.attractions, "City and attractions are required")
        config.require_api_key()

        names = [a.name for a in body.attractions]

        async def envelope_lines():
            async for envelope in adventure_handler.stream(body.city.strip(), names):
                yield encode_envelope(envelope)

        return StreamingResponse(
            envelope_lines(),
            media_type="application/x-ndjson",
            headers=STREAM_HEADERS,
        )

    @app.post("/additional-info")
    async def additional_info(body: AdditionalInfoRequest):
        _require(body.location, "Location and city are required")
        _require(body.city, "Location and city are required")
        config.require_api_key()

        async def fragments():
            async for fragment in facts_handler.stream(body.location, body.city, body.user_input):
                yield fragment.encode("utf-8")

        return StreamingResponse(
            fragments(),
            media_type="text/plain; charset=utf-8",
            headers=STREAM_HEADERS,
        )

    @app.post("/process-input")
    async def process_input(body: ProcessInputRequest):
        _require(body.input, "Input and card type are required")
        _require(body.card_type, "Input and card type are required")
        config.require_api_key()

        reply = await intent_handler.classify(body.input, body.card_type)
        return reply.to_dict()

    @app.post("/speech-to-text")
    async def speech_to_text(request: Request):
        form = await request.form()
        audio = form.get("audio")
        if audio is None or isinstance(audio, str):
            raise ValidationError("Audio file is required")
        config.require_api_key()

        data = await audio.read()
        _require(data, "Audio file is required")
        text = await gateway.transcribe(
            data,
            filename="recording.webm",
            content_type=audio.content_type or "audio/webm",
        )
        return {"text": text}

    @app.post("/text-to-speech")
    async def text_to_speech(body: TextToSpeechRequest):
        _require(body.text, "Text is required")
        config.require_api_key()

        audio = await gateway.synthesize(body.text)
        return Response(content=audio, media_type="audio/mpeg")

    return app


# =============================================================================
# Entry Point
# =============================================================================

def run_server(config: AppConfig) -> None:
    """Serve the app with uvicorn until interrupted."""
    import uvicorn

    console.print(f"[bold green]CityQuest[/bold green] v{__version__}")
    console.print("=" * 40)
    if not config.has_api_key:
        console.print("[yellow]Warning: OPENAI_API_KEY is not set; every endpoint will return 500[/yellow]")
    console.print(f"Starting server at [cyan]http://{config.host}:{config.port}[/cyan]")
    console.print("Press Ctrl+C to stop\n")

    app = create_app(config)
    uvicorn.run(app, host=config.host, port=config.port, log_level="info")
