"""Configuration for CityQuest.

Configuration is loaded from environment variables (and an optional .env
file) into an AppConfig instance. The instance is passed explicitly to the
gateway, the relay handlers, the HTTP app and the client; nothing reads the
environment after startup.
"""

import os
from dataclasses import dataclass, replace
from typing import Optional

from dotenv import load_dotenv

from .errors import MissingCredential


DEFAULT_API_BASE = "https://api.openai.com/v1"
DEFAULT_SERVER_URL = "http://127.0.0.1:8000"


@dataclass(frozen=True)
class AppConfig:
    """CityQuest runtime configuration."""
    api_key: str = ""
    api_base: str = DEFAULT_API_BASE

    # Upstream models
    chat_model: str = "gpt-4o"
    image_model: str = "dall-e-2"
    image_size: str = "1024x1024"
    transcription_model: str = "whisper-1"
    speech_model: str = "tts-1"
    speech_voice: str = "alloy"

    timeout: float = 120.0  # Per-request upstream timeout (seconds)

    # HTTP server
    host: str = "127.0.0.1"
    port: int = 8000

    # Client side: where `cityquest explore` finds the server
    server_url: str = DEFAULT_SERVER_URL

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    def require_api_key(self) -> str:
        """Return the provider credential, raising if it is not set."""
        if not self.api_key:
            raise MissingCredential()
        return self.api_key

    def with_overrides(self, **changes) -> "AppConfig":
        """Return a copy with the given non-None fields replaced."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


# =============================================================================
# Environment Variable Configuration
# =============================================================================


def load_config(env_file: Optional[str] = None) -> AppConfig:
    """
    Load application configuration from environment variables.

    A .env file (or ``env_file``) is read first; variables already present
    in the environment win.

    Returns:
        AppConfig built from the environment
    """
    load_dotenv(env_file)

    return AppConfig(
        # Provider credential (checked per request, not at load time)
        api_key=os.getenv("OPENAI_API_KEY", ""),
        api_base=os.getenv("CITYQUEST_API_BASE", DEFAULT_API_BASE).rstrip("/"),

        chat_model=os.getenv("CITYQUEST_CHAT_MODEL", "gpt-4o"),
        image_model=os.getenv("CITYQUEST_IMAGE_MODEL", "dall-e-2"),
        image_size=os.getenv("CITYQUEST_IMAGE_SIZE", "1024x1024"),
        transcription_model=os.getenv("CITYQUEST_STT_MODEL", "whisper-1"),
        speech_model=os.getenv("CITYQUEST_TTS_MODEL", "tts-1"),
        speech_voice=os.getenv("CITYQUEST_TTS_VOICE", "alloy"),

        timeout=float(os.getenv("CITYQUEST_TIMEOUT", "120.0")),

        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),

        server_url=os.getenv("CITYQUEST_SERVER_URL", DEFAULT_SERVER_URL).rstrip("/"),
    )
