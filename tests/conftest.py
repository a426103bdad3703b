"""Shared fixtures: a scripted stand-in for the upstream gateway."""

import pytest

from cityquest.config import AppConfig
from cityquest.errors import UpstreamError
from cityquest.gateway import ChatResult
from cityquest.models import ToolCall


def marker(name: str, longitude: float, latitude: float) -> ToolCall:
    return ToolCall(
        name="addMapMarker",
        arguments={
            "name": name,
            "description": f"About {name}",
            "longitude": longitude,
            "latitude": latitude,
        },
    )


STORY = {
    "cards": [
        {"type": "landmark", "title": "The Merlion", "content": "A lion with a fish tail guards the bay."},
        {"type": "clue", "title": "Whispering Leaves", "content": "Follow the scent of orchids."},
        {"type": "landmark", "title": "Gardens by the Bay", "content": "Supertrees glow at dusk."},
        {"type": "clue", "title": "The Golden Pass", "content": "Look for the ship on top of the towers."},
        {"type": "landmark", "title": "Marina Bay Sands", "content": "The mystery ends above the city."},
    ]
}


class FakeGateway:
    """Scripted gateway: each capability returns what the test configured.

    Images fail for the card positions listed in ``failing_images``.
    """

    def __init__(self):
        self.tool_calls = [
            marker("Merlion Park", 103.8545, 1.2868),
            marker("Gardens by the Bay", 103.8636, 1.2816),
            marker("Marina Bay Sands", 103.8610, 1.2834),
        ]
        self.attractions_error = None
        self.story = STORY
        self.story_error = None
        self.fragments = ["The ", "tower ", "was built in 1889."]
        self.stream_error = None
        self.intent_fragments = ['{"action": "other", ', '"responseText": "Let me think."}']
        self.failing_images = set()
        self.transcript = "tell me more"
        self.speech = b"ID3fake-mp3"

        self.requests = []
        self.image_prompts = []
        self.transcribed = []
        self.synthesized = []
        self.closed = False

    async def aclose(self):
        self.closed = True

    async def complete(self, req):
        self.requests.append(req)
        if req.tools_enabled:
            if self.attractions_error is not None:
                raise self.attractions_error
            return ChatResult(tool_calls=list(self.tool_calls))
        if self.story_error is not None:
            raise self.story_error
        return ChatResult(data=self.story)

    async def stream_chat(self, req):
        self.requests.append(req)
        for fragment in self.intent_fragments if req.json_mode else self.fragments:
            yield fragment
        if self.stream_error is not None and not req.json_mode:
            raise self.stream_error

    async def generate_image(self, prompt):
        index = len(self.image_prompts)
        self.image_prompts.append(prompt)
        if index in self.failing_images:
            raise UpstreamError("Upstream provider error (400)", status_code=400)
        return f"https://img.test/card-{index}.png"

    async def transcribe(self, audio, filename="recording.webm", content_type="audio/webm"):
        self.transcribed.append((audio, content_type))
        return self.transcript

    async def synthesize(self, text):
        self.synthesized.append(text)
        return self.speech


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def config():
    return AppConfig(api_key="sk-test")
