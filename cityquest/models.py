"""Domain types and the relay envelope wire format.

Envelopes travel as newline-delimited JSON, one object per line:

    {"type": "card", "card": {"id": "card-0", "type": "landmark", ...}}
    {"type": "image", "cardId": "card-0", "imageUrl": "https://..."}
    {"type": "image-error", "cardId": "card-1"}
    {"type": "complete"}
    {"type": "error", "message": "Failed to generate the adventure story"}
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Tuple, Union

from .errors import ProtocolError


Coordinates = Tuple[float, float]  # (longitude, latitude)


@dataclass
class City:
    """A searched city. Coordinates stay (0, 0) until a geocoder resolves them."""
    name: str
    coordinates: Coordinates = (0.0, 0.0)

    @classmethod
    def placeholder(cls, name: str) -> "City":
        return cls(name=name.strip())

    @property
    def is_resolved(self) -> bool:
        return self.coordinates != (0.0, 0.0)

    def resolve(self, longitude: float, latitude: float) -> None:
        self.coordinates = (float(longitude), float(latitude))


SUGGESTED_CITIES = (
    City("Singapore", (103.8198, 1.3521)),
    City("Bangkok", (100.5018, 13.7563)),
    City("Jakarta", (106.8456, -6.2088)),
    City("Ho Chi Minh City", (106.6297, 10.8231)),
)


@dataclass(frozen=True)
class Attraction:
    """One attraction of an atomic per-city batch."""
    name: str
    coordinates: Coordinates
    description: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "coordinates": [self.coordinates[0], self.coordinates[1]],
        }
        if self.description is not None:
            data["description"] = self.description
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Attraction":
        try:
            lon, lat = data["coordinates"]
            return cls(
                name=str(data["name"]),
                coordinates=(float(lon), float(lat)),
                description=data.get("description"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolError(f"Malformed attraction: {e}") from e


class CardKind(str, Enum):
    LANDMARK = "landmark"
    CLUE = "clue"


class ImageStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


# Fixed narrative order of an adventure
NARRATIVE_KINDS = (
    CardKind.LANDMARK,
    CardKind.CLUE,
    CardKind.LANDMARK,
    CardKind.CLUE,
    CardKind.LANDMARK,
)


@dataclass
class AdventureCard:
    """One narrative step. Identity (id) is stable; image fields change in place."""
    id: str
    kind: CardKind
    title: str
    content: str
    image_url: Optional[str] = None
    image_status: ImageStatus = ImageStatus.PENDING

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "type": self.kind.value,
            "title": self.title,
            "content": self.content,
            "imageLoading": self.image_status is ImageStatus.PENDING,
        }
        if self.image_url:
            data["imageUrl"] = self.image_url
        return data

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "AdventureCard":
        try:
            return cls(
                id=str(data["id"]),
                kind=CardKind(data["type"]),
                title=str(data["title"]),
                content=str(data["content"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolError(f"Malformed card: {e}") from e


# =============================================================================
# Relay envelopes
# =============================================================================


@dataclass(frozen=True)
class CardEnvelope:
    card: AdventureCard


@dataclass(frozen=True)
class ImageReadyEnvelope:
    card_id: str
    url: str


@dataclass(frozen=True)
class ImageFailedEnvelope:
    card_id: str


@dataclass(frozen=True)
class CompleteEnvelope:
    pass


@dataclass(frozen=True)
class ErrorEnvelope:
    message: str


Envelope = Union[
    CardEnvelope,
    ImageReadyEnvelope,
    ImageFailedEnvelope,
    CompleteEnvelope,
    ErrorEnvelope,
]


def envelope_to_dict(envelope: Envelope) -> dict[str, Any]:
    if isinstance(envelope, CardEnvelope):
        return {"type": "card", "card": envelope.card.to_wire()}
    if isinstance(envelope, ImageReadyEnvelope):
        return {"type": "image", "cardId": envelope.card_id, "imageUrl": envelope.url}
    if isinstance(envelope, ImageFailedEnvelope):
        return {"type": "image-error", "cardId": envelope.card_id}
    if isinstance(envelope, CompleteEnvelope):
        return {"type": "complete"}
    if isinstance(envelope, ErrorEnvelope):
        return {"type": "error", "message": envelope.message}
    raise TypeError(f"Not an envelope: {envelope!r}")


def encode_envelope(envelope: Envelope) -> bytes:
    """Encode one envelope as a single newline-terminated JSON line."""
    return (json.dumps(envelope_to_dict(envelope)) + "\n").encode("utf-8")


def parse_envelope(line: str) -> Envelope:
    """Parse one line of the relay stream.

    Raises:
        ProtocolError: the line is not JSON or not a known envelope
    """
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Envelope is not JSON: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError("Envelope is not a JSON object")

    kind = data.get("type")
    try:
        if kind == "card":
            if not isinstance(data.get("card"), dict):
                raise ProtocolError("Card envelope without card")
            return CardEnvelope(AdventureCard.from_wire(data["card"]))
        if kind == "image":
            return ImageReadyEnvelope(str(data["cardId"]), str(data["imageUrl"]))
        if kind == "image-error":
            return ImageFailedEnvelope(str(data["cardId"]))
        if kind == "complete":
            return CompleteEnvelope()
        if kind == "error":
            return ErrorEnvelope(str(data.get("message") or "Unknown error"))
    except KeyError as e:
        raise ProtocolError(f"Envelope '{kind}' missing field {e}") from e

    raise ProtocolError(f"Unknown envelope type: {kind!r}")


@dataclass(frozen=True)
class IntentReply:
    """Result of remote intent classification."""
    action: str
    response_text: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"action": self.action, "responseText": self.response_text}


@dataclass
class ToolCall:
    """A structured tool invocation returned by a chat completion."""
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
