"""Streaming relay handlers.

Each handler owns one upstream orchestration and turns it into output the
HTTP layer can forward without waiting for the whole operation:

- AttractionsHandler: one tool-call completion -> atomic attraction batch
- AdventureHandler: JSON narrative + sequential images -> envelope stream
- AmbientFactHandler: streamed completion -> raw text fragments, forwarded as decoded
- IntentHandler: streamed JSON completion -> buffered, parsed IntentReply

Failure policy: the attraction batch and the narrative are atomic (all or
nothing); image generation is best-effort per card and never aborts the
stream.
"""

import json
import logging
from typing import Any, AsyncIterator, Optional, Sequence

from .cancellation import CancelToken
from .errors import ProtocolError, UpstreamError
from .gateway import ChatRequest, GatewayClient
from .models import (
    NARRATIVE_KINDS,
    AdventureCard,
    Attraction,
    CardEnvelope,
    CompleteEnvelope,
    Envelope,
    ErrorEnvelope,
    ImageFailedEnvelope,
    ImageReadyEnvelope,
    IntentReply,
)
from . import prompts

logger = logging.getLogger(__name__)

# Attractions woven into one adventure
ADVENTURE_ATTRACTIONS = 3

NARRATIVE_ERROR_MESSAGE = "Failed to generate the adventure story"


def _is_cancelled(cancel: Optional[CancelToken]) -> bool:
    return cancel is not None and cancel.cancelled


class AttractionsHandler:
    """Discover a city's top attractions through the addMapMarker tool."""

    def __init__(self, gateway: GatewayClient):
        self.gateway = gateway

    async def find(self, city: str, cancel: Optional[CancelToken] = None) -> list[Attraction]:
        """Return the full attraction batch for ``city``.

        Raises:
            ProtocolError: a tool call was malformed or no attraction came back
            UpstreamError: the provider call failed
            StreamCancelled: ``cancel`` was set before or during the call
        """
        if cancel is not None:
            cancel.raise_if_cancelled()
        logger.info(f"Fetching attractions for {city}")
        result = await self.gateway.complete(
            ChatRequest(
                system=prompts.ATTRACTIONS_SYSTEM,
                prompt=prompts.attractions_prompt(city),
                tools=[prompts.ADD_MARKER_TOOL],
            )
        )

        if cancel is not None:
            cancel.raise_if_cancelled()

        attractions = []
        for call in result.tool_calls:
            if call.name != prompts.ADD_MARKER_TOOL_NAME:
                logger.debug(f"Ignoring unexpected tool call: {call.name}")
                continue
            attractions.append(self._to_attraction(call.arguments))

        if not attractions:
            raise ProtocolError("Failed to get any attractions with coordinates")

        logger.info(f"Found {len(attractions)} attractions for {city}")
        return attractions

    def _to_attraction(self, args: dict[str, Any]) -> Attraction:
        # A single bad marker fails the batch: partial sets are never returned
        try:
            return Attraction(
                name=str(args["name"]),
                description=args.get("description"),
                coordinates=(float(args["longitude"]), float(args["latitude"])),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Malformed addMapMarker arguments: {args}")
            raise ProtocolError("Received a malformed attraction from the provider") from e


class AdventureHandler:
    """Generate a 5-card mystery adventure and enrich each card with an image.

    Envelope order is fixed: every Card first (narrative order), then one
    ImageReady/ImageFailed per card in the same order, then Complete. A
    narrative failure yields a single Error and nothing else.
    """

    def __init__(self, gateway: GatewayClient):
        self.gateway = gateway

    async def stream(
        self,
        city: str,
        attraction_names: Sequence[str],
        cancel: Optional[CancelToken] = None,
    ) -> AsyncIterator[Envelope]:
        names = list(attraction_names)[:ADVENTURE_ATTRACTIONS]
        logger.info(f"Generating adventure for {city} with attractions: {', '.join(names)}")

        try:
            cards = await self._write_story(city, names)
        except (UpstreamError, ProtocolError) as e:
            logger.error(f"Adventure narrative failed: {e}")
            yield ErrorEnvelope(NARRATIVE_ERROR_MESSAGE)
            return

        if _is_cancelled(cancel):
            logger.info("Adventure cancelled before cards were sent")
            return

        for card in cards:
            yield CardEnvelope(card)

        for card in cards:
            if _is_cancelled(cancel):
                logger.info(f"Adventure cancelled before image for {card.id}")
                return
            try:
                url = await self.gateway.generate_image(prompts.image_prompt(card.title, city))
            except (UpstreamError, ProtocolError) as e:
                logger.warning(f"Image generation failed for {card.id} ({card.title}): {e}")
                yield ImageFailedEnvelope(card.id)
                continue
            logger.debug(f"Image ready for {card.id}")
            yield ImageReadyEnvelope(card.id, url)

        logger.info("Adventure generation complete")
        yield CompleteEnvelope()

    async def _write_story(self, city: str, names: list[str]) -> list[AdventureCard]:
        result = await self.gateway.complete(
            ChatRequest(
                system=prompts.ADVENTURE_SYSTEM,
                prompt=prompts.adventure_prompt(city, names),
                json_mode=True,
            )
        )
        return parse_story_cards(result.data)


def parse_story_cards(data: Optional[dict[str, Any]]) -> list[AdventureCard]:
    """Turn the narrative JSON into exactly five cards.

    Kinds come from the slot position, not from the model's labels. Extra
    cards are dropped.

    Raises:
        ProtocolError: fewer than five cards, or a card without title/content
    """
    raw_cards = (data or {}).get("cards")
    if not isinstance(raw_cards, list):
        raise ProtocolError("Failed to parse story cards from provider response")
    if len(raw_cards) < len(NARRATIVE_KINDS):
        raise ProtocolError(
            f"Story has {len(raw_cards)} cards, expected {len(NARRATIVE_KINDS)}"
        )

    cards = []
    for index, kind in enumerate(NARRATIVE_KINDS):
        raw = raw_cards[index]
        if not isinstance(raw, dict) or not raw.get("title") or not raw.get("content"):
            raise ProtocolError(f"Story card {index} is missing a title or content")
        cards.append(
            AdventureCard(
                id=f"card-{index}",
                kind=kind,
                title=str(raw["title"]),
                content=str(raw["content"]),
            )
        )
    return cards


class AmbientFactHandler:
    """Stream a fact (or an answer) about the current location, fragment by fragment."""

    def __init__(self, gateway: GatewayClient):
        self.gateway = gateway

    async def stream(
        self,
        location: str,
        city: str,
        user_input: str = "",
        cancel: Optional[CancelToken] = None,
    ) -> AsyncIterator[str]:
        request = ChatRequest(
            system=prompts.FACTS_SYSTEM,
            prompt=prompts.fact_prompt(location, city, user_input),
            streamed=True,
        )
        try:
            async for fragment in self.gateway.stream_chat(request):
                if _is_cancelled(cancel):
                    return
                yield fragment
        except (UpstreamError, ProtocolError) as e:
            # Response headers are already sent; report in-band
            logger.error(f"Fact stream for {location} failed: {e}")
            yield f"\n\nError: {e}"


class IntentHandler:
    """Classify a free-form utterance with a streamed JSON completion.

    Nothing is forwarded until the whole buffer is in, since the result must
    parse as one JSON object.
    """

    def __init__(self, gateway: GatewayClient):
        self.gateway = gateway

    async def classify(
        self,
        text: str,
        card_kind: str,
        cancel: Optional[CancelToken] = None,
    ) -> IntentReply:
        request = ChatRequest(
            system=prompts.intent_system(card_kind),
            prompt=text,
            streamed=True,
            json_mode=True,
        )

        parts = []
        async for fragment in self.gateway.stream_chat(request):
            if cancel is not None:
                cancel.raise_if_cancelled()
            parts.append(fragment)
        buffer = "".join(parts)

        try:
            result = json.loads(buffer)
        except json.JSONDecodeError as e:
            logger.warning(f"Intent response is not JSON: {buffer[:200]}")
            raise ProtocolError("Failed to parse intent response from provider") from e
        if not isinstance(result, dict):
            raise ProtocolError("Intent response is not a JSON object")

        reply = IntentReply(
            action=str(result.get("action") or "other"),
            response_text=str(result.get("responseText") or ""),
        )
        logger.debug(f"Intent for {text!r}: {reply.action}")
        return reply
