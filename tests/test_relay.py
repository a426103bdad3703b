"""
Tests for the streaming relay handlers.

These tests verify:
1. The attraction batch is all or nothing
2. Adventure envelopes come out in fixed order and survive per-card image failures
3. A narrative failure yields a single Error envelope and no cards
4. Ambient fact fragments are forwarded verbatim, with errors reported in-band
5. Intent replies are parsed from the full buffered response
"""

import pytest

from cityquest.cancellation import CancelToken
from cityquest.errors import ProtocolError, StreamCancelled, UpstreamError
from cityquest.models import (
    CardEnvelope,
    CardKind,
    CompleteEnvelope,
    ErrorEnvelope,
    ImageFailedEnvelope,
    ImageReadyEnvelope,
    ImageStatus,
    ToolCall,
)
from cityquest.relay import (
    NARRATIVE_ERROR_MESSAGE,
    AdventureHandler,
    AmbientFactHandler,
    AttractionsHandler,
    IntentHandler,
    parse_story_cards,
)
from cityquest.store import AdventureStatus, AdventureStore

from conftest import STORY, marker


ATTRACTIONS = ["Merlion Park", "Gardens by the Bay", "Marina Bay Sands"]


async def collect(stream):
    return [item async for item in stream]


class TestAttractions:
    """Tests for the attraction batch."""

    @pytest.mark.asyncio
    async def test_batch_in_order(self, gateway):
        attractions = await AttractionsHandler(gateway).find("Singapore")

        assert [a.name for a in attractions] == ATTRACTIONS
        assert attractions[0].coordinates == (103.8545, 1.2868)
        assert attractions[0].description == "About Merlion Park"
        assert "Singapore" in gateway.requests[0].prompt

    @pytest.mark.asyncio
    async def test_one_malformed_marker_fails_the_batch(self, gateway):
        gateway.tool_calls.append(ToolCall(name="addMapMarker", arguments={"name": "Nowhere"}))

        with pytest.raises(ProtocolError):
            await AttractionsHandler(gateway).find("Singapore")

    @pytest.mark.asyncio
    async def test_non_numeric_coordinates_fail_the_batch(self, gateway):
        bad = marker("Somewhere", 0, 0)
        bad.arguments["latitude"] = "north-ish"
        gateway.tool_calls = [marker("Merlion Park", 103.85, 1.28), bad]

        with pytest.raises(ProtocolError):
            await AttractionsHandler(gateway).find("Singapore")

    @pytest.mark.asyncio
    async def test_no_tool_calls(self, gateway):
        gateway.tool_calls = []

        with pytest.raises(ProtocolError, match="Failed to get any attractions"):
            await AttractionsHandler(gateway).find("Atlantis")

    @pytest.mark.asyncio
    async def test_other_tools_ignored(self, gateway):
        gateway.tool_calls.insert(0, ToolCall(name="zoomMap", arguments={"level": 3}))

        attractions = await AttractionsHandler(gateway).find("Singapore")

        assert [a.name for a in attractions] == ATTRACTIONS

    @pytest.mark.asyncio
    async def test_cancelled_before_call(self, gateway):
        cancel = CancelToken()
        cancel.cancel()

        with pytest.raises(StreamCancelled):
            await AttractionsHandler(gateway).find("Singapore", cancel)

        assert gateway.requests == []


class TestAdventure:
    """Tests for the adventure envelope stream."""

    @pytest.mark.asyncio
    async def test_image_failure_does_not_abort_stream(self, gateway):
        gateway.failing_images = {2}

        envelopes = await collect(AdventureHandler(gateway).stream("Singapore", ATTRACTIONS))

        assert [type(e) for e in envelopes] == [CardEnvelope] * 5 + [
            ImageReadyEnvelope,
            ImageReadyEnvelope,
            ImageFailedEnvelope,
            ImageReadyEnvelope,
            ImageReadyEnvelope,
            CompleteEnvelope,
        ]
        cards = [e.card for e in envelopes[:5]]
        assert [c.id for c in cards] == ["card-0", "card-1", "card-2", "card-3", "card-4"]
        assert [c.kind for c in cards] == [
            CardKind.LANDMARK, CardKind.CLUE, CardKind.LANDMARK, CardKind.CLUE, CardKind.LANDMARK,
        ]
        assert [e.card_id for e in envelopes[5:10]] == ["card-0", "card-1", "card-2", "card-3", "card-4"]

        store = AdventureStore()
        store.begin()
        for envelope in envelopes:
            store.apply(envelope)

        assert store.status is AdventureStatus.COMPLETE
        assert [c.image_status for c in store.cards] == [
            ImageStatus.READY, ImageStatus.READY, ImageStatus.FAILED, ImageStatus.READY, ImageStatus.READY,
        ]
        assert store.get("card-2").image_url is None
        assert store.get("card-4").image_url == "https://img.test/card-4.png"

    @pytest.mark.asyncio
    async def test_image_prompts_follow_card_titles(self, gateway):
        await collect(AdventureHandler(gateway).stream("Singapore", ATTRACTIONS))

        assert gateway.image_prompts[0] == (
            "A stylized image of The Merlion in Singapore. Dramatic and atmospheric."
        )
        assert len(gateway.image_prompts) == 5

    @pytest.mark.asyncio
    async def test_short_story_yields_single_error(self, gateway):
        gateway.story = {"cards": STORY["cards"][:2]}

        envelopes = await collect(AdventureHandler(gateway).stream("Singapore", ATTRACTIONS))

        assert envelopes == [ErrorEnvelope(NARRATIVE_ERROR_MESSAGE)]
        assert gateway.image_prompts == []

        store = AdventureStore()
        store.begin()
        for envelope in envelopes:
            store.apply(envelope)
        assert len(store) == 0
        assert store.status is AdventureStatus.FAILED

    @pytest.mark.asyncio
    async def test_upstream_failure_yields_single_error(self, gateway):
        gateway.story_error = UpstreamError("Upstream provider error (503)", status_code=503)

        envelopes = await collect(AdventureHandler(gateway).stream("Singapore", ATTRACTIONS))

        assert envelopes == [ErrorEnvelope(NARRATIVE_ERROR_MESSAGE)]

    @pytest.mark.asyncio
    async def test_only_first_three_attractions_used(self, gateway):
        names = ATTRACTIONS + ["Chinatown", "Sentosa"]

        await collect(AdventureHandler(gateway).stream("Singapore", names))

        prompt = gateway.requests[0].prompt
        assert "Marina Bay Sands" in prompt
        assert "Chinatown" not in prompt
        assert gateway.requests[0].json_mode is True

    @pytest.mark.asyncio
    async def test_cancel_stops_image_generation(self, gateway):
        cancel = CancelToken()
        envelopes = []

        async for envelope in AdventureHandler(gateway).stream("Singapore", ATTRACTIONS, cancel):
            envelopes.append(envelope)
            if isinstance(envelope, ImageReadyEnvelope):
                cancel.cancel()

        assert len(gateway.image_prompts) == 1
        assert not any(isinstance(e, CompleteEnvelope) for e in envelopes)


class TestParseStoryCards:
    """Tests for narrative JSON validation."""

    def test_extra_cards_dropped(self):
        data = {"cards": STORY["cards"] + [{"title": "Epilogue", "content": "Bonus"}]}

        cards = parse_story_cards(data)

        assert len(cards) == 5
        assert cards[-1].title == "Marina Bay Sands"

    def test_kinds_come_from_position(self):
        data = {"cards": [dict(c, type="clue") for c in STORY["cards"]]}

        cards = parse_story_cards(data)

        assert cards[0].kind is CardKind.LANDMARK

    @pytest.mark.parametrize("data", [
        None,
        {},
        {"cards": "five cards"},
        {"cards": STORY["cards"][:4]},
        {"cards": STORY["cards"][:4] + [{"title": "No content"}]},
    ])
    def test_invalid_narratives(self, data):
        with pytest.raises(ProtocolError):
            parse_story_cards(data)


class TestAmbientFacts:
    """Tests for the fact fragment stream."""

    @pytest.mark.asyncio
    async def test_fragments_forwarded_verbatim(self, gateway):
        fragments = await collect(AmbientFactHandler(gateway).stream("Eiffel Tower", "Paris"))

        assert fragments == ["The ", "tower ", "was built in 1889."]
        assert gateway.requests[0].prompt == "Provide 1 interesting fact about Eiffel Tower in Paris."
        assert gateway.requests[0].streamed is True

    @pytest.mark.asyncio
    async def test_user_question_included(self, gateway):
        await collect(AmbientFactHandler(gateway).stream("Eiffel Tower", "Paris", "How tall is it?"))

        assert '"How tall is it?"' in gateway.requests[0].prompt

    @pytest.mark.asyncio
    async def test_mid_stream_error_reported_in_band(self, gateway):
        gateway.stream_error = UpstreamError("Upstream provider stream timed out")

        fragments = await collect(AmbientFactHandler(gateway).stream("Eiffel Tower", "Paris"))

        assert fragments[:3] == ["The ", "tower ", "was built in 1889."]
        assert fragments[3] == "\n\nError: Upstream provider stream timed out"


class TestIntent:
    """Tests for intent classification."""

    @pytest.mark.asyncio
    async def test_reply_parsed_from_buffer(self, gateway):
        gateway.intent_fragments = ['{"action": "le', 'arn_more", "responseText": "Sure!"}']

        reply = await IntentHandler(gateway).classify("what year was this built", "landmark")

        assert reply.action == "learn_more"
        assert reply.response_text == "Sure!"
        request = gateway.requests[0]
        assert request.json_mode is True
        assert "landmark card" in request.system

    @pytest.mark.asyncio
    async def test_invalid_json(self, gateway):
        gateway.intent_fragments = ["I think you want ", "the next card"]

        with pytest.raises(ProtocolError):
            await IntentHandler(gateway).classify("next please", "clue")

    @pytest.mark.asyncio
    async def test_missing_action_defaults_to_other(self, gateway):
        gateway.intent_fragments = ['{"responseText": "Hmm."}']

        reply = await IntentHandler(gateway).classify("hello", "clue")

        assert reply.action == "other"

    @pytest.mark.asyncio
    async def test_cancelled_classification(self, gateway):
        cancel = CancelToken()
        cancel.cancel()

        with pytest.raises(StreamCancelled):
            await IntentHandler(gateway).classify("hello", "clue", cancel)
