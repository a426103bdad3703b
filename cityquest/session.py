"""Explorer session: the client-side state of one user.

Ties together city search, the adventure stream (decoder -> store), card
navigation, command interpretation, follow-up facts and narration. All of
it runs on one event loop; the only concurrency is the non-blocking I/O of
the client.
"""

import logging
from typing import Callable, Optional, Protocol

from .cancellation import CancelToken
from .client import CityQuestClient
from .decoder import EnvelopeDecoder
from .errors import CityQuestError, ValidationError
from .interpreter import CommandInterpreter, Intent, Interpretation
from .models import SUGGESTED_CITIES, AdventureCard, Attraction, City
from .store import AdventureStatus, AdventureStore

logger = logging.getLogger(__name__)


class MediaControls(Protocol):
    """Recorder/player attached to the active card view."""

    def teardown(self) -> None:
        """Stop recording and pause playback."""


class ExplorerSession:
    """Top-level session state for one explorer."""

    def __init__(
        self,
        client: CityQuestClient,
        interpreter: Optional[CommandInterpreter] = None,
        media: Optional[MediaControls] = None,
        store: Optional[AdventureStore] = None,
    ):
        self.client = client
        self.interpreter = interpreter or CommandInterpreter(client)
        self.media = media

        self.city: Optional[City] = None
        self.attractions: list[Attraction] = []
        self.store = store if store is not None else AdventureStore()
        self.active_index = 0
        self.additional_info: Optional[str] = None

        self._adventure_cancel: Optional[CancelToken] = None
        self._info_cancel: Optional[CancelToken] = None

    # =========================================================================
    # City and attractions
    # =========================================================================

    async def search(self, city_name: str) -> list[Attraction]:
        """Select a city and load its attraction batch (all or nothing)."""
        name = (city_name or "").strip()
        if not name:
            raise ValidationError("City is required")

        self.city = self._city_for(name)
        self.attractions = []
        self._abandon_adventure()
        self.store.reset()
        self._activate(0)

        self.attractions = await self.client.find_attractions(name)
        logger.info(f"Received {len(self.attractions)} attractions for {name}")
        return self.attractions

    @staticmethod
    def _city_for(name: str) -> City:
        for suggested in SUGGESTED_CITIES:
            if suggested.name.lower() == name.lower():
                return City(suggested.name, suggested.coordinates)
        return City.placeholder(name)

    def resolve_city(self, longitude: float, latitude: float) -> None:
        """Geocoder callback: fill in the current city's coordinates."""
        if self.city is not None:
            self.city.resolve(longitude, latitude)

    # =========================================================================
    # Adventure stream
    # =========================================================================

    def _abandon_adventure(self) -> None:
        if self._adventure_cancel is not None:
            self._adventure_cancel.cancel()
            self._adventure_cancel = None

    async def start_adventure(self) -> AdventureStatus:
        """Start a new adventure and drain its envelope stream into the store.

        Any stream still draining for a previous adventure is cancelled
        before the store is reset, so it can no longer touch the new state.
        """
        if self.city is None or not self.attractions:
            raise ValidationError("Search for a city with attractions first")

        self._abandon_adventure()
        cancel = CancelToken()
        self._adventure_cancel = cancel

        self.store.begin()
        self._activate(0)

        decoder = EnvelopeDecoder(self.store)
        chunks = self.client.stream_adventure(self.city.name, self.attractions, cancel)
        try:
            drained = await decoder.consume(chunks, cancel)
        except CityQuestError as e:
            if not cancel.cancelled:
                self.store.status = AdventureStatus.FAILED
                self.store.error = str(e)
            raise
        finally:
            if self._adventure_cancel is cancel:
                self._adventure_cancel = None

        if drained and self.store.status is AdventureStatus.GENERATING:
            logger.warning("Adventure stream ended without a completion envelope")
            self.store.status = AdventureStatus.FAILED
            self.store.error = "Adventure stream ended unexpectedly"
        return self.store.status

    # =========================================================================
    # Card navigation
    # =========================================================================

    @property
    def active_card(self) -> Optional[AdventureCard]:
        return self.store.card_at(self.active_index)

    def _activate(self, index: int) -> None:
        self.active_index = index
        self.additional_info = None
        if self._info_cancel is not None:
            self._info_cancel.cancel()
            self._info_cancel = None
        if self.media is not None:
            self.media.teardown()

    def go_to(self, index: int) -> bool:
        if not 0 <= index < len(self.store) or index == self.active_index:
            return False
        self._activate(index)
        return True

    def advance(self) -> bool:
        """Move to the next card; refused at the last card."""
        if self.active_index >= len(self.store) - 1:
            return False
        self._activate(self.active_index + 1)
        return True

    def back(self) -> bool:
        if self.active_index <= 0:
            return False
        self._activate(self.active_index - 1)
        return True

    # =========================================================================
    # Commands, follow-up facts and audio
    # =========================================================================

    def _require_card(self) -> AdventureCard:
        card = self.active_card
        if card is None:
            raise ValidationError("No adventure card is active")
        return card

    async def handle_command(
        self,
        text: str,
        on_fragment: Optional[Callable[[str], None]] = None,
    ) -> Interpretation:
        """Interpret an utterance and perform the resulting action."""
        card = self._require_card()
        interpretation = await self.interpreter.interpret(text, card.kind.value)

        if interpretation.intent is Intent.LEARN_MORE:
            await self.learn_more(text, on_fragment=on_fragment)
        elif interpretation.intent is Intent.ADVANCE:
            if not self.advance():
                logger.debug("Advance ignored at the last card")
        return interpretation

    async def learn_more(
        self,
        user_input: str = "",
        on_fragment: Optional[Callable[[str], None]] = None,
    ) -> str:
        """Stream a follow-up fact about the active card, accumulating it."""
        card = self._require_card()
        if self._info_cancel is not None:
            self._info_cancel.cancel()
        cancel = CancelToken()
        self._info_cancel = cancel

        self.additional_info = ""
        try:
            async for fragment in self.client.stream_additional_info(
                card.title, self.city.name if self.city else "", user_input, cancel
            ):
                if cancel.cancelled:
                    break
                self.additional_info += fragment
                if on_fragment is not None:
                    on_fragment(fragment)
        except CityQuestError:
            self.additional_info = None
            raise
        finally:
            if self._info_cancel is cancel:
                self._info_cancel = None
        return self.additional_info or ""

    async def narrate(self) -> bytes:
        """Synthesize the active card's content as MP3 audio."""
        card = self._require_card()
        return await self.client.text_to_speech(card.content)

    async def handle_recording(
        self,
        audio: bytes,
        on_fragment: Optional[Callable[[str], None]] = None,
    ) -> Interpretation:
        """Transcribe a recording and treat it as a typed command."""
        text = await self.client.speech_to_text(audio)
        logger.info(f"Transcribed command: {text!r}")
        return await self.handle_command(text, on_fragment=on_fragment)
