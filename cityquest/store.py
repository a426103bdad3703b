"""Adventure state store (client side).

Holds the ordered cards of one adventure session. Cards are kept in an
id -> card mapping whose insertion order is the narrative order, so point
updates by id are O(1) and ids are unique by construction.

The store is append/update only: no operation reorders or removes a card.
reset() replaces the whole session when a new adventure starts.
"""

import logging
from collections import OrderedDict
from enum import Enum
from typing import Optional

from .models import (
    AdventureCard,
    CardEnvelope,
    CompleteEnvelope,
    Envelope,
    ErrorEnvelope,
    ImageFailedEnvelope,
    ImageReadyEnvelope,
    ImageStatus,
)

logger = logging.getLogger(__name__)


class AdventureStatus(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    COMPLETE = "complete"
    FAILED = "failed"


class AdventureStore:
    """Ordered, id-keyed card collection mutated only by decoded envelopes."""

    def __init__(self) -> None:
        self._cards: "OrderedDict[str, AdventureCard]" = OrderedDict()
        self.status = AdventureStatus.IDLE
        self.error: Optional[str] = None

    def __len__(self) -> int:
        return len(self._cards)

    def __contains__(self, card_id: object) -> bool:
        return card_id in self._cards

    @property
    def cards(self) -> list[AdventureCard]:
        """Cards in narrative order."""
        return list(self._cards.values())

    @property
    def ids(self) -> list[str]:
        return list(self._cards)

    def get(self, card_id: str) -> Optional[AdventureCard]:
        return self._cards.get(card_id)

    def card_at(self, index: int) -> Optional[AdventureCard]:
        if 0 <= index < len(self._cards):
            return self.cards[index]
        return None

    def append_card(self, card: AdventureCard) -> bool:
        """Append a card at the end. An existing id is never overwritten."""
        if card.id in self._cards:
            logger.warning(f"Ignoring duplicate card id: {card.id}")
            return False
        self._cards[card.id] = card
        return True

    def set_image(self, card_id: str, url: str) -> bool:
        card = self._cards.get(card_id)
        if card is None:
            logger.warning(f"Image for unknown card {card_id} ignored")
            return False
        card.image_url = url
        card.image_status = ImageStatus.READY
        return True

    def mark_image_failed(self, card_id: str) -> bool:
        card = self._cards.get(card_id)
        if card is None:
            logger.warning(f"Image failure for unknown card {card_id} ignored")
            return False
        card.image_status = ImageStatus.FAILED
        return True

    def reset(self) -> None:
        """Clear all cards; used when a new adventure starts."""
        self._cards.clear()
        self.status = AdventureStatus.IDLE
        self.error = None

    def begin(self) -> None:
        """Mark a fresh adventure as generating."""
        self.reset()
        self.status = AdventureStatus.GENERATING

    def apply(self, envelope: Envelope) -> None:
        """Apply one decoded envelope."""
        if isinstance(envelope, CardEnvelope):
            self.append_card(envelope.card)
            if self.status is AdventureStatus.IDLE:
                self.status = AdventureStatus.GENERATING
        elif isinstance(envelope, ImageReadyEnvelope):
            self.set_image(envelope.card_id, envelope.url)
        elif isinstance(envelope, ImageFailedEnvelope):
            self.mark_image_failed(envelope.card_id)
        elif isinstance(envelope, CompleteEnvelope):
            self.status = AdventureStatus.COMPLETE
        elif isinstance(envelope, ErrorEnvelope):
            logger.error(f"Adventure failed: {envelope.message}")
            self.status = AdventureStatus.FAILED
            self.error = envelope.message
        else:
            logger.warning(f"Unknown envelope ignored: {envelope!r}")
