"""
Tests for the adventure state store.

These tests verify that the store:
1. Keeps cards append-only in arrival order
2. Updates images in place by id without touching other cards
3. Treats unknown ids as logged no-ops
4. Tracks the adventure lifecycle from decoded envelopes
"""

import pytest

from cityquest.models import (
    AdventureCard,
    CardEnvelope,
    CardKind,
    CompleteEnvelope,
    ErrorEnvelope,
    ImageFailedEnvelope,
    ImageReadyEnvelope,
    ImageStatus,
)
from cityquest.store import AdventureStatus, AdventureStore


def make_card(index: int) -> AdventureCard:
    kind = CardKind.LANDMARK if index % 2 == 0 else CardKind.CLUE
    return AdventureCard(id=f"card-{index}", kind=kind, title=f"Title {index}", content=f"Content {index}")


@pytest.fixture
def store() -> AdventureStore:
    s = AdventureStore()
    for i in range(3):
        s.append_card(make_card(i))
    return s


class TestAppend:
    """Tests for append_card ordering and id uniqueness."""

    def test_cards_kept_in_arrival_order(self, store):
        assert store.ids == ["card-0", "card-1", "card-2"]

    def test_duplicate_id_does_not_overwrite(self, store):
        duplicate = AdventureCard(id="card-1", kind=CardKind.CLUE, title="Other", content="Other")

        assert store.append_card(duplicate) is False
        assert store.get("card-1").title == "Title 1"
        assert len(store) == 3

    def test_card_at_out_of_range(self, store):
        assert store.card_at(3) is None
        assert store.card_at(-1) is None
        assert store.card_at(0).id == "card-0"


class TestImageUpdates:
    """Tests for in-place image updates."""

    def test_set_image_marks_ready(self, store):
        assert store.set_image("card-1", "https://img/1.png") is True

        card = store.get("card-1")
        assert card.image_url == "https://img/1.png"
        assert card.image_status is ImageStatus.READY

    def test_mark_image_failed(self, store):
        assert store.mark_image_failed("card-2") is True

        card = store.get("card-2")
        assert card.image_status is ImageStatus.FAILED
        assert card.image_url is None

    def test_image_update_keeps_identity_and_order(self, store):
        original = store.get("card-0")
        store.set_image("card-0", "https://img/0.png")

        assert store.get("card-0") is original
        assert store.ids == ["card-0", "card-1", "card-2"]

    def test_unknown_id_is_noop(self, store):
        before = [(c.id, c.image_status, c.image_url) for c in store.cards]

        assert store.set_image("card-9", "https://img/9.png") is False
        assert store.mark_image_failed("card-9") is False

        after = [(c.id, c.image_status, c.image_url) for c in store.cards]
        assert before == after


class TestApply:
    """Tests for envelope dispatch and lifecycle status."""

    def test_full_sequence(self):
        store = AdventureStore()
        store.begin()
        for i in range(2):
            store.apply(CardEnvelope(make_card(i)))
        store.apply(ImageReadyEnvelope("card-0", "https://img/0.png"))
        store.apply(ImageFailedEnvelope("card-1"))
        assert store.status is AdventureStatus.GENERATING

        store.apply(CompleteEnvelope())

        assert store.status is AdventureStatus.COMPLETE
        assert [c.image_status for c in store.cards] == [ImageStatus.READY, ImageStatus.FAILED]

    def test_error_envelope_marks_failed(self):
        store = AdventureStore()
        store.begin()
        store.apply(ErrorEnvelope("Failed to generate the adventure story"))

        assert store.status is AdventureStatus.FAILED
        assert store.error == "Failed to generate the adventure story"
        assert len(store) == 0

    def test_reset_clears_everything(self, store):
        store.apply(ErrorEnvelope("boom"))
        store.reset()

        assert len(store) == 0
        assert store.status is AdventureStatus.IDLE
        assert store.error is None
