"""Command interpreter for free-form user utterances (typed or transcribed).

Two stages with different cost profiles, kept separate:
1. Local rules: case-insensitive substring patterns, no I/O.
2. Remote delegate: intent classification through the provider, used only
   when no rule matches.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from .models import IntentReply

logger = logging.getLogger(__name__)


class Intent(str, Enum):
    LEARN_MORE = "learn_more"
    ADVANCE = "advance"
    OTHER = "other"


class IntentSource(str, Enum):
    RULE = "rule"
    REMOTE = "remote"


class LocalRule(Enum):
    """Fixed utterance patterns, in priority order."""
    LEARN_MORE = (Intent.LEARN_MORE, ("learn more", "tell me more"))
    NEXT_CLUE = (Intent.ADVANCE, ("next clue", "see next clue"))
    NEXT_LANDMARK = (Intent.ADVANCE, ("visit next", "next landmark"))

    @property
    def intent(self) -> Intent:
        return self.value[0]

    @property
    def phrases(self) -> tuple[str, ...]:
        return self.value[1]


# Remote action labels -> intents; anything else is OTHER
REMOTE_ACTIONS = {
    "learn_more": Intent.LEARN_MORE,
    "next": Intent.ADVANCE,
}


@dataclass(frozen=True)
class Interpretation:
    intent: Intent
    source: IntentSource
    response_text: str = ""
    rule: Optional[LocalRule] = None


class IntentDelegate(Protocol):
    async def classify(self, text: str, card_kind: str) -> IntentReply: ...


def match_rule(text: str) -> Optional[LocalRule]:
    """Return the first local rule whose phrase occurs in ``text``."""
    lowered = text.lower()
    for rule in LocalRule:
        if any(phrase in lowered for phrase in rule.phrases):
            return rule
    return None


def intent_for_action(action: str) -> Intent:
    return REMOTE_ACTIONS.get((action or "").strip().lower(), Intent.OTHER)


class CommandInterpreter:
    """Stateless classifier: local rules first, then the remote delegate."""

    def __init__(self, delegate: IntentDelegate):
        self.delegate = delegate

    async def interpret(self, text: str, card_kind: str) -> Interpretation:
        rule = match_rule(text)
        if rule is not None:
            logger.debug(f"Rule {rule.name} matched {text!r}")
            return Interpretation(rule.intent, IntentSource.RULE, rule=rule)

        reply = await self.delegate.classify(text, card_kind)
        intent = intent_for_action(reply.action)
        logger.debug(f"Delegate classified {text!r} as {reply.action} -> {intent.value}")
        return Interpretation(intent, IntentSource.REMOTE, response_text=reply.response_text)
