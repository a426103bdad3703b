"""Envelope decoder (client side).

Reassembles newline-delimited envelopes from an arbitrary chunking of the
relay byte stream and applies each one to an AdventureStore, in arrival
order. A line that does not parse is logged and skipped; it never stops the
stream or disturbs later envelopes.
"""

import codecs
import logging
from typing import AsyncIterable, Optional, Union

from .cancellation import CancelToken
from .errors import ProtocolError
from .models import Envelope, parse_envelope
from .store import AdventureStore

logger = logging.getLogger(__name__)


class EnvelopeDecoder:
    """Incremental line decoder bound to one store."""

    def __init__(self, store: AdventureStore):
        self.store = store
        self._buffer = ""
        # Keeps multi-byte characters split across chunks intact
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.skipped_lines = 0

    def feed(self, chunk: Union[bytes, str]) -> list[Envelope]:
        """Add one received chunk; apply and return every complete envelope in it."""
        if isinstance(chunk, bytes):
            chunk = self._utf8.decode(chunk)
        self._buffer += chunk

        *lines, self._buffer = self._buffer.split("\n")
        return self._apply_lines(lines)

    def flush(self) -> list[Envelope]:
        """End of stream: parse whatever is left in the buffer."""
        tail = self._buffer + self._utf8.decode(b"", final=True)
        self._buffer = ""
        return self._apply_lines([tail])

    def _apply_lines(self, lines: list[str]) -> list[Envelope]:
        applied = []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                envelope = parse_envelope(line)
            except ProtocolError as e:
                self.skipped_lines += 1
                logger.warning(f"Skipping undecodable line ({e}): {line[:100]}")
                continue
            self.store.apply(envelope)
            applied.append(envelope)
        return applied

    async def consume(
        self,
        chunks: AsyncIterable[Union[bytes, str]],
        cancel: Optional[CancelToken] = None,
    ) -> bool:
        """Drive a whole relay stream into the store.

        Returns True when the stream was drained to its end, False when the
        token was cancelled first. After cancellation nothing more is applied.
        """
        async for chunk in chunks:
            if cancel is not None and cancel.cancelled:
                logger.debug("Envelope stream abandoned after cancellation")
                return False
            self.feed(chunk)

        if cancel is not None and cancel.cancelled:
            return False
        self.flush()
        return True
