"""Error taxonomy shared by the server and the client.

- ValidationError: missing or malformed request fields (HTTP 400)
- MissingCredential: provider credential not configured (HTTP 500)
- UpstreamError: provider returned a failure or an unusable payload
- ProtocolError: local parse failure of provider or envelope data
"""

from typing import Optional


class CityQuestError(Exception):
    """Base class for all CityQuest errors."""


class ValidationError(CityQuestError):
    """Request is missing a required field or carries a malformed one."""


class MissingCredential(CityQuestError):
    """The upstream provider credential is not configured."""

    def __init__(self, message: str = "OpenAI API key is not configured on the server"):
        super().__init__(message)


class UpstreamError(CityQuestError):
    """The upstream provider failed.

    The message is safe to show to users. The raw provider body is kept
    on ``body`` for logging only.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ProtocolError(CityQuestError):
    """Data could not be parsed in the expected framing or shape."""


class StreamCancelled(CityQuestError):
    """A relay consumption loop was cancelled through its CancelToken."""
