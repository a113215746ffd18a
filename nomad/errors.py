"""Exception hierarchy shared by the parser, generator and chat service."""


class NomadError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(NomadError):
    """Input could not be used as-is: missing field, limit exceeded, bad value.

    Never fatal. The chat service turns it into a clarification question.
    """

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class GenerationError(NomadError):
    """The itinerary could not be produced from real upstream output."""

    def __init__(self, message: str, destination: str | None = None):
        super().__init__(message)
        self.destination = destination


class ModificationError(NomadError):
    """A modification could not be applied to the current trip."""


# ---------------------------------------------------------------------------
# Text-generation service failures
# ---------------------------------------------------------------------------

class LLMError(NomadError):
    """The text-generation service failed."""

    retryable = False


class LLMTimeoutError(LLMError):
    retryable = True


class LLMRateLimitError(LLMError):
    retryable = True


class LLMUnavailableError(LLMError):
    """5xx / connection failures."""

    retryable = True


class MalformedResponseError(LLMError):
    """The service answered, but not with the JSON we asked for."""
