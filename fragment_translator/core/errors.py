"""Exception hierarchy for the translation pipeline."""


class TranslationError(Exception):
    """Base class for translation failures."""


class TransientTranslationError(TranslationError):
    """Raised when a retryable error occurs during translation."""

    def __init__(self, message: str = "Translation request failed") -> None:
        super().__init__(message)


class PermanentTranslationError(TranslationError):
    """Raised when a non-retryable error occurs during translation."""

    def __init__(self, message: str = "Response contained no translation") -> None:
        super().__init__(message)


class ResponseShapeError(PermanentTranslationError):
    """Raised when the transport returns something that is neither text nor an error."""


class QueueClearedError(TranslationError):
    """Set on every pending future when the queue is cleared."""

    def __init__(self, message: str = "Translation queue was cleared") -> None:
        super().__init__(message)
