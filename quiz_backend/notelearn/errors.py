"""Error types raised by the storage layer and the generation pipeline."""


class LearnError(Exception):
    """Base class for every error surfaced by notelearn."""


# PUBLIC_INTERFACE
class StorageError(LearnError):
    """A note or sidecar document could not be read or written."""


# PUBLIC_INTERFACE
class NetworkError(LearnError):
    """The completion endpoint was unreachable, timed out or returned an error status."""


# PUBLIC_INTERFACE
class SchemaError(LearnError):
    """A model response was not valid JSON or did not match the expected shape."""


# PUBLIC_INTERFACE
class DistillationError(LearnError):
    """Distilling a note failed; the record it was called with is unchanged."""


# PUBLIC_INTERFACE
class QuizGenerationError(LearnError):
    """Generating quiz questions failed; the record it was called with is unchanged."""


# PUBLIC_INTERFACE
class PipelineBusyError(LearnError):
    """A quiz pipeline run for the same note is already in progress."""

    def __init__(self, key: str) -> None:
        super().__init__(f"A quiz is already being prepared for {key}")
        self.key = key


# PUBLIC_INTERFACE
class NoActiveQuizError(LearnError):
    """A quiz transition was requested while no quiz is loaded."""
