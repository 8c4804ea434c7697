"""Error taxonomy for the conversion pipeline."""


class ConversionError(Exception):
    """Base class for all conversion service errors."""


class ValidationError(ConversionError):
    """Bad request shape or out-of-range value. Raised before a job exists."""


class FetchError(ConversionError):
    """A source asset could not be retrieved."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to fetch {url}: {reason}")


class TranscodeError(ConversionError):
    """The external transform reported a failure."""


class TranscodeTimeoutError(ConversionError):
    """The transform did not finish before the deadline."""

    def __init__(self, deadline_seconds: float):
        self.deadline_seconds = deadline_seconds
        super().__init__(
            f"Transcode exceeded the {deadline_seconds:g}s deadline and was terminated"
        )


class CleanupError(ConversionError):
    """A temporary or output file could not be removed. Logged, never fatal."""


class NotFoundError(ConversionError):
    """Unknown job id or an artifact that has already been reclaimed."""


class InvalidTransitionError(ConversionError):
    """A job or supervisor was asked to make an illegal state change."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Illegal transition {current} -> {target}")
