from __future__ import annotations


class PixelForgeError(Exception):
    """Base class for every error raised by the transformation core."""


class InvalidSpecification(PixelForgeError):
    """Raised when a transformation request is empty or out of range.

    ``field`` is the dotted path of the offending value (``watermark.opacity``)
    or ``transformations`` when the request as a whole is rejected.
    """

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason


class NotFoundError(PixelForgeError):
    """Resource, variant or stored object does not exist (or is not owned by the caller)."""


class UnsupportedFormatError(PixelForgeError):
    """Image format outside the closed set of supported output formats."""


class RateLimitExceeded(PixelForgeError):
    """Too many pipeline invocations for one (subject, resource) pair."""

    def __init__(self, retry_after: float) -> None:
        super().__init__("Transform rate limit exceeded. Try again later.")
        self.retry_after = retry_after


class StorageError(PixelForgeError):
    """Blob or metadata store I/O failure. Transient, the caller may retry."""


class PipelineError(PixelForgeError):
    """Decode, geometry or codec failure. Retrying with the same input fails again."""


class PipelineTimeoutError(PipelineError):
    """Pipeline did not finish within the configured deadline."""


class PipelineBusyError(PixelForgeError):
    """Worker pool queue is full. Transient backpressure signal."""


class AuthenticationError(PixelForgeError):
    """Missing or invalid access token."""
