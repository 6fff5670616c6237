"""
Spooler error taxonomy.

Adapters translate library exceptions into these at the seam, so the
lifecycle engine only ever catches SpoolerError.
"""

from enum import Enum, auto

# IPP status codes the engine cares about
IPP_NOT_FOUND = 0x0406


class SpoolerErrorType(Enum):
    """Classification of spooler errors."""

    TRANSPORT = auto()  # Spooler or printer unreachable - retry on the entry's deadline
    PROTOCOL = auto()  # Request rejected - drop or degrade
    UNKNOWN = auto()


class SpoolerError(Exception):
    """Base class for all spooler failures."""
    pass


class SpoolerUnavailable(SpoolerError):
    """Raised when the spooler cannot be reached."""
    pass


class SpoolerRequestError(SpoolerError):
    """Raised when the spooler answers with an IPP error status."""

    def __init__(self, status: int, message: str = ""):
        super().__init__(f"IPP status 0x{status:04x}: {message}" if message else f"IPP status 0x{status:04x}")
        self.status = status
        self.message = message

    @property
    def not_found(self) -> bool:
        return self.status == IPP_NOT_FOUND


# Error message substrings that indicate the server is unreachable
TRANSPORT_MESSAGES = (
    "failed to connect",
    "connection refused",
    "connection reset",
    "no route to host",
    "timed out",
    "unable to connect",
    "name or service not known",
    "http error",
)


def classify_spooler_error(exception: BaseException) -> SpoolerErrorType:
    """
    Classify a failure raised while talking to a spooler.

    Args:
        exception: The exception raised by an adapter or the underlying library

    Returns:
        SpoolerErrorType telling the caller whether a retry can help
    """
    if isinstance(exception, SpoolerUnavailable):
        return SpoolerErrorType.TRANSPORT
    if isinstance(exception, SpoolerRequestError):
        return SpoolerErrorType.PROTOCOL
    if isinstance(exception, (ConnectionError, TimeoutError)):
        return SpoolerErrorType.TRANSPORT

    error_msg = str(exception).lower()
    if any(phrase in error_msg for phrase in TRANSPORT_MESSAGES):
        return SpoolerErrorType.TRANSPORT

    # Adapters wrap library errors; look at the original one
    if exception.__cause__ is not None:
        return classify_spooler_error(exception.__cause__)

    return SpoolerErrorType.UNKNOWN
