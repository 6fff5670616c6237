from .base import MARKER_OPTION, QueueDefinition, SpoolerBase
from .errors import SpoolerError, SpoolerRequestError, SpoolerUnavailable

__all__ = [
    "MARKER_OPTION",
    "QueueDefinition",
    "SpoolerBase",
    "SpoolerError",
    "SpoolerRequestError",
    "SpoolerUnavailable",
]
