"""
HTTP Layer.

This package handles all communication with the data source: the startup
handshake and the single-range GET primitive.
"""

from .handshake import Announcement, perform_handshake
from .transport import AiohttpTransport, RangeResponse, RangeTransport

__all__ = [
    "AiohttpTransport",
    "Announcement",
    "RangeResponse",
    "RangeTransport",
    "perform_handshake",
]
