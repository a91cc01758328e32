"""
Data Models Layer.

This package contains the value types and Pydantic models that define the core
data structures used throughout the application, such as spans, digests,
configuration and statistics.
"""

from .config import FetchConfig
from .digest import ExpectedDigest
from .span import ByteSpan, FetchAttempt
from .stats import SessionStats

__all__ = ["ByteSpan", "ExpectedDigest", "FetchAttempt", "FetchConfig", "SessionStats"]
