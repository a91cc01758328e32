"""
Core engine for reconstructing a blob from partial range responses.

This package contains the primary logic. The `FetchSession` acts as the
high-level session coordinator, delegating the download itself to the
`Reconciler`, which drives the `CoverageTracker` and `BlobAssembler` and hands
the finished blob to the integrity verifier.
"""

from .assembler import BlobAssembler
from .coverage import CoverageTracker
from .integrity import compute_digest, verify
from .reconciler import Reconciler, ReconcileState
from .session import FetchSession, SessionResult

__all__ = [
    "BlobAssembler",
    "CoverageTracker",
    "FetchSession",
    "ReconcileState",
    "Reconciler",
    "SessionResult",
    "compute_digest",
    "verify",
]
