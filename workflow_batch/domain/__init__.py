"""
workflow_batch.domain -- Pure types for the deadline sweep.

ZERO I/O.  All types are frozen dataclasses.
"""

from workflow_batch.domain.types import SweepItemResult, SweepItemStatus, SweepResult

__all__ = [
    "SweepItemResult",
    "SweepItemStatus",
    "SweepResult",
]
