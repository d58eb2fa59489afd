"""
Pure calculation engines for receivables.

Engines take DTOs, return frozen results and perform no I/O.
"""

from receivables_engines.allocation import (
    AllocationEngine,
    AllocationLine,
    AllocationResult,
)

__all__ = [
    "AllocationEngine",
    "AllocationLine",
    "AllocationResult",
]
