"""
Memory Systems for HOPE

Includes:
- ContinuumMemory: five exponential memory banks (ultra-short to episodic)
  with cross-attention retrieval
- NullContinuumMemory: the disabled variant (identity retrieval)
"""

from .continuum import (
    BANK_NAMES,
    ContinuumMemory,
    ContinuumMemoryState,
    NullContinuumMemory,
    build_continuum_memory,
)

__all__ = [
    "BANK_NAMES",
    "ContinuumMemory",
    "ContinuumMemoryState",
    "NullContinuumMemory",
    "build_continuum_memory",
]
