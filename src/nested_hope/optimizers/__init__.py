"""
Auxiliary optimizers for HOPE.

Key classes:
- DualRateOptimizer: fast/slow shadow copies of per-level activity with
  periodic hard synchronization, driven alongside the primary optimizer
"""

from .dual_rate import DualRateOptimizer, DualRateState

__all__ = [
    "DualRateOptimizer",
    "DualRateState",
]
