"""
Training utilities for HOPE.

Key classes:
- HopeTrainer: Adam training loop over HopeModel, optionally driving the
  DualRateOptimizer with per-level gradients
- BatchData: (tokens, targets) pair
"""

from nested_hope.training.trainer import (
    HopeTrainer,
    BatchData,
    generate_random_batch,
)

__all__ = [
    'HopeTrainer',
    'BatchData',
    'generate_random_batch',
]
