"""
nested-hope: a hierarchical multi-timescale sequence model

This implementation provides:
1. HopeModel - nested per-level encoder loop around an explicit carried state
2. ContinuumMemory - five exponential memory banks with attention retrieval
3. SelfModifyModule - meta-state conditioned perturbation of hidden states
4. DualRateOptimizer - fast/slow shadow copies with periodic hard sync
5. HopeTrainer - training driver with checkpointing

Key concepts:
- Levels run in order; each consumes the final output of the level below
- Carried state (level states, memory banks, meta-state) outlives a call
  and is passed in and returned by the caller
- Disabled components behave as identity / zero no-ops
"""

__version__ = "0.1.0"

from nested_hope.config import (
    HopeConfig,
    ContinuumMemConfig,
    SelfModifyConfig,
    DeepOptimizerConfig,
    TrainingConfig,
    TrainConfig,
)
from nested_hope.memory import (
    ContinuumMemory,
    ContinuumMemoryState,
    NullContinuumMemory,
)
from nested_hope.models import (
    HopeModel,
    HopeCarry,
    HopeOutput,
    SelfModifyModule,
    SelfModifyState,
    NullSelfModify,
)
from nested_hope.optimizers import DualRateOptimizer, DualRateState
from nested_hope.training import HopeTrainer, BatchData, generate_random_batch
from nested_hope.utils.checkpoint import save_checkpoint, load_checkpoint, list_checkpoints

__all__ = [
    # Config
    "HopeConfig",
    "ContinuumMemConfig",
    "SelfModifyConfig",
    "DeepOptimizerConfig",
    "TrainingConfig",
    "TrainConfig",
    # Memory
    "ContinuumMemory",
    "ContinuumMemoryState",
    "NullContinuumMemory",
    # Models
    "HopeModel",
    "HopeCarry",
    "HopeOutput",
    "SelfModifyModule",
    "SelfModifyState",
    "NullSelfModify",
    # Optimizers
    "DualRateOptimizer",
    "DualRateState",
    # Training
    "HopeTrainer",
    "BatchData",
    "generate_random_batch",
    # Checkpoints
    "save_checkpoint",
    "load_checkpoint",
    "list_checkpoints",
]
