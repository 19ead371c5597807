"""
Models for HOPE

Key classes:
- HopeModel: hierarchical encoder; every hierarchy level runs its own
  transformer encoder for level_timescales[level] inner iterations per call
- HopeCarry: state threaded explicitly between forward calls
- SelfModifyModule: meta-network that perturbs hidden representations
  (NullSelfModify is the disabled variant)
"""

from .hope import HopeModel, HopeCarry, HopeOutput
from .self_modify import (
    SelfModifyModule,
    SelfModifyState,
    NullSelfModify,
    build_self_modify,
    META_STATE_DECAY,
    META_UPDATE_WEIGHT,
    WEIGHT_MOD_SCALE,
)

__all__ = [
    "HopeModel",
    "HopeCarry",
    "HopeOutput",
    "SelfModifyModule",
    "SelfModifyState",
    "NullSelfModify",
    "build_self_modify",
    "META_STATE_DECAY",
    "META_UPDATE_WEIGHT",
    "WEIGHT_MOD_SCALE",
]
