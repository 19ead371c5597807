"""
Dual-Rate Optimizer

A secondary, meta-level optimizer that keeps fast- and slow-moving shadow
copies of per-level activity, independent of the primary gradient optimizer:

    fast_l     <- fast_l - lr * fast_lr_scale * g_l
    fast_ema_l <- fast_ema_l * (1 - c_f) + fast_l * c_f
    slow_l     <- slow_l + lr * slow_lr_scale * (fast_ema_l - slow_l)
    slow_ema_l <- slow_ema_l * (1 - c_s) + slow_l * c_s

Every sync_interval fast updates the slow copies are hard-snapped to the
fast EMA (a discontinuous jump, not an interpolation).

The gradients are supplied by the caller, one (batch, seq_len, hidden)
tensor per hierarchy level.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import torch

from ..config import DeepOptimizerConfig


@dataclass
class DualRateState:
    fast_params: List[torch.Tensor] = field(default_factory=list)
    slow_params: List[torch.Tensor] = field(default_factory=list)
    fast_ema: List[torch.Tensor] = field(default_factory=list)
    slow_ema: List[torch.Tensor] = field(default_factory=list)
    step_count: int = 0


class DualRateOptimizer:
    """
    Fast/slow shadow-parameter optimizer.

    All methods are no-ops (or return zeros / False) when the config is
    disabled, so callers can drive it unconditionally.

    Args:
        config: Dual-rate settings
    """

    def __init__(self, config: DeepOptimizerConfig):
        config.validate()
        self.config = config

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def init_state(
        self,
        num_levels: int,
        batch_size: int,
        seq_len: int,
        hidden_size: int,
        device: Optional[torch.device] = None,
    ) -> DualRateState:
        def zeros():
            return [torch.zeros(batch_size, seq_len, hidden_size, device=device) for _ in range(num_levels)]

        return DualRateState(
            fast_params=zeros(),
            slow_params=zeros(),
            fast_ema=zeros(),
            slow_ema=zeros(),
            step_count=0,
        )

    @torch.no_grad()
    def update_fast_params(
        self,
        state: DualRateState,
        gradients: Sequence[torch.Tensor],
        learning_rate: float,
    ):
        """Gradient step on the fast copies, then fold them into the fast EMA."""
        if not self.enabled:
            return

        fast_lr = learning_rate * self.config.fast_lr_scale
        ema = self.config.fast_ema

        for level, grad in enumerate(gradients):
            # Gradients for levels we do not track are ignored
            if level >= len(state.fast_params):
                continue
            state.fast_params[level] = state.fast_params[level] - grad * fast_lr
            state.fast_ema[level] = state.fast_ema[level] * (1.0 - ema) + state.fast_params[level] * ema

        state.step_count += 1

    @torch.no_grad()
    def update_slow_params(self, state: DualRateState, learning_rate: float):
        """Pull the slow copies toward the fast EMA."""
        if not self.enabled:
            return

        slow_lr = learning_rate * self.config.slow_lr_scale
        ema = self.config.slow_ema

        for level in range(len(state.slow_params)):
            diff = state.fast_ema[level] - state.slow_params[level]
            state.slow_params[level] = state.slow_params[level] + diff * slow_lr
            state.slow_ema[level] = state.slow_ema[level] * (1.0 - ema) + state.slow_params[level] * ema

    def should_sync(self, state: DualRateState) -> bool:
        return self.enabled and state.step_count % self.config.sync_interval == 0

    @torch.no_grad()
    def sync(self, state: DualRateState):
        """Snap every slow copy onto its fast EMA."""
        if not self.enabled:
            return
        for level in range(len(state.slow_params)):
            state.slow_params[level] = state.fast_ema[level].clone()

    @torch.no_grad()
    def step(
        self,
        state: DualRateState,
        gradients: Sequence[torch.Tensor],
        learning_rate: float,
    ) -> bool:
        """
        Fast update, slow update, and a sync when one is due.

        Returns:
            True if the slow copies were synchronized on this step
        """
        if not self.enabled:
            return False
        self.update_fast_params(state, gradients, learning_rate)
        self.update_slow_params(state, learning_rate)
        if self.should_sync(state):
            self.sync(state)
            return True
        return False

    @torch.no_grad()
    def compress_gradient(self, gradient: torch.Tensor) -> torch.Tensor:
        """
        Average over the sequence axis and keep the first
        min(gradient_compression_dim, hidden) columns.

        This is a truncation, not a projection: the selected columns are
        always the leading ones.
        """
        batch = gradient.size(0)
        if not self.enabled:
            return torch.zeros(
                batch, self.config.gradient_compression_dim,
                device=gradient.device, dtype=gradient.dtype,
            )

        grad_avg = gradient.mean(dim=1)
        compress_dim = min(self.config.gradient_compression_dim, gradient.size(-1))
        return grad_avg[:, :compress_dim]

    def get_fast_params(self, state: DualRateState, level: int) -> Optional[torch.Tensor]:
        if 0 <= level < len(state.fast_params):
            return state.fast_params[level]
        return None

    def get_slow_params(self, state: DualRateState, level: int) -> Optional[torch.Tensor]:
        if 0 <= level < len(state.slow_params):
            return state.slow_params[level]
        return None
