"""
Self-modification: a meta-network that perturbs hidden representations.

Two small networks work together:
1. MetaNetwork reads the first sequence position and produces an update
   rule, which is blended into a per-sequence meta-state:
       meta' = 0.9 * meta + 0.1 * tanh(MLP(h[:, 0, :]))
2. WeightModNetwork conditions on the meta-state to produce a residual
   perturbation of every position:
       h' = LayerNorm(h + 0.1 * out(ReLU(hid(ReLU(in(h)) + meta))))

The blend and residual coefficients are fixed module constants, not
configuration. SelfModifyConfig.meta_lr and update_frequency are not read
by the update rule; should_update() exposes the frequency check for callers
that want to gate on it.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

import torch
import torch.nn as nn
import torch.nn.functional as F
from einops import repeat

from ..config import SelfModifyConfig


# Not user-tunable
META_STATE_DECAY = 0.9
META_UPDATE_WEIGHT = 0.1
WEIGHT_MOD_SCALE = 0.1


@dataclass
class SelfModifyState:
    """Evolving meta-state (batch, weight_mod_dim) and number of updates so far."""

    meta_state: torch.Tensor
    update_count: int = 0

    def detach(self) -> 'SelfModifyState':
        return SelfModifyState(self.meta_state.detach(), self.update_count)


class MetaNetwork(nn.Module):
    """hidden -> meta_dim update rule (ReLU, ReLU, tanh)."""

    def __init__(self, hidden_size: int, meta_dim: int):
        super().__init__()
        self.layer1 = nn.Linear(hidden_size, meta_dim)
        self.layer2 = nn.Linear(meta_dim, meta_dim)
        self.layer3 = nn.Linear(meta_dim, meta_dim)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        x = F.relu(self.layer1(x))
        x = F.relu(self.layer2(x))
        return torch.tanh(self.layer3(x))


class WeightModNetwork(nn.Module):
    """Meta-state conditioned perturbation of hidden states."""

    def __init__(self, hidden_size: int, meta_dim: int):
        super().__init__()
        self.input_proj = nn.Linear(hidden_size, meta_dim)
        self.hidden = nn.Linear(meta_dim, meta_dim)
        self.output_proj = nn.Linear(meta_dim, hidden_size)

    def forward(self, x: torch.Tensor, meta_state: torch.Tensor) -> torch.Tensor:
        seq_len = x.size(1)
        h = F.relu(self.input_proj(x))
        h = h + repeat(meta_state, 'b d -> b s d', s=seq_len)
        h = F.relu(self.hidden(h))
        return self.output_proj(h)


class GradientCompressor(nn.Module):
    """
    hidden <-> meta_dim projections used by compress_gradients and
    decompress_gradients. Not on the forward path; these parameters only
    receive gradients when a caller uses them.
    """

    def __init__(self, hidden_size: int, meta_dim: int):
        super().__init__()
        self.compress = nn.Linear(hidden_size, meta_dim)
        self.decompress = nn.Linear(meta_dim, hidden_size)


class SelfModifyModule(nn.Module):
    """
    Meta-learned self-modification of hidden representations.

    Args:
        config: Self-modification settings (must be enabled, see build_self_modify)
        hidden_size: Model dimension
    """

    def __init__(self, config: SelfModifyConfig, hidden_size: int):
        config.validate()
        super().__init__()
        self.config = config
        self.hidden_size = hidden_size
        self.meta_dim = config.weight_mod_dim

        self.meta_network = MetaNetwork(hidden_size, self.meta_dim)
        self.weight_mod_network = WeightModNetwork(hidden_size, self.meta_dim)
        self.gradient_compressor = GradientCompressor(hidden_size, self.meta_dim)
        self.norm = nn.LayerNorm(hidden_size)

    def init_state(self, batch_size: int, device: Optional[torch.device] = None) -> SelfModifyState:
        return SelfModifyState(
            meta_state=torch.zeros(batch_size, self.meta_dim, device=device),
            update_count=0,
        )

    def compute_update_rule(self, hidden: torch.Tensor, state: SelfModifyState) -> torch.Tensor:
        """
        Derive the next meta-state from the first position of hidden.

        Args:
            hidden: Encoded hidden states (batch, seq_len, hidden)
            state: Current self-modification state

        Returns:
            New meta-state (batch, weight_mod_dim)
        """
        update_rule = self.meta_network(hidden[:, 0, :])
        return state.meta_state * META_STATE_DECAY + update_rule * META_UPDATE_WEIGHT

    def apply_weight_modification(self, hidden: torch.Tensor, meta_state: torch.Tensor) -> torch.Tensor:
        """Residual, meta-state conditioned perturbation followed by LayerNorm."""
        weight_mod = self.weight_mod_network(hidden, meta_state)
        return self.norm(hidden + weight_mod * WEIGHT_MOD_SCALE)

    def compress_gradients(self, gradients: torch.Tensor) -> torch.Tensor:
        """(batch, seq_len, hidden) -> (batch, weight_mod_dim) via mean over sequence."""
        grad_avg = gradients.mean(dim=1)
        return torch.tanh(self.gradient_compressor.compress(grad_avg))

    def decompress_gradients(self, compressed: torch.Tensor, target_shape: Sequence[int]) -> torch.Tensor:
        """Inverse of compress_gradients, broadcast over the sequence axis."""
        batch, seq_len, hidden = target_shape
        decompressed = self.gradient_compressor.decompress(compressed)
        return repeat(decompressed, 'b d -> b s d', s=seq_len).reshape(batch, seq_len, hidden)

    def should_update(self, state: SelfModifyState) -> bool:
        return state.update_count % self.config.update_frequency == 0


class NullSelfModify(nn.Module):
    """Disabled self-modification: zero meta-state, identity modification."""

    def __init__(self, config: SelfModifyConfig, hidden_size: int):
        super().__init__()
        self.config = config
        self.hidden_size = hidden_size
        self.meta_dim = config.weight_mod_dim

    def init_state(self, batch_size: int, device: Optional[torch.device] = None):
        return None

    def compute_update_rule(self, hidden: torch.Tensor, state=None) -> torch.Tensor:
        return torch.zeros(hidden.size(0), self.meta_dim, device=hidden.device, dtype=hidden.dtype)

    def apply_weight_modification(self, hidden: torch.Tensor, meta_state=None) -> torch.Tensor:
        return hidden

    def compress_gradients(self, gradients: torch.Tensor) -> torch.Tensor:
        return torch.zeros(gradients.size(0), self.meta_dim, device=gradients.device, dtype=gradients.dtype)

    def decompress_gradients(self, compressed: torch.Tensor, target_shape: Sequence[int]) -> torch.Tensor:
        return torch.zeros(tuple(target_shape), device=compressed.device, dtype=compressed.dtype)

    def should_update(self, state=None) -> bool:
        return False


def build_self_modify(config: SelfModifyConfig, hidden_size: int) -> nn.Module:
    """Return the enabled or disabled self-modification implementation."""
    if config.enabled:
        return SelfModifyModule(config, hidden_size)
    return NullSelfModify(config, hidden_size)
