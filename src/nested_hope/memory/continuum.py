"""
Continuum Memory: exponential memory banks at five timescales.

Each bank is a running summary of the model's final hidden state:

    ultra_short <- h                                  (hard overwrite)
    bank        <- bank * (1 - alpha) + h * alpha     alpha = clamp(1 / span, 0, 1)

Larger spans give smaller alphas and therefore slower-changing summaries.
Retrieval lets every query position attend jointly over all five banks,
concatenated along the sequence axis, and adds the result back to the query.
"""

import math
from dataclasses import dataclass
from typing import Optional

import torch
import torch.nn as nn
import torch.nn.functional as F

from ..config import ContinuumMemConfig


BANK_NAMES = ('ultra_short', 'short', 'mid', 'long', 'episodic')


@dataclass
class ContinuumMemoryState:
    """Five same-shaped banks, each (batch, seq_len, hidden)."""

    ultra_short: torch.Tensor
    short: torch.Tensor
    mid: torch.Tensor
    long: torch.Tensor
    episodic: torch.Tensor

    def banks(self):
        return [getattr(self, name) for name in BANK_NAMES]

    def detach(self) -> 'ContinuumMemoryState':
        return ContinuumMemoryState(*(bank.detach() for bank in self.banks()))


class ContinuumMemory(nn.Module):
    """
    Multi-span exponential memory with attention-based retrieval.

    Args:
        config: Memory spans (must be enabled, see build_continuum_memory)
        hidden_size: Model dimension
    """

    def __init__(self, config: ContinuumMemConfig, hidden_size: int):
        config.validate()
        super().__init__()
        self.config = config
        self.hidden_size = hidden_size

        self.query_proj = nn.Linear(hidden_size, hidden_size)
        self.key_proj = nn.Linear(hidden_size, hidden_size)
        self.value_proj = nn.Linear(hidden_size, hidden_size)
        self.norm = nn.LayerNorm(hidden_size)

    def init_state(
        self,
        batch_size: int,
        seq_len: int,
        device: Optional[torch.device] = None,
    ) -> ContinuumMemoryState:
        """All banks start at zero."""
        shape = (batch_size, seq_len, self.hidden_size)
        return ContinuumMemoryState(*(torch.zeros(shape, device=device) for _ in BANK_NAMES))

    @staticmethod
    def compute_alpha(span: int) -> float:
        if span == 0:
            return 1.0
        return min(max(1.0 / span, 0.0), 1.0)

    @staticmethod
    def _ema(old: torch.Tensor, new: torch.Tensor, alpha: float) -> torch.Tensor:
        return old * (1.0 - alpha) + new * alpha

    def update(self, state: ContinuumMemoryState, new_hidden: torch.Tensor) -> ContinuumMemoryState:
        """
        Fold a new hidden state into every bank.

        Args:
            state: Current banks
            new_hidden: Final hidden state of the forward pass (batch, seq_len, hidden)

        Returns:
            Updated banks (the input state is left untouched)
        """
        cfg = self.config
        return ContinuumMemoryState(
            ultra_short=new_hidden,
            short=self._ema(state.short, new_hidden, self.compute_alpha(cfg.short_span)),
            mid=self._ema(state.mid, new_hidden, self.compute_alpha(cfg.mid_span)),
            long=self._ema(state.long, new_hidden, self.compute_alpha(cfg.long_span)),
            episodic=self._ema(state.episodic, new_hidden, self.compute_alpha(cfg.episodic_span)),
        )

    def retrieve(self, state: ContinuumMemoryState, query: torch.Tensor) -> torch.Tensor:
        """
        Cross-attend from query positions to all memory banks.

        Args:
            state: Current banks
            query: Hidden states (batch, seq_len, hidden)

        Returns:
            query + attended memory, same shape as query
        """
        hidden = query.size(-1)

        q = self.norm(self.query_proj(query))

        # (batch, 5 * mem_len, hidden)
        memory = torch.cat(state.banks(), dim=1)
        k = self.key_proj(memory)
        v = self.value_proj(memory)

        scores = torch.einsum('bqd,bmd->bqm', q, k) / math.sqrt(hidden)
        attn = F.softmax(scores, dim=-1)
        attended = torch.einsum('bqm,bmd->bqd', attn, v)

        return query + attended


class NullContinuumMemory(nn.Module):
    """Disabled memory: no state, identity retrieval, no-op update."""

    def __init__(self, config: ContinuumMemConfig, hidden_size: int):
        super().__init__()
        self.config = config
        self.hidden_size = hidden_size

    def init_state(self, batch_size: int, seq_len: int, device: Optional[torch.device] = None):
        return None

    @staticmethod
    def compute_alpha(span: int) -> float:
        return ContinuumMemory.compute_alpha(span)

    def update(self, state, new_hidden: torch.Tensor):
        return state

    def retrieve(self, state, query: torch.Tensor) -> torch.Tensor:
        return query


def build_continuum_memory(config: ContinuumMemConfig, hidden_size: int) -> nn.Module:
    """Return the enabled or disabled memory implementation for config."""
    if config.enabled:
        return ContinuumMemory(config, hidden_size)
    return NullContinuumMemory(config, hidden_size)
