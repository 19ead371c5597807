"""
HOPE: hierarchical multi-timescale sequence model

The model threads an explicit carried state (HopeCarry) through every call:

    tokens -> embed -> [memory retrieval] -> level 0 x T_0 -> level 1 x T_1 -> ... -> head

Each hierarchy level l runs its own pre-norm transformer encoder
level_timescales[l] times. On every inner iteration the level's carried
state is added to the (fixed) output of the level below, encoded, and then
passed through self-modification. The final state of a level is written back
into the carry and becomes the input of the next level, so information
flows strictly upward within a call and is carried forward to the next call
through level_states.

After the top level, the memory banks are updated from the final hidden
state and an affine head produces the logits.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

import torch
import torch.nn as nn

from ..config import HopeConfig
from ..memory import ContinuumMemoryState, build_continuum_memory
from .self_modify import SelfModifyState, build_self_modify


@dataclass
class HopeCarry:
    """
    State carried between forward calls of one sequence.

    Owned by the caller. forward() never mutates the carry it is given; it
    returns a new one.
    """

    level_states: List[torch.Tensor]
    memory_state: Optional[ContinuumMemoryState] = None
    self_modify_state: Optional[SelfModifyState] = None
    step_count: int = 0

    def detach(self) -> 'HopeCarry':
        """Cut the carry from the autograd graph (truncated BPTT between steps)."""
        return HopeCarry(
            level_states=[state.detach() for state in self.level_states],
            memory_state=self.memory_state.detach() if self.memory_state is not None else None,
            self_modify_state=(
                self.self_modify_state.detach() if self.self_modify_state is not None else None
            ),
            step_count=self.step_count,
        )


@dataclass
class HopeOutput:
    logits: torch.Tensor
    hidden_states: torch.Tensor


class HopeModel(nn.Module):
    """
    Hierarchical encoder with continuum memory and self-modification.

    Args:
        config: Model configuration. Validated before any parameter is
            allocated; a ValueError is raised on any violated invariant.
    """

    def __init__(self, config: HopeConfig):
        config.validate()
        super().__init__()
        self.config = config
        self.hidden_size = config.hidden_size
        self.embed_scale = 1.0 / math.sqrt(config.hidden_size)

        self.token_embed = nn.Embedding(config.vocab_size, config.hidden_size)
        self.pos_embed = nn.Embedding(config.seq_len, config.hidden_size)

        # One encoder stack per hierarchy level
        self.level_encoders = nn.ModuleList([
            self._build_encoder(config) for _ in range(config.num_levels)
        ])

        self.continuum_memory = build_continuum_memory(config.continuum_mem, config.hidden_size)
        self.self_modify = build_self_modify(config.self_modify, config.hidden_size)

        self.head = nn.Linear(config.hidden_size, config.vocab_size)

        self.apply(self._init_weights)

    @staticmethod
    def _build_encoder(config: HopeConfig) -> nn.TransformerEncoder:
        layer = nn.TransformerEncoderLayer(
            d_model=config.hidden_size,
            nhead=config.num_heads,
            dim_feedforward=config.feedforward_dim(),
            dropout=config.dropout,
            activation='gelu',
            batch_first=True,
            norm_first=True,
        )
        return nn.TransformerEncoder(layer, num_layers=config.num_layers, enable_nested_tensor=False)

    def _init_weights(self, module):
        """Initialize weights."""
        if isinstance(module, nn.Linear):
            torch.nn.init.normal_(module.weight, mean=0.0, std=0.02)
            if module.bias is not None:
                torch.nn.init.zeros_(module.bias)
        elif isinstance(module, nn.Embedding):
            torch.nn.init.normal_(module.weight, mean=0.0, std=0.02)
        elif isinstance(module, nn.LayerNorm):
            torch.nn.init.zeros_(module.bias)
            torch.nn.init.ones_(module.weight)

    def num_encoder_evaluations(self) -> int:
        """Encoder evaluations performed by one forward call."""
        return sum(self.config.level_timescales)

    def initial_carry(self, batch_size: int, device: Optional[torch.device] = None) -> HopeCarry:
        """
        Fresh carried state for a new sequence.

        Args:
            batch_size: Batch size the carry will be used with
            device: Device for the state tensors (defaults to the model's)
        """
        if device is None:
            device = self.head.weight.device
        seq_len = self.config.seq_len

        level_states = [
            torch.zeros(batch_size, seq_len, self.hidden_size, device=device)
            for _ in range(self.config.num_levels)
        ]

        return HopeCarry(
            level_states=level_states,
            memory_state=self.continuum_memory.init_state(batch_size, seq_len, device),
            self_modify_state=self.self_modify.init_state(batch_size, device),
            step_count=0,
        )

    def _check_carry(self, tokens: torch.Tensor, carry: HopeCarry):
        batch_size, seq_len = tokens.shape
        if seq_len > self.config.seq_len:
            raise ValueError(f"Sequence length {seq_len} exceeds configured seq_len {self.config.seq_len}")
        if len(carry.level_states) != self.config.num_levels:
            raise ValueError(
                f"Carry has {len(carry.level_states)} level states, expected {self.config.num_levels}"
            )
        expected = (batch_size, seq_len, self.hidden_size)
        for level, state in enumerate(carry.level_states):
            if tuple(state.shape) != expected:
                raise ValueError(
                    f"Carry level {level} has shape {tuple(state.shape)}, expected {expected}"
                )
        if carry.memory_state is not None:
            for bank in carry.memory_state.banks():
                if tuple(bank.shape) != expected:
                    raise ValueError(f"Memory bank has shape {tuple(bank.shape)}, expected {expected}")
        if carry.self_modify_state is not None and carry.self_modify_state.meta_state.size(0) != batch_size:
            raise ValueError(
                f"Meta-state batch {carry.self_modify_state.meta_state.size(0)} != input batch {batch_size}"
            )

    def embed(self, tokens: torch.Tensor) -> torch.Tensor:
        """Scaled token embedding plus learned positional embedding."""
        seq_len = tokens.size(1)
        positions = torch.arange(0, seq_len, dtype=torch.long, device=tokens.device)
        return self.token_embed(tokens) * self.embed_scale + self.pos_embed(positions)

    def forward(self, tokens: torch.Tensor, carry: HopeCarry) -> Tuple[HopeCarry, HopeOutput]:
        """
        Forward pass.

        Args:
            tokens: Token indices (batch, seq_len)
            carry: State from initial_carry() or from the previous call

        Returns:
            (new_carry, HopeOutput(logits (batch, seq_len, vocab),
                                   hidden_states (batch, seq_len, hidden)))
        """
        self._check_carry(tokens, carry)

        level_states = list(carry.level_states)
        memory_state = carry.memory_state
        sm_state = carry.self_modify_state

        hidden = self.embed(tokens)

        if memory_state is not None:
            hidden = self.continuum_memory.retrieve(memory_state, hidden)

        # Levels run strictly in order; each consumes the final output of the one below
        prev_level_output = hidden
        for level_idx, (encoder, timescale) in enumerate(
            zip(self.level_encoders, self.config.level_timescales)
        ):
            level_state = level_states[level_idx]

            for _ in range(timescale):
                level_input = level_state + prev_level_output
                encoded = encoder(level_input)

                if sm_state is not None:
                    meta_state = self.self_modify.compute_update_rule(encoded, sm_state)
                    sm_state = SelfModifyState(meta_state, sm_state.update_count + 1)
                    level_state = self.self_modify.apply_weight_modification(encoded, meta_state)
                else:
                    level_state = encoded

            level_states[level_idx] = level_state
            prev_level_output = level_state

        if memory_state is not None:
            memory_state = self.continuum_memory.update(memory_state, prev_level_output)

        logits = self.head(prev_level_output)

        new_carry = HopeCarry(
            level_states=level_states,
            memory_state=memory_state,
            self_modify_state=sm_state,
            step_count=carry.step_count + 1,
        )
        return new_carry, HopeOutput(logits=logits, hidden_states=prev_level_output)
