"""
Configuration for HOPE models and training.

All configs are frozen dataclasses. They are validated once, when a model
or component is constructed, and never mutated afterwards.

JSON layout used by the training driver:

    {
        "model": {
            "hidden_size": 384,
            ...
            "continuum_mem": {...},
            "self_modify": {...},
            "deep_optimizer": {...}
        },
        "training": {"batch_size": 4, ...}
    }
"""

import json
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union


def _from_dict(cls, data: Dict[str, Any]):
    """Build a dataclass from a dict, rejecting unknown keys."""
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {sorted(unknown)}")
    return cls(**data)


@dataclass(frozen=True)
class ContinuumMemConfig:
    """Spans of the five exponential memory banks."""

    enabled: bool = True
    ultra_short_span: int = 2
    short_span: int = 8
    mid_span: int = 32
    long_span: int = 128
    episodic_span: int = 512

    def spans(self) -> Tuple[int, int, int, int, int]:
        return (
            self.ultra_short_span,
            self.short_span,
            self.mid_span,
            self.long_span,
            self.episodic_span,
        )

    def validate(self):
        if not self.enabled:
            return
        if self.ultra_short_span <= 0:
            raise ValueError(f"ultra_short_span must be > 0, got {self.ultra_short_span}")
        if self.short_span < self.ultra_short_span:
            raise ValueError("short_span must be >= ultra_short_span")
        if self.mid_span < self.short_span:
            raise ValueError("mid_span must be >= short_span")
        if self.long_span < self.mid_span:
            raise ValueError("long_span must be >= mid_span")
        if self.episodic_span < self.long_span:
            raise ValueError("episodic_span must be >= long_span")


@dataclass(frozen=True)
class SelfModifyConfig:
    """
    Self-modification settings.

    Note: meta_lr and update_frequency are carried for completeness but the
    meta-state blend uses fixed coefficients (see models.self_modify).
    """

    enabled: bool = True
    meta_lr: float = 1e-5
    update_frequency: int = 8
    weight_mod_dim: int = 128

    def validate(self):
        if not self.enabled:
            return
        if self.meta_lr <= 0.0:
            raise ValueError(f"meta_lr must be > 0, got {self.meta_lr}")
        if self.update_frequency <= 0:
            raise ValueError(f"update_frequency must be > 0, got {self.update_frequency}")
        if self.weight_mod_dim <= 0:
            raise ValueError(f"weight_mod_dim must be > 0, got {self.weight_mod_dim}")


@dataclass(frozen=True)
class DeepOptimizerConfig:
    """Dual-rate (fast/slow) optimizer settings."""

    enabled: bool = True
    fast_lr_scale: float = 1.0
    slow_lr_scale: float = 0.1
    fast_ema: float = 0.9
    slow_ema: float = 0.99
    sync_interval: int = 64
    gradient_compression_dim: int = 256

    def validate(self):
        if not self.enabled:
            return
        if not 0.0 <= self.fast_ema <= 1.0:
            raise ValueError(f"fast_ema must be within [0, 1], got {self.fast_ema}")
        if not 0.0 <= self.slow_ema <= 1.0:
            raise ValueError(f"slow_ema must be within [0, 1], got {self.slow_ema}")
        if self.sync_interval <= 0:
            raise ValueError(f"sync_interval must be > 0, got {self.sync_interval}")
        if self.fast_lr_scale <= 0.0:
            raise ValueError(f"fast_lr_scale must be > 0, got {self.fast_lr_scale}")
        if self.slow_lr_scale <= 0.0:
            raise ValueError(f"slow_lr_scale must be > 0, got {self.slow_lr_scale}")
        if self.gradient_compression_dim <= 0:
            raise ValueError(
                f"gradient_compression_dim must be > 0, got {self.gradient_compression_dim}"
            )


@dataclass(frozen=True)
class HopeConfig:
    """
    Architecture of a HOPE model.

    Args:
        hidden_size: Model dimension
        vocab_size: Vocabulary size
        seq_len: Sequence length (also the size of the positional table and
            of every carried state)
        num_heads: Attention heads per encoder layer
        num_layers: Encoder layers per hierarchy level
        ff_multiplier: Feed-forward width as a multiple of hidden_size
        dropout: Dropout probability inside the encoders
        num_levels: Number of hierarchy levels
        level_timescales: Inner iterations per level, one entry per level
    """

    hidden_size: int = 384
    vocab_size: int = 512
    seq_len: int = 256
    num_heads: int = 8
    num_layers: int = 4
    ff_multiplier: float = 4.0
    dropout: float = 0.1
    num_levels: int = 3
    level_timescales: Tuple[int, ...] = (1, 4, 16)
    continuum_mem: ContinuumMemConfig = field(default_factory=ContinuumMemConfig)
    self_modify: SelfModifyConfig = field(default_factory=SelfModifyConfig)
    deep_optimizer: DeepOptimizerConfig = field(default_factory=DeepOptimizerConfig)

    def __post_init__(self):
        # Lists from JSON become tuples so the config stays hashable/immutable
        object.__setattr__(self, 'level_timescales', tuple(self.level_timescales))

    def feedforward_dim(self) -> int:
        return int(round(self.hidden_size * self.ff_multiplier))

    def validate(self):
        """Raise ValueError on any violated invariant."""
        for name in ('hidden_size', 'vocab_size', 'seq_len', 'num_heads', 'num_layers', 'num_levels'):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be > 0, got {value}")
        if self.hidden_size % self.num_heads != 0:
            raise ValueError(
                f"hidden_size ({self.hidden_size}) must be divisible by num_heads ({self.num_heads})"
            )
        if not 0.0 <= self.dropout < 1.0:
            raise ValueError(f"dropout must be within [0, 1), got {self.dropout}")
        if self.feedforward_dim() <= 0:
            raise ValueError(f"ff_multiplier gives an empty feed-forward layer: {self.ff_multiplier}")
        if len(self.level_timescales) == 0:
            raise ValueError("level_timescales must not be empty")
        if len(self.level_timescales) != self.num_levels:
            raise ValueError(
                f"level_timescales length {len(self.level_timescales)} != num_levels {self.num_levels}"
            )
        for i, timescale in enumerate(self.level_timescales):
            if timescale <= 0:
                raise ValueError(f"level_timescales[{i}] must be > 0, got {timescale}")

        self.continuum_mem.validate()
        self.self_modify.validate()
        self.deep_optimizer.validate()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HopeConfig':
        data = dict(data)
        if 'continuum_mem' in data:
            data['continuum_mem'] = _from_dict(ContinuumMemConfig, data['continuum_mem'])
        if 'self_modify' in data:
            data['self_modify'] = _from_dict(SelfModifyConfig, data['self_modify'])
        if 'deep_optimizer' in data:
            data['deep_optimizer'] = _from_dict(DeepOptimizerConfig, data['deep_optimizer'])
        return _from_dict(cls, data)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['level_timescales'] = list(self.level_timescales)
        return data


@dataclass(frozen=True)
class TrainingConfig:
    """Settings for the training driver."""

    batch_size: int = 4
    num_steps: int = 1000
    learning_rate: float = 1e-4
    log_every: int = 10
    save_every: int = 0
    checkpoint_dir: str = 'checkpoints'
    resume_from: Optional[str] = None
    max_grad_norm: float = 1.0
    persist_carry: bool = False
    seed: int = 42

    def validate(self):
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be > 0, got {self.batch_size}")
        if self.num_steps < 0:
            raise ValueError(f"num_steps must be >= 0, got {self.num_steps}")
        if self.learning_rate < 0.0:
            raise ValueError(f"Invalid learning rate: {self.learning_rate}")
        if self.log_every <= 0:
            raise ValueError(f"log_every must be > 0, got {self.log_every}")
        if self.save_every < 0:
            raise ValueError(f"save_every must be >= 0, got {self.save_every}")


@dataclass(frozen=True)
class TrainConfig:
    """Model + training configuration, as stored next to checkpoints."""

    model: HopeConfig = field(default_factory=HopeConfig)
    training: TrainingConfig = field(default_factory=TrainingConfig)

    def validate(self):
        self.model.validate()
        self.training.validate()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TrainConfig':
        unknown = set(data) - {'model', 'training'}
        if unknown:
            raise ValueError(f"Unknown TrainConfig keys: {sorted(unknown)}")
        return cls(
            model=HopeConfig.from_dict(data.get('model', {})),
            training=_from_dict(TrainingConfig, data.get('training', {})),
        )

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> 'TrainConfig':
        with open(path, 'r', encoding='utf-8') as fh:
            return cls.from_dict(json.load(fh))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'model': self.model.to_dict(),
            'training': asdict(self.training),
        }
