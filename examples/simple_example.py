#!/usr/bin/env python3
"""
Simple example demonstrating the HOPE components.

This script shows:
1. How the continuum memory banks evolve
2. How to use the dual-rate optimizer
3. How to thread the carried state through a small HOPE model
"""

import torch
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from nested_hope.config import HopeConfig, ContinuumMemConfig, DeepOptimizerConfig
from nested_hope.memory import ContinuumMemory
from nested_hope.models import HopeModel
from nested_hope.optimizers import DualRateOptimizer


def example_1_continuum_memory():
    """Example 1: Exponential memory banks."""
    print("=" * 60)
    print("Example 1: Continuum Memory")
    print("=" * 60)

    config = ContinuumMemConfig()
    memory = ContinuumMemory(config, hidden_size=32)
    state = memory.init_state(batch_size=2, seq_len=8)

    print("Bank spans -> alpha:")
    for name, span in zip(('ultra_short', 'short', 'mid', 'long', 'episodic'), config.spans()):
        print(f"  {name:12s} span={span:4d} alpha={memory.compute_alpha(span):.4f}")

    # Feed a constant signal; slow banks approach it slowly
    signal = torch.ones(2, 8, 32)
    for _ in range(16):
        state = memory.update(state, signal)

    print("\nMean bank value after 16 updates of a constant 1.0 signal:")
    print(f"  ultra_short: {state.ultra_short.mean().item():.4f}")
    print(f"  short:       {state.short.mean().item():.4f}")
    print(f"  episodic:    {state.episodic.mean().item():.4f}\n")


def example_2_dual_rate():
    """Example 2: Fast/slow shadow copies."""
    print("=" * 60)
    print("Example 2: Dual-Rate Optimizer")
    print("=" * 60)

    optimizer = DualRateOptimizer(DeepOptimizerConfig(sync_interval=4))
    state = optimizer.init_state(num_levels=2, batch_size=1, seq_len=4, hidden_size=8)

    for step in range(8):
        gradients = [torch.randn(1, 4, 8) for _ in range(2)]
        synced = optimizer.step(state, gradients, learning_rate=0.1)
        if synced:
            print(f"  Step {step + 1}: slow copies synchronized")

    fast = optimizer.get_fast_params(state, 0)
    slow = optimizer.get_slow_params(state, 0)
    print(f"  |fast - slow| after 8 steps: {(fast - slow).abs().mean().item():.4f}\n")


def example_3_hope_model():
    """Example 3: Training a small HOPE model over a carried state."""
    print("=" * 60)
    print("Example 3: HOPE Model")
    print("=" * 60)

    config = HopeConfig(
        hidden_size=64,
        vocab_size=100,
        seq_len=32,
        num_heads=4,
        num_layers=2,
        dropout=0.0,
        num_levels=2,
        level_timescales=(1, 2),
    )
    model = HopeModel(config)

    n_params = sum(p.numel() for p in model.parameters())
    print(f"Created HOPE model with {n_params:,} parameters")
    print(f"  Levels: {config.num_levels}, timescales={list(config.level_timescales)}")
    print(f"  Encoder evaluations per call: {model.num_encoder_evaluations()}")

    batch_size = 4
    carry = model.initial_carry(batch_size)
    optimizer = torch.optim.Adam(model.parameters(), lr=1e-3)

    print(f"\nQuick training (10 steps, carry threaded across steps):")
    for step in range(10):
        tokens = torch.randint(0, 100, (batch_size, config.seq_len))
        targets = torch.roll(tokens, shifts=-1, dims=1)

        carry, output = model(tokens, carry)
        loss = torch.nn.functional.cross_entropy(
            output.logits.reshape(-1, config.vocab_size),
            targets.reshape(-1),
        )

        optimizer.zero_grad()
        loss.backward()
        optimizer.step()

        # Keep the state, drop the graph
        carry = carry.detach()

        if (step + 1) % 2 == 0:
            print(f"  Step {step+1}: Loss = {loss.item():.4f}, carry.step_count = {carry.step_count}")

    print("\n" + "=" * 60)
    print("Examples complete!")
    print("=" * 60)


if __name__ == '__main__':
    example_1_continuum_memory()
    example_2_dual_rate()
    example_3_hope_model()

    print("\nTo train a full model, run:")
    print("  python experiments/train_hope.py train --config examples/config_hope.json")
