"""
HOPE Trainer

Drives HopeModel with a primary Adam optimizer:
1. Build (or reuse) the carried state for the batch
2. Forward pass, cross-entropy over flattened (batch * seq_len, vocab) logits
3. Backward pass, gradient clipping, Adam step

When the model's dual-rate optimizer is enabled, the gradients of the loss
with respect to each level's final state are also fed to DualRateOptimizer,
which keeps its own fast/slow shadow copies alongside the primary optimizer.
"""

import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import torch
import torch.nn.functional as F
from tqdm import tqdm

from ..config import TrainConfig
from ..models import HopeModel, HopeCarry
from ..optimizers import DualRateOptimizer
from ..utils.checkpoint import save_checkpoint


@dataclass
class BatchData:
    """Token ids and next-token targets, both (batch, seq_len)."""

    tokens: torch.Tensor
    targets: torch.Tensor

    def to(self, device) -> 'BatchData':
        return BatchData(self.tokens.to(device), self.targets.to(device))


def generate_random_batch(
    batch_size: int,
    seq_len: int,
    vocab_size: int,
    device: Optional[torch.device] = None,
) -> BatchData:
    """
    Deterministic synthetic batch for smoke-testing the training loop.

    Tokens are arange(batch * seq_len) % vocab_size; targets are the tokens
    shifted left by one position with a trailing 0.
    """
    total = batch_size * seq_len
    tokens = (torch.arange(total, dtype=torch.long, device=device) % vocab_size).view(batch_size, seq_len)
    pad = torch.zeros(batch_size, 1, dtype=torch.long, device=device)
    targets = torch.cat([tokens[:, 1:], pad], dim=1)
    return BatchData(tokens, targets)


class HopeTrainer:
    """
    Training driver for HopeModel.

    Args:
        model: The model to train
        config: Model + training configuration
        device: Device to train on
        verbose: Print status banners and per-interval losses
    """

    def __init__(
        self,
        model: HopeModel,
        config: TrainConfig,
        device: str = 'cuda' if torch.cuda.is_available() else 'cpu',
        verbose: bool = True,
    ):
        config.validate()
        if config.model != model.config:
            raise ValueError("config.model does not match the model's own config")
        self.model = model.to(device)
        self.config = config
        self.device = device
        self.verbose = verbose

        self.optimizer = torch.optim.Adam(self.model.parameters(), lr=config.training.learning_rate)

        self.dual_rate = DualRateOptimizer(model.config.deep_optimizer)
        self.dual_rate_state = None

        self.carry: Optional[HopeCarry] = None
        self.step_count = 0
        self.metrics_history: List[Dict[str, float]] = []

    def reset_carry(self):
        """Drop the persisted carry; the next step starts a fresh sequence."""
        self.carry = None

    def _carry_for(self, batch_size: int) -> HopeCarry:
        if not self.config.training.persist_carry:
            return self.model.initial_carry(batch_size, self.device)
        if self.carry is None or self.carry.level_states[0].size(0) != batch_size:
            self.carry = self.model.initial_carry(batch_size, self.device)
        return self.carry

    @staticmethod
    def compute_loss(logits: torch.Tensor, targets: torch.Tensor) -> torch.Tensor:
        vocab_size = logits.size(-1)
        return F.cross_entropy(logits.reshape(-1, vocab_size), targets.reshape(-1))

    def train_step(self, batch: BatchData) -> Dict[str, float]:
        """
        Perform one training step.

        Args:
            batch: Tokens and targets

        Returns:
            Dictionary of metrics for this step
        """
        self.model.train()
        batch = batch.to(self.device)
        batch_size = batch.tokens.size(0)

        carry = self._carry_for(batch_size)
        new_carry, output = self.model(batch.tokens, carry)

        track_levels = self.dual_rate.enabled
        if track_levels:
            for state in new_carry.level_states:
                state.retain_grad()

        loss = self.compute_loss(output.logits, batch.targets)

        self.optimizer.zero_grad()
        loss.backward()

        max_grad_norm = self.config.training.max_grad_norm
        if max_grad_norm > 0:
            torch.nn.utils.clip_grad_norm_(self.model.parameters(), max_grad_norm)

        self.optimizer.step()

        metrics = {
            'loss': loss.item(),
            'step': self.step_count + 1,
        }

        if track_levels:
            metrics['dual_rate_synced'] = float(self._dual_rate_step(new_carry))

        if self.config.training.persist_carry:
            self.carry = new_carry.detach()

        self.step_count += 1
        return metrics

    def _dual_rate_step(self, carry: HopeCarry) -> bool:
        """Feed per-level gradients of the loss to the dual-rate optimizer."""
        levels = carry.level_states
        batch_size, seq_len, hidden = levels[0].shape
        if self.dual_rate_state is None or self.dual_rate_state.fast_params[0].shape != levels[0].shape:
            self.dual_rate_state = self.dual_rate.init_state(
                len(levels), batch_size, seq_len, hidden, device=levels[0].device,
            )
        gradients = [
            state.grad if state.grad is not None else torch.zeros_like(state)
            for state in levels
        ]
        return self.dual_rate.step(
            self.dual_rate_state,
            gradients,
            self.config.training.learning_rate,
        )

    @torch.no_grad()
    def evaluate(self, batches) -> Dict[str, float]:
        """
        Evaluate the model.

        Args:
            batches: Iterable of BatchData

        Returns:
            Average loss and perplexity
        """
        self.model.eval()
        total_loss = 0.0
        num_batches = 0

        for batch in batches:
            batch = batch.to(self.device)
            carry = self.model.initial_carry(batch.tokens.size(0), self.device)
            _, output = self.model(batch.tokens, carry)
            total_loss += self.compute_loss(output.logits, batch.targets).item()
            num_batches += 1

        avg_loss = total_loss / num_batches if num_batches > 0 else 0.0
        return {
            'eval_loss': avg_loss,
            'eval_perplexity': math.exp(min(avg_loss, 50.0)),
        }

    def train(
        self,
        num_steps: Optional[int] = None,
        batch_fn: Optional[Callable[[int], BatchData]] = None,
        start_step: int = 0,
    ) -> List[Dict[str, float]]:
        """
        Full training loop.

        Args:
            num_steps: Number of steps (defaults to training.num_steps)
            batch_fn: Callable returning the batch for a given step
                (defaults to generate_random_batch)
            start_step: Global step to start counting from (for resumed runs)

        Returns:
            Training history, one entry per logging interval
        """
        train_cfg = self.config.training
        model_cfg = self.model.config
        if num_steps is None:
            num_steps = train_cfg.num_steps
        if batch_fn is None:
            def batch_fn(step):
                return generate_random_batch(
                    train_cfg.batch_size, model_cfg.seq_len, model_cfg.vocab_size, self.device,
                )

        self.step_count = start_step
        end_step = start_step + num_steps

        if self.verbose:
            print(f"\n{'='*60}")
            print("HOPE Training")
            print(f"{'='*60}")
            print(f"Steps: {start_step} -> {end_step}")
            print(f"Batch size: {train_cfg.batch_size}")
            print(f"Learning rate: {train_cfg.learning_rate}")
            print(f"Levels: {model_cfg.num_levels}, timescales={list(model_cfg.level_timescales)}")
            print(f"Encoder evaluations per step: {self.model.num_encoder_evaluations()}")
            print(f"Dual-rate optimizer: {self.dual_rate.enabled}")
            print(f"Persist carry: {train_cfg.persist_carry}")
            print(f"Device: {self.device}")
            print(f"{'='*60}\n")

        total_loss = 0.0
        loss_count = 0
        training_start = time.time()

        pbar = tqdm(range(start_step, end_step), desc="Training", disable=not self.verbose)
        for step in pbar:
            metrics = self.train_step(batch_fn(step))
            total_loss += metrics['loss']
            loss_count += 1

            pbar.set_postfix({'loss': f"{metrics['loss']:.4f}"})

            if (step + 1) % train_cfg.log_every == 0:
                elapsed = time.time() - training_start
                log_metrics = {
                    'step': step + 1,
                    'loss': metrics['loss'],
                    'avg_loss': total_loss / loss_count,
                    'steps_per_sec': (step + 1 - start_step) / max(elapsed, 1e-8),
                }
                self.metrics_history.append(log_metrics)
                if self.verbose:
                    pbar.write(
                        f"Step {step + 1}/{end_step}: Loss = {log_metrics['loss']:.6f} "
                        f"(avg: {log_metrics['avg_loss']:.6f}) | "
                        f"Speed: {log_metrics['steps_per_sec']:.2f} steps/s"
                    )
                total_loss = 0.0
                loss_count = 0

            if train_cfg.save_every > 0 and (step + 1) % train_cfg.save_every == 0:
                path = save_checkpoint(self.model, step + 1, self.config, train_cfg.checkpoint_dir)
                if self.verbose:
                    pbar.write(f"  Saved checkpoint: {path}")

        if self.verbose:
            print(f"\n{'='*60}")
            print("Training Complete")
            print(f"Total time: {time.time() - training_start:.2f}s")
            print(f"{'='*60}\n")

        return self.metrics_history
