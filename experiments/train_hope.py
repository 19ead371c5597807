#!/usr/bin/env python3
"""
Train a HOPE model from a JSON configuration.

Example usage:
    # Synthetic data
    python experiments/train_hope.py train --config examples/config_hope.json

    # HF dataset, tokenized with a pretrained tokenizer
    python experiments/train_hope.py train --config cfg.json --dataset wikitext \
        --dataset_config wikitext-2-raw-v1 --tokenizer gpt2

    # Evaluate a saved checkpoint on synthetic data
    python experiments/train_hope.py eval --checkpoint checkpoints/checkpoint_step_100_ts_0.json
"""

import argparse
import sys
import time
from pathlib import Path

import torch

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from nested_hope.config import TrainConfig
from nested_hope.models import HopeModel
from nested_hope.training import HopeTrainer, BatchData, generate_random_batch
from nested_hope.utils import get_dataloader, load_checkpoint, list_checkpoints

# Optional imports
try:
    import wandb
    HAS_WANDB = True
except ImportError:
    HAS_WANDB = False


def parse_args():
    parser = argparse.ArgumentParser(description='HOPE model training CLI')
    subparsers = parser.add_subparsers(dest='command', required=True)

    train = subparsers.add_parser('train', help='Train the HOPE model')
    train.add_argument('--config', type=str, required=True, help='Path to configuration JSON file')
    train.add_argument('--dataset', type=str, default=None,
                       help='HF dataset name (default: synthetic data)')
    train.add_argument('--dataset_config', type=str, default=None)
    train.add_argument('--tokenizer', type=str, default='gpt2')
    train.add_argument('--device', type=str, default='cuda' if torch.cuda.is_available() else 'cpu')
    train.add_argument('--wandb', action='store_true', help='Use Weights & Biases')
    train.add_argument('--project_name', type=str, default='nested-hope')

    evaluate = subparsers.add_parser('eval', help='Evaluate a checkpoint')
    evaluate.add_argument('--checkpoint', type=str, required=True, help='Checkpoint metadata JSON')
    evaluate.add_argument('--num_batches', type=int, default=10)
    evaluate.add_argument('--device', type=str, default='cuda' if torch.cuda.is_available() else 'cpu')

    return parser.parse_args()


def build_batch_fn(args, config: TrainConfig):
    """Return a step -> BatchData callable for the configured data source."""
    train_cfg = config.training
    model_cfg = config.model

    if args.dataset is None:
        def random_batch(step):
            return generate_random_batch(train_cfg.batch_size, model_cfg.seq_len, model_cfg.vocab_size)
        return random_batch

    loader = get_dataloader(
        dataset_name=args.dataset,
        dataset_config=args.dataset_config,
        split='train',
        tokenizer_name=args.tokenizer,
        batch_size=train_cfg.batch_size,
        seq_len=model_cfg.seq_len,
    )
    iterator = iter(loader)

    def dataset_batch(step):
        nonlocal iterator
        try:
            tokens, targets = next(iterator)
        except StopIteration:
            iterator = iter(loader)
            tokens, targets = next(iterator)
        if int(tokens.max()) >= model_cfg.vocab_size:
            raise ValueError(
                f"Token id {int(tokens.max())} exceeds model vocab_size {model_cfg.vocab_size}"
            )
        return BatchData(tokens, targets)

    return dataset_batch


def train_command(args):
    print(f"Loading configuration from: {args.config}")
    config = TrainConfig.from_json(args.config)
    config.validate()
    train_cfg = config.training
    model_cfg = config.model

    torch.manual_seed(train_cfg.seed)

    if args.wandb:
        if not HAS_WANDB:
            raise ImportError("Please install wandb: pip install nested-hope[wandb]")
        wandb.init(project=args.project_name, config=config.to_dict())

    print(f"Model config: hidden_size={model_cfg.hidden_size}, "
          f"vocab_size={model_cfg.vocab_size}, seq_len={model_cfg.seq_len}")
    print(f"Training config: batch_size={train_cfg.batch_size}, "
          f"num_steps={train_cfg.num_steps}, learning_rate={train_cfg.learning_rate}")

    if train_cfg.resume_from is not None:
        print(f"Resuming training from checkpoint: {train_cfg.resume_from}")
        model, start_step, loaded_config = load_checkpoint(train_cfg.resume_from, args.device)
        if loaded_config.model != model_cfg:
            raise ValueError("Checkpoint model config doesn't match current config")
        print(f"Resumed from step {start_step}")
    else:
        checkpoints = list_checkpoints(train_cfg.checkpoint_dir)
        if checkpoints:
            print(f"Found {len(checkpoints)} existing checkpoint(s) in {train_cfg.checkpoint_dir}")
            print(f"Latest checkpoint at step: {checkpoints[-1][1]}")
            print("Starting new training (set training.resume_from to continue)")

        print("Initializing HOPE model...")
        start = time.time()
        model = HopeModel(model_cfg)
        print(f"Model initialized in {time.time() - start:.2f}s")
        start_step = 0

    n_params = sum(p.numel() for p in model.parameters() if p.requires_grad)
    print(f"Number of parameters: {n_params / 1e6:.2f}M")

    trainer = HopeTrainer(model, config, device=args.device)
    history = trainer.train(batch_fn=build_batch_fn(args, config), start_step=start_step)

    if args.wandb:
        for entry in history:
            wandb.log(entry)

    if history:
        print(f"Final average loss: {history[-1]['avg_loss']:.4f}")


def eval_command(args):
    model, step, config = load_checkpoint(args.checkpoint, args.device)
    print(f"Loaded checkpoint from step {step}")

    trainer = HopeTrainer(model, config, device=args.device, verbose=False)
    batches = [
        generate_random_batch(config.training.batch_size, config.model.seq_len, config.model.vocab_size)
        for _ in range(args.num_batches)
    ]
    metrics = trainer.evaluate(batches)
    print(f"Eval Loss: {metrics['eval_loss']:.4f}, Perplexity: {metrics['eval_perplexity']:.2f}")


def main():
    args = parse_args()
    if args.command == 'train':
        train_command(args)
    else:
        eval_command(args)


if __name__ == '__main__':
    main()
