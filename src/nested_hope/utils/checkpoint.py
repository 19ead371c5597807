"""
Checkpointing for HOPE models.

A checkpoint is a pair of files in the checkpoint directory:
- checkpoint_step_{step}_ts_{timestamp}_model.pt: model state_dict (torch.save)
- checkpoint_step_{step}_ts_{timestamp}.json: step, config, model file, timestamp

The carried state (HopeCarry) is owned by the caller and is not saved.
"""

import json
import time
from pathlib import Path
from typing import List, Tuple, Union

import torch

from ..config import TrainConfig
from ..models import HopeModel


PathLike = Union[str, Path]


def save_checkpoint(
    model: HopeModel,
    step: int,
    config: TrainConfig,
    checkpoint_dir: PathLike,
) -> Path:
    """
    Save model weights and checkpoint metadata.

    Returns:
        Path to the metadata JSON file
    """
    checkpoint_dir = Path(checkpoint_dir)
    checkpoint_dir.mkdir(parents=True, exist_ok=True)

    timestamp = int(time.time())
    checkpoint_name = f"checkpoint_step_{step}_ts_{timestamp}"

    model_file = f"{checkpoint_name}_model.pt"
    torch.save(model.state_dict(), checkpoint_dir / model_file)

    metadata = {
        'step': step,
        'config': config.to_dict(),
        'model_file': model_file,
        'timestamp': timestamp,
    }
    metadata_path = checkpoint_dir / f"{checkpoint_name}.json"
    with open(metadata_path, 'w', encoding='utf-8') as fh:
        json.dump(metadata, fh, indent=2)

    return metadata_path


def load_checkpoint(
    checkpoint_path: PathLike,
    device: Union[str, torch.device] = 'cpu',
) -> Tuple[HopeModel, int, TrainConfig]:
    """
    Rebuild a model from its metadata file and load the saved weights.

    Returns:
        (model, step, config)
    """
    checkpoint_path = Path(checkpoint_path)
    if not checkpoint_path.is_file():
        raise FileNotFoundError(f"Checkpoint file not found: {checkpoint_path}")

    with open(checkpoint_path, 'r', encoding='utf-8') as fh:
        metadata = json.load(fh)

    config = TrainConfig.from_dict(metadata['config'])
    model_path = checkpoint_path.parent / metadata['model_file']
    if not model_path.is_file():
        raise FileNotFoundError(f"Model weights not found: {model_path}")

    model = HopeModel(config.model)
    state_dict = torch.load(model_path, map_location=device, weights_only=True)
    model.load_state_dict(state_dict)
    model.to(device)

    return model, metadata['step'], config


def list_checkpoints(checkpoint_dir: PathLike) -> List[Tuple[Path, int, int]]:
    """
    List checkpoints in a directory as (metadata_path, step, timestamp),
    sorted by step. Files that are not checkpoint metadata are skipped.
    """
    checkpoint_dir = Path(checkpoint_dir)
    if not checkpoint_dir.exists():
        return []

    checkpoints = []
    for path in checkpoint_dir.glob('*.json'):
        try:
            with open(path, 'r', encoding='utf-8') as fh:
                metadata = json.load(fh)
            checkpoints.append((path, int(metadata['step']), int(metadata['timestamp'])))
        except (OSError, ValueError, KeyError, TypeError):
            continue

    checkpoints.sort(key=lambda item: item[1])
    return checkpoints
