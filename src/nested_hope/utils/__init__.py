"""Utility functions for HOPE."""

from .checkpoint import save_checkpoint, load_checkpoint, list_checkpoints
from .data import get_dataloader, TokenWindowDataset

__all__ = [
    "save_checkpoint",
    "load_checkpoint",
    "list_checkpoints",
    "get_dataloader",
    "TokenWindowDataset",
]
