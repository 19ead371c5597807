"""Data loading utilities."""

import numpy as np
import torch
from torch.utils.data import DataLoader, Dataset


class TokenWindowDataset(Dataset):
    """
    Fixed-length next-token windows cut from one token stream.

    Window i covers stream[i * seq_len : i * seq_len + seq_len + 1]; the
    first seq_len ids are the tokens and the last seq_len ids the targets.
    A trailing remainder shorter than a full window is dropped.
    """

    def __init__(self, token_ids, seq_len: int):
        if seq_len <= 0:
            raise ValueError(f"seq_len must be > 0, got {seq_len}")
        stream = np.asarray(token_ids, dtype=np.int64).reshape(-1)
        num_windows = (len(stream) - 1) // seq_len
        if num_windows <= 0:
            raise ValueError(
                f"Token stream of length {len(stream)} is too short for seq_len {seq_len}"
            )
        self.seq_len = seq_len
        self.stream = stream[: num_windows * seq_len + 1]
        self.num_windows = num_windows

    def __len__(self):
        return self.num_windows

    def __getitem__(self, idx):
        start = idx * self.seq_len
        window = torch.from_numpy(self.stream[start: start + self.seq_len + 1].copy())
        return window[:-1], window[1:]


def get_dataloader(
    dataset_name='wikitext',
    dataset_config='wikitext-103-raw-v1',
    split='train',
    tokenizer_name='gpt2',
    batch_size=8,
    seq_len=256,
    text_column='text',
    num_workers=0,
):
    """
    Create a dataloader of (tokens, targets) batches for language modeling.

    Args:
        dataset_name: Name of the dataset
        dataset_config: Configuration of the dataset
        split: Dataset split ('train', 'validation', 'test')
        tokenizer_name: Name of the tokenizer
        batch_size: Batch size
        seq_len: Window length; must match the model's seq_len
        text_column: Column holding raw text
        num_workers: Number of workers for data loading

    Returns:
        DataLoader yielding (tokens, targets), each (batch, seq_len)
    """
    from datasets import load_dataset
    from transformers import AutoTokenizer

    dataset = load_dataset(dataset_name, dataset_config, split=split)

    tokenizer = AutoTokenizer.from_pretrained(tokenizer_name)

    def tokenize_function(examples):
        return tokenizer(examples[text_column])

    tokenized_dataset = dataset.map(
        tokenize_function,
        batched=True,
        remove_columns=dataset.column_names,
    )

    # Concatenate documents into one stream, separated by EOS when available
    eos = [tokenizer.eos_token_id] if tokenizer.eos_token_id is not None else []
    stream = []
    for ids in tokenized_dataset['input_ids']:
        if ids:
            stream.extend(ids)
            stream.extend(eos)

    windows = TokenWindowDataset(stream, seq_len)

    dataloader = DataLoader(
        windows,
        batch_size=batch_size,
        shuffle=(split == 'train'),
        num_workers=num_workers,
        drop_last=True,
    )

    return dataloader
