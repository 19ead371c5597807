"""Tests for the trainer, checkpoints and data utilities."""

import dataclasses
import json
import math

import pytest
import torch

from nested_hope.config import (
    DeepOptimizerConfig,
    HopeConfig,
    SelfModifyConfig,
    TrainConfig,
    TrainingConfig,
)
from nested_hope.models import HopeModel
from nested_hope.training import BatchData, HopeTrainer, generate_random_batch
from nested_hope.utils import TokenWindowDataset, list_checkpoints, load_checkpoint, save_checkpoint


def make_config(deep_optimizer=None, **training):
    model = HopeConfig(
        hidden_size=16,
        vocab_size=20,
        seq_len=8,
        num_heads=2,
        num_layers=1,
        dropout=0.0,
        num_levels=2,
        level_timescales=(1, 2),
        self_modify=SelfModifyConfig(weight_mod_dim=8),
        deep_optimizer=deep_optimizer or DeepOptimizerConfig(gradient_compression_dim=8),
    )
    params = dict(batch_size=2, num_steps=4, learning_rate=1e-3, log_every=2)
    params.update(training)
    return TrainConfig(model=model, training=TrainingConfig(**params))


def make_trainer(config):
    torch.manual_seed(0)
    return HopeTrainer(HopeModel(config.model), config, device='cpu', verbose=False)


def test_generate_random_batch():
    batch = generate_random_batch(batch_size=2, seq_len=4, vocab_size=5)

    assert batch.tokens.tolist() == [[0, 1, 2, 3], [4, 0, 1, 2]]
    assert batch.targets.tolist() == [[1, 2, 3, 0], [0, 1, 2, 0]]
    assert batch.tokens.dtype == torch.long


def test_train_step():
    config = make_config()
    trainer = make_trainer(config)
    before = trainer.model.head.weight.detach().clone()

    metrics = trainer.train_step(generate_random_batch(2, 8, 20))

    assert math.isfinite(metrics['loss'])
    assert metrics['step'] == 1
    assert trainer.step_count == 1
    assert not torch.equal(before, trainer.model.head.weight)


def test_train_step_drives_dual_rate_optimizer():
    config = make_config(deep_optimizer=DeepOptimizerConfig(sync_interval=1, gradient_compression_dim=8))
    trainer = make_trainer(config)

    metrics = trainer.train_step(generate_random_batch(2, 8, 20))

    assert metrics['dual_rate_synced'] == 1.0
    state = trainer.dual_rate_state
    assert state.step_count == 1
    assert len(state.fast_params) == 2
    assert state.fast_params[0].shape == (2, 8, 16)
    assert torch.count_nonzero(state.fast_params[-1]) > 0
    for level in range(2):
        assert torch.equal(state.slow_params[level], state.fast_ema[level])


def test_train_step_without_dual_rate():
    config = make_config(deep_optimizer=DeepOptimizerConfig(enabled=False))
    trainer = make_trainer(config)

    metrics = trainer.train_step(generate_random_batch(2, 8, 20))

    assert 'dual_rate_synced' not in metrics
    assert trainer.dual_rate_state is None


def test_fresh_carry_by_default():
    trainer = make_trainer(make_config())

    trainer.train_step(generate_random_batch(2, 8, 20))

    assert trainer.carry is None


def test_persist_carry():
    trainer = make_trainer(make_config(persist_carry=True))
    batch = generate_random_batch(2, 8, 20)

    trainer.train_step(batch)
    trainer.train_step(batch)

    assert trainer.carry.step_count == 2
    assert not trainer.carry.level_states[0].requires_grad
    assert trainer.carry.self_modify_state.update_count == 6

    trainer.reset_carry()
    assert trainer.carry is None


def test_train_loop_history():
    trainer = make_trainer(make_config(num_steps=4, log_every=2))

    history = trainer.train()

    assert [entry['step'] for entry in history] == [2, 4]
    for entry in history:
        assert math.isfinite(entry['avg_loss'])
        assert entry['steps_per_sec'] > 0


def test_train_loop_with_batch_fn_and_start_step():
    trainer = make_trainer(make_config(log_every=1))
    seen = []

    def batch_fn(step):
        seen.append(step)
        return generate_random_batch(2, 8, 20)

    history = trainer.train(num_steps=3, batch_fn=batch_fn, start_step=10)

    assert seen == [10, 11, 12]
    assert [entry['step'] for entry in history] == [11, 12, 13]
    assert trainer.step_count == 13


def test_evaluate():
    trainer = make_trainer(make_config())
    batches = [generate_random_batch(2, 8, 20) for _ in range(3)]

    metrics = trainer.evaluate(batches)

    assert metrics['eval_loss'] > 0
    assert math.isclose(metrics['eval_perplexity'], math.exp(metrics['eval_loss']), rel_tol=1e-6)
    assert trainer.evaluate([]) == {'eval_loss': 0.0, 'eval_perplexity': 1.0}


def test_trainer_rejects_mismatched_model_config():
    config = make_config()
    other = dataclasses.replace(config.model, num_levels=3, level_timescales=(1, 1, 1))

    with pytest.raises(ValueError):
        HopeTrainer(HopeModel(other), config, device='cpu', verbose=False)


def test_batch_data_to():
    batch = BatchData(torch.zeros(1, 2, dtype=torch.long), torch.ones(1, 2, dtype=torch.long))
    moved = batch.to('cpu')

    assert torch.equal(moved.tokens, batch.tokens)
    assert torch.equal(moved.targets, batch.targets)


def test_checkpoint_round_trip(tmp_path):
    config = make_config()
    torch.manual_seed(0)
    model = HopeModel(config.model)

    path = save_checkpoint(model, step=7, config=config, checkpoint_dir=tmp_path)

    assert path.suffix == '.json'
    metadata = json.loads(path.read_text())
    assert metadata['step'] == 7
    assert (tmp_path / metadata['model_file']).is_file()

    loaded, step, loaded_config = load_checkpoint(path)

    assert step == 7
    assert loaded_config == config
    for name, tensor in model.state_dict().items():
        assert torch.equal(tensor, loaded.state_dict()[name])


def test_trainer_saves_checkpoints(tmp_path):
    trainer = make_trainer(make_config(num_steps=4, save_every=2, checkpoint_dir=str(tmp_path)))

    trainer.train()

    checkpoints = list_checkpoints(tmp_path)
    assert [step for _, step, _ in checkpoints] == [2, 4]


def test_list_checkpoints_missing_or_foreign_files(tmp_path):
    assert list_checkpoints(tmp_path / 'missing') == []

    (tmp_path / 'notes.json').write_text('not json')
    (tmp_path / 'other.json').write_text(json.dumps({'name': 'x'}))
    assert list_checkpoints(tmp_path) == []


def test_load_missing_checkpoint(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_checkpoint(tmp_path / 'checkpoint_step_1_ts_0.json')


def test_token_window_dataset():
    dataset = TokenWindowDataset(list(range(10)), seq_len=3)

    assert len(dataset) == 3
    tokens, targets = dataset[0]
    assert tokens.tolist() == [0, 1, 2]
    assert targets.tolist() == [1, 2, 3]
    tokens, targets = dataset[2]
    assert tokens.tolist() == [6, 7, 8]
    assert targets.tolist() == [7, 8, 9]


def test_token_window_dataset_too_short():
    with pytest.raises(ValueError):
        TokenWindowDataset([1, 2, 3], seq_len=3)
