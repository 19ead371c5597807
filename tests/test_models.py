"""Tests for the HOPE model."""

import pytest
import torch

from nested_hope.config import (
    ContinuumMemConfig,
    DeepOptimizerConfig,
    HopeConfig,
    SelfModifyConfig,
)
from nested_hope.memory import ContinuumMemoryState, NullContinuumMemory
from nested_hope.models import HopeCarry, HopeModel, NullSelfModify, SelfModifyState


def small_config(**overrides):
    params = dict(
        hidden_size=16,
        vocab_size=20,
        seq_len=6,
        num_heads=2,
        num_layers=1,
        dropout=0.0,
        num_levels=2,
        level_timescales=(2, 3),
        self_modify=SelfModifyConfig(weight_mod_dim=8),
        deep_optimizer=DeepOptimizerConfig(gradient_compression_dim=8),
    )
    params.update(overrides)
    return HopeConfig(**params)


def minimal_config():
    return HopeConfig(
        hidden_size=4,
        vocab_size=10,
        seq_len=3,
        num_heads=1,
        num_layers=1,
        num_levels=1,
        level_timescales=(1,),
        continuum_mem=ContinuumMemConfig(enabled=False),
        self_modify=SelfModifyConfig(enabled=False),
        deep_optimizer=DeepOptimizerConfig(enabled=False),
    )


def test_minimal_forward():
    """Single level, single iteration, every auxiliary component disabled."""
    torch.manual_seed(0)
    model = HopeModel(minimal_config())
    carry = model.initial_carry(batch_size=1)
    tokens = torch.tensor([[1, 2, 3]])

    new_carry, output = model(tokens, carry)

    assert output.logits.shape == (1, 3, 10)
    assert output.hidden_states.shape == (1, 3, 4)
    assert len(new_carry.level_states) == 1
    assert new_carry.level_states[0].shape == (1, 3, 4)
    assert new_carry.step_count == 1
    assert new_carry.memory_state is None
    assert new_carry.self_modify_state is None
    assert isinstance(model.continuum_memory, NullContinuumMemory)
    assert isinstance(model.self_modify, NullSelfModify)


def test_initial_carry():
    model = HopeModel(small_config())
    carry = model.initial_carry(batch_size=3)

    assert len(carry.level_states) == 2
    for state in carry.level_states:
        assert state.shape == (3, 6, 16)
        assert torch.count_nonzero(state) == 0
    assert isinstance(carry.memory_state, ContinuumMemoryState)
    for bank in carry.memory_state.banks():
        assert bank.shape == (3, 6, 16)
    assert isinstance(carry.self_modify_state, SelfModifyState)
    assert carry.self_modify_state.meta_state.shape == (3, 8)
    assert carry.self_modify_state.update_count == 0
    assert carry.step_count == 0


def test_forward_shapes_with_all_components():
    torch.manual_seed(0)
    model = HopeModel(small_config())
    tokens = torch.randint(0, 20, (2, 6))

    new_carry, output = model(tokens, model.initial_carry(batch_size=2))

    assert output.logits.shape == (2, 6, 20)
    assert output.hidden_states.shape == (2, 6, 16)
    assert torch.isfinite(output.logits).all()
    for state in new_carry.level_states:
        assert state.shape == (2, 6, 16)
    assert new_carry.self_modify_state.meta_state.shape == (2, 8)


def test_encoder_evaluation_order():
    """Level l runs level_timescales[l] times, levels strictly in order."""
    model = HopeModel(small_config(num_levels=3, level_timescales=(2, 1, 3)))
    calls = []
    for level, encoder in enumerate(model.level_encoders):
        encoder.register_forward_hook(lambda module, inputs, output, level=level: calls.append(level))

    tokens = torch.randint(0, 20, (1, 6))
    model(tokens, model.initial_carry(batch_size=1))

    assert calls == [0, 0, 1, 2, 2, 2]
    assert len(calls) == model.num_encoder_evaluations()


def test_self_modify_update_count():
    """Each encoder evaluation advances the meta-state once."""
    model = HopeModel(small_config())
    tokens = torch.randint(0, 20, (1, 6))

    carry = model.initial_carry(batch_size=1)
    carry, _ = model(tokens, carry)
    assert carry.self_modify_state.update_count == 5

    carry, _ = model(tokens, carry)
    assert carry.self_modify_state.update_count == 10
    assert carry.step_count == 2


def test_forward_does_not_mutate_carry():
    model = HopeModel(small_config())
    carry = model.initial_carry(batch_size=2)
    tokens = torch.randint(0, 20, (2, 6))

    new_carry, _ = model(tokens, carry)

    assert new_carry is not carry
    assert carry.step_count == 0
    assert carry.self_modify_state.update_count == 0
    for state in carry.level_states:
        assert torch.count_nonzero(state) == 0
    for bank in carry.memory_state.banks():
        assert torch.count_nonzero(bank) == 0


def test_memory_updated_from_final_hidden_state():
    model = HopeModel(small_config())
    tokens = torch.randint(0, 20, (2, 6))

    new_carry, output = model(tokens, model.initial_carry(batch_size=2))

    assert torch.equal(new_carry.memory_state.ultra_short, output.hidden_states)
    assert torch.allclose(new_carry.memory_state.episodic, output.hidden_states / 512)


def test_lower_levels_ignore_higher_level_state():
    """Information flows upward only: level 0 never sees level 1's carry."""
    torch.manual_seed(0)
    model = HopeModel(small_config())
    model.eval()
    tokens = torch.randint(0, 20, (1, 6))

    carry_a = model.initial_carry(batch_size=1)
    carry_b = model.initial_carry(batch_size=1)
    carry_b.level_states[1] = torch.randn(1, 6, 16)

    with torch.no_grad():
        out_a, _ = model(tokens, carry_a)
        out_b, _ = model(tokens, carry_b)

    assert torch.allclose(out_a.level_states[0], out_b.level_states[0])
    assert not torch.allclose(out_a.level_states[1], out_b.level_states[1])


def test_carry_influences_next_call():
    torch.manual_seed(0)
    model = HopeModel(small_config())
    model.eval()
    tokens = torch.randint(0, 20, (1, 6))

    with torch.no_grad():
        first_carry, first = model(tokens, model.initial_carry(batch_size=1))
        _, second = model(tokens, first_carry)

    assert not torch.allclose(first.logits, second.logits)


def test_carry_detach():
    model = HopeModel(small_config())
    tokens = torch.randint(0, 20, (1, 6))

    carry, _ = model(tokens, model.initial_carry(batch_size=1))
    assert carry.level_states[0].requires_grad

    detached = carry.detach()
    assert isinstance(detached, HopeCarry)
    assert not any(state.requires_grad for state in detached.level_states)
    assert not any(bank.requires_grad for bank in detached.memory_state.banks())
    assert not detached.self_modify_state.meta_state.requires_grad
    assert detached.step_count == carry.step_count


def test_backward():
    model = HopeModel(small_config())
    tokens = torch.randint(0, 20, (2, 6))

    _, output = model(tokens, model.initial_carry(batch_size=2))
    loss = torch.nn.functional.cross_entropy(
        output.logits.reshape(-1, 20), tokens.reshape(-1)
    )
    loss.backward()

    assert model.token_embed.weight.grad is not None
    assert model.head.weight.grad is not None
    for encoder in model.level_encoders:
        assert any(p.grad is not None for p in encoder.parameters())
    assert model.continuum_memory.query_proj.weight.grad is not None
    assert model.self_modify.meta_network.layer1.weight.grad is not None


def test_batch_mismatch_rejected():
    model = HopeModel(small_config())
    carry = model.initial_carry(batch_size=1)
    tokens = torch.randint(0, 20, (2, 6))

    with pytest.raises(ValueError):
        model(tokens, carry)


def test_wrong_number_of_levels_rejected():
    model = HopeModel(small_config())
    carry = model.initial_carry(batch_size=1)
    carry.level_states = carry.level_states[:1]

    with pytest.raises(ValueError):
        model(torch.randint(0, 20, (1, 6)), carry)


def test_sequence_too_long_rejected():
    model = HopeModel(small_config())
    carry = model.initial_carry(batch_size=1)

    with pytest.raises(ValueError):
        model(torch.randint(0, 20, (1, 7)), carry)


@pytest.mark.parametrize('overrides', [
    {'hidden_size': 10, 'num_heads': 3},
    {'num_levels': 3},
    {'level_timescales': (1, 0)},
    {'self_modify': SelfModifyConfig(weight_mod_dim=0)},
])
def test_invalid_config_rejected(overrides):
    with pytest.raises(ValueError):
        HopeModel(small_config(**overrides))
