"""Unit tests for optimizers: slot allocation, naming, frozen layers and updates."""

import numpy as np
import pytest

from dlkit.core.exceptions import SlotNotFoundError
from dlkit.core.layers import BatchNorm, Dense, Input
from dlkit.core.model import Sequential
from dlkit.core.optimizer import (SGD, AdaDelta, AdaGrad, Adam, Adamax, ClipGradientByNorm,
                                  ClipGradientByValue, Ftrl, RMSProp, get_optimizer,
                                  variable_name)


def _compiled(optimizer, frozen=False):
    model = Sequential.of(
        Input(4),
        Dense(5, activation='relu', name='hidden', trainable=not frozen),
        Dense(3, name='logits'),
    )
    model.compile(optimizer=optimizer, loss='softmax_cross_entropy_with_logits',
                  metrics=['accuracy'])
    return model


EXPECTED_SLOTS = [
    (SGD(momentum=0.0), []),
    (SGD(momentum=0.9), ['momentum']),
    (Adam(), ['m', 'v']),
    (Adam(amsgrad=True), ['m', 'v', 'vhat']),
    (Adamax(), ['m', 'v']),
    (RMSProp(), ['ms', 'mom']),
    (RMSProp(centered=True), ['ms', 'mom', 'mg']),
    (AdaGrad(), ['accumulator']),
    (AdaDelta(), ['accum', 'accum_update']),
    (Ftrl(), ['accum', 'linear']),
]


class TestSlots:
    """Slots exist for every trainable variable once the model is compiled."""

    @pytest.mark.parametrize("optimizer,slots", EXPECTED_SLOTS,
                             ids=[f"{type(o).__name__}-{len(s)}" for o, s in EXPECTED_SLOTS])
    def test_slots_for_every_trainable_variable(self, optimizer, slots):
        model = _compiled(optimizer)
        try:
            for variable in model.trainable_variables:
                assert sorted(optimizer.slot_names(variable)) == sorted(slots)
        finally:
            model.close()

    def test_slot_names_follow_optimizer_scope(self):
        optimizer = Adam()
        model = _compiled(optimizer)
        try:
            slot = optimizer.get_slot('hidden/kernel', 'm')
            assert variable_name(slot) == 'optimizer/hidden/kernel/m'
            assert slot.shape.as_list() == [4, 5]
        finally:
            model.close()

    def test_missing_slot_raises(self):
        optimizer = Adam()
        model = _compiled(optimizer)
        try:
            with pytest.raises(SlotNotFoundError):
                optimizer.get_slot('hidden/kernel', 'momentum')
            with pytest.raises(KeyError):
                optimizer.get_slot('unknown/kernel', 'm')
        finally:
            model.close()

    def test_adam_keeps_beta_powers(self):
        optimizer = Adam(beta1=0.8, beta2=0.9)
        model = _compiled(optimizer)
        try:
            names = [variable_name(v) for v in optimizer.variables()]
            assert 'optimizer/beta1_power' in names
            assert 'optimizer/beta2_power' in names
        finally:
            model.close()

    def test_adagrad_accumulator_starts_at_initial_value(self):
        optimizer = AdaGrad(initial_accumulator_value=0.25)
        model = _compiled(optimizer)
        try:
            values = model._accessor.read(['optimizer/hidden/kernel/accumulator'])
            np.testing.assert_allclose(values['optimizer/hidden/kernel/accumulator'], 0.25)
        finally:
            model.close()


class TestFrozenLayers:
    """Layers with trainable=False get no slots and keep their weights."""

    def test_frozen_layer_has_no_slots(self):
        optimizer = Adam()
        model = _compiled(optimizer, frozen=True)
        try:
            assert optimizer.slot_names('hidden/kernel') == []
            assert optimizer.slot_names('logits/kernel') == ['m', 'v']
        finally:
            model.close()

    def test_frozen_weights_do_not_change(self, blobs):
        x, labels = blobs
        model = _compiled(Adam(learning_rate=0.05), frozen=True)
        try:
            frozen_before = model.get_layer_weights('hidden')
            trained_before = model.get_layer_weights('logits')
            model.fit(x, labels, epochs=2, batch_size=32, verbose=False)
            for name, value in model.get_layer_weights('hidden').items():
                np.testing.assert_array_equal(value, frozen_before[name])
            assert not np.allclose(model.get_layer_weights('logits')['kernel'],
                                   trained_before['kernel'])
        finally:
            model.close()

    def test_frozen_batch_norm_keeps_moving_statistics(self, blobs):
        x, labels = blobs
        model = Sequential.of(
            Input(4),
            BatchNorm(name='bn', trainable=False),
            Dense(3, name='logits'),
        )
        with model:
            model.compile(optimizer=Adam(learning_rate=0.05))
            before = model.get_layer_weights('bn')
            model.fit(x, labels, epochs=1, batch_size=32, verbose=False)
            for name, value in model.get_layer_weights('bn').items():
                np.testing.assert_array_equal(value, before[name])


class TestUpdates:
    """Update ops change variables and honor the fed learning rate."""

    @pytest.mark.parametrize("optimizer", [o for o, _ in EXPECTED_SLOTS],
                             ids=[f"{type(o).__name__}-{len(s)}" for o, s in EXPECTED_SLOTS])
    def test_training_step_changes_weights(self, optimizer, blobs):
        x, labels = blobs
        model = _compiled(optimizer)
        try:
            before = model.get_layer_weights('logits')['kernel']
            model.fit(x[:64], labels[:64], epochs=1, batch_size=64, verbose=False)
            after = model.get_layer_weights('logits')['kernel']
            assert np.all(np.isfinite(after))
            assert not np.allclose(before, after)
            assert optimizer.iterations == 1
        finally:
            model.close()

    def test_zero_learning_rate_freezes_sgd(self, blobs):
        x, labels = blobs
        optimizer = SGD(learning_rate=0.1)
        model = _compiled(optimizer)
        try:
            optimizer.learning_rate = 0.0
            before = model.get_weights()
            model.fit(x[:32], labels[:32], epochs=1, batch_size=32, verbose=False)
            after = model.get_weights()
            for layer_name, weights in before.items():
                for name, value in weights.items():
                    np.testing.assert_array_equal(value, after[layer_name][name])
        finally:
            model.close()

    def test_clipping_actions_produce_finite_updates(self, blobs):
        x, labels = blobs
        for clip in (ClipGradientByValue(0.01), ClipGradientByNorm(0.01)):
            model = _compiled(SGD(learning_rate=1.0, clip_gradient=clip))
            try:
                before = model.get_layer_weights('logits')['bias']
                model.fit(x[:32], labels[:32], epochs=1, batch_size=32, verbose=False)
                delta = np.abs(model.get_layer_weights('logits')['bias'] - before)
                assert np.all(delta <= 0.01 + 1e-6)
            finally:
                model.close()


class TestConfig:

    def test_get_optimizer_by_name(self):
        assert isinstance(get_optimizer('adam'), Adam)
        assert isinstance(get_optimizer('RMSProp'), RMSProp)

    def test_get_optimizer_passes_instances_through(self):
        optimizer = SGD(learning_rate=0.5)
        assert get_optimizer(optimizer) is optimizer

    def test_unknown_optimizer(self):
        with pytest.raises(ValueError, match="Unknown optimizer"):
            get_optimizer('lbfgs')

    def test_config_contains_hyperparameters(self):
        config = RMSProp(learning_rate=0.01, rho=0.8, centered=True).get_config()
        assert config['learning_rate'] == 0.01
        assert config['rho'] == 0.8
        assert config['centered'] is True

    def test_ftrl_rejects_positive_power(self):
        with pytest.raises(ValueError):
            Ftrl(learning_rate_power=0.5)
