"""Unit tests for the Sequential model."""

import json
import os

import numpy as np
import pytest

from dlkit.core.exceptions import (ModelNotCompiledError, ShapeMismatchError,
                                   TensorNotFoundError)
from dlkit.core.layers import (BatchNorm, Conv2D, Dense, Dropout, Flatten, Input, MaxPool2D)
from dlkit.core.model import OUTPUT_ARG_MAX, OUTPUT_NAME, Sequential
from dlkit.core.optimizer import SGD
from dlkit.dataset import Dataset


class TestConstruction:

    def test_first_layer_must_be_input(self):
        with pytest.raises(ValueError, match="Input"):
            Sequential.of(Dense(3))

    def test_only_first_layer_may_be_input(self):
        with pytest.raises(ValueError):
            Sequential.of(Input(3), Input(3))

    def test_unnamed_layers_get_unique_names(self):
        model = Sequential.of(Input(8), Dense(4), Dense(4), Dropout(0.1), Dense(2))
        names = [layer.name for layer in model.layers]
        assert names == ['input', 'dense_1', 'dense_2', 'dropout_1', 'dense_3']

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError, match="already used"):
            Sequential.of(Input(8), Dense(4, name='a'), Dense(4, name='a'))

    def test_output_shape(self):
        model = Sequential.of(
            Input(28, 28, 1),
            Conv2D(8, kernel_size=3, padding='same'),
            MaxPool2D(2),
            Flatten(),
            Dense(10),
        )
        assert model.input_shape == (None, 28, 28, 1)
        assert model.output_shape == (None, 10)

    def test_layer_shapes_known_before_compile(self):
        model = Sequential.of(
            Input(28, 28, 1),
            Conv2D(8, kernel_size=3, padding='same', name='conv'),
            MaxPool2D(2, name='pool'),
            Flatten(name='flatten'),
            Dense(10, name='dense'),
        )
        assert model.get_layer('conv').input_shape == (None, 28, 28, 1)
        assert model.get_layer('pool').output_shape == (None, 14, 14, 8)
        assert model.get_layer('flatten').output_shape == (None, 14 * 14 * 8)
        assert model.get_layer('dense').input_shape == (None, 14 * 14 * 8)

    def test_cannot_add_after_compile(self, compiled_model):
        with pytest.raises(RuntimeError):
            compiled_model.add(Dense(2))


class TestCompile:

    def test_static_shapes_match_inferred_shapes(self):
        model = Sequential.of(
            Input(12, 12, 3),
            Conv2D(4, kernel_size=3, strides=2, padding='same', name='conv'),
            MaxPool2D(2, name='pool'),
            Flatten(name='flat'),
            Dense(5, name='out'),
        )
        with model:
            model.compile(optimizer='sgd')
            for layer in model.layers[1:]:
                assert layer.output_shape == model._infer_shapes()[model.layers.index(layer)]
            assert model.get_layer('conv').kernel.shape.as_list() == [3, 3, 3, 4]
            assert model.get_layer('out').kernel.shape.as_list() == [36, 5]

    def test_named_tensors_exist(self, compiled_model):
        graph = compiled_model.graph
        for name in ('x', 'y', 'training', OUTPUT_NAME, OUTPUT_ARG_MAX):
            assert graph.get_tensor_by_name(name + ':0') is not None

    def test_compile_twice_fails(self, compiled_model):
        with pytest.raises(RuntimeError, match="already compiled"):
            compiled_model.compile()

    def test_unknown_loss(self, dense_model):
        with pytest.raises(ValueError, match="Unknown loss"):
            dense_model.compile(loss='kl_divergence')

    def test_use_before_compile(self, dense_model, blobs):
        x, labels = blobs
        with pytest.raises(ModelNotCompiledError):
            dense_model.fit(x, labels, verbose=False)
        with pytest.raises(ModelNotCompiledError):
            dense_model.predict(x)


class TestTrainingAndInference:

    def test_fit_returns_history(self, compiled_model, blobs):
        x, labels = blobs
        history = compiled_model.fit(x, labels, epochs=3, batch_size=32,
                                     validation_rate=0.2, verbose=False)
        assert set(history) == {'loss', 'accuracy', 'val_loss', 'val_accuracy'}
        assert all(len(values) == 3 for values in history.values())
        assert history['loss'][-1] < history['loss'][0]

    def test_fit_accepts_dataset_and_validation_data(self, compiled_model, blobs):
        x, labels = blobs
        train = Dataset.create(x[:240], labels[:240], num_classes=3)
        history = compiled_model.fit(train, epochs=1, batch_size=50,
                                     validation_data=(x[240:], labels[240:]), verbose=False)
        assert 'val_accuracy' in history

    def test_evaluate_weights_batches_by_size(self, compiled_model, blobs):
        x, labels = blobs
        whole = compiled_model.evaluate(x, labels, batch_size=len(x))
        batched = compiled_model.evaluate(x, labels, batch_size=7)
        assert whole['loss'] == pytest.approx(batched['loss'], rel=1e-4)
        assert whole['accuracy'] == pytest.approx(batched['accuracy'], rel=1e-4)

    def test_predict_matches_argmax_of_soft_predictions(self, compiled_model, blobs):
        x, _ = blobs
        labels = compiled_model.predict(x[:20])
        probabilities = compiled_model.predict_softly(x[:20])
        assert probabilities.shape == (20, 3)
        np.testing.assert_allclose(probabilities.sum(axis=1), 1.0, rtol=1e-5)
        np.testing.assert_array_equal(labels, probabilities.argmax(axis=1))

    def test_predict_single_sample(self, compiled_model, blobs):
        x, _ = blobs
        label = compiled_model.predict(x[0])
        assert isinstance(label, int)
        assert label == compiled_model.predict(x[:1])[0]
        assert compiled_model.predict_softly(x[0]).shape == (3,)

    def test_predict_empty_batch(self, compiled_model):
        empty = np.zeros((0, 4), dtype=np.float32)
        assert compiled_model.predict(empty).shape == (0,)
        assert compiled_model.predict_softly(empty).shape == (0, 3)

    def test_validation_dataset_labels_must_match_output(self, compiled_model, blobs):
        x, labels = blobs
        validation = Dataset(x[:20], np.zeros((20, 2), dtype=np.float32))
        with pytest.raises(ShapeMismatchError):
            compiled_model.fit(x, labels, validation_data=validation, verbose=False)

    def test_train_end_runs_when_training_fails(self, compiled_model, blobs, tmp_path):
        from dlkit.callbacks import Callback, CSVLogger

        class Interrupt(Callback):
            def on_epoch_begin(self, epoch, logs=None):
                if epoch == 1:
                    raise RuntimeError("interrupted")

        x, labels = blobs
        csv_logger = CSVLogger(str(tmp_path / 'log.csv'))
        with pytest.raises(RuntimeError, match="interrupted"):
            compiled_model.fit(x, labels, epochs=3, verbose=False,
                               callbacks=[csv_logger, Interrupt()])
        assert csv_logger._file is None
        with open(tmp_path / 'log.csv') as f:
            assert len(f.read().splitlines()) == 2

    def test_predict_rejects_wrong_shape(self, compiled_model):
        with pytest.raises(ShapeMismatchError):
            compiled_model.predict(np.zeros((2, 5), dtype=np.float32))

    def test_labels_must_match_output(self, compiled_model, blobs):
        x, _ = blobs
        with pytest.raises(ShapeMismatchError):
            compiled_model.fit(x, np.zeros((len(x), 2)), verbose=False)

    def test_init_resets_weights(self, compiled_model, blobs):
        x, labels = blobs
        compiled_model.fit(x, labels, epochs=1, verbose=False)
        assert np.any(compiled_model.get_layer_weights('logits')['bias'] != 0)
        compiled_model.init()
        np.testing.assert_array_equal(compiled_model.get_layer_weights('logits')['bias'], 0)

    def test_callbacks_can_stop_training(self, compiled_model, blobs):
        from dlkit.callbacks import Callback

        class StopAfterFirstEpoch(Callback):
            def on_epoch_end(self, epoch, logs=None):
                self.model.stop_training = True

        x, labels = blobs
        history = compiled_model.fit(x, labels, epochs=5, callbacks=[StopAfterFirstEpoch()],
                                     verbose=False)
        assert len(history['loss']) == 1

    def test_batch_norm_and_dropout_train(self, blobs):
        x, labels = blobs
        model = Sequential.of(Input(4), Dense(16, name='d1'), BatchNorm(name='bn'),
                              Dropout(0.2, name='drop'), Dense(3, name='out'))
        with model:
            model.compile(optimizer=SGD(learning_rate=0.1), metrics=['accuracy'])
            moving_mean = model.get_layer_weights('bn')['moving_mean']
            model.fit(x, labels, epochs=2, batch_size=30, verbose=False)
            assert not np.allclose(moving_mean, model.get_layer_weights('bn')['moving_mean'])
            # Inference is deterministic with dropout disabled
            np.testing.assert_array_equal(model.predict_softly(x[:5]), model.predict_softly(x[:5]))


class TestWeights:

    def test_set_and_get_layer_weights(self, compiled_model):
        kernel = np.full((4, 8), 0.5, dtype=np.float32)
        compiled_model.set_layer_weights('hidden', {'kernel': kernel})
        np.testing.assert_array_equal(compiled_model.get_layer_weights('hidden')['kernel'], kernel)

    def test_wrong_shape_rejected(self, compiled_model):
        with pytest.raises(ShapeMismatchError):
            compiled_model.set_layer_weights('hidden', {'kernel': np.zeros((3, 8))})

    def test_unknown_variable_rejected(self, compiled_model):
        with pytest.raises(ValueError):
            compiled_model.set_layer_weights('hidden', {'gamma': np.zeros(8)})

    def test_unknown_layer_rejected(self, compiled_model):
        with pytest.raises(ValueError, match="No layer"):
            compiled_model.get_layer('missing')

    def test_summary_lists_layers_and_params(self, compiled_model):
        lines = []
        compiled_model.summary(print_fn=lines.append)
        text = '\n'.join(lines)
        assert 'hidden (Dense)' in text
        # 4*8 + 8 + 8*3 + 3
        assert 'Total params: 67' in text
        assert 'Trainable params: 67' in text


class TestPersistence:

    def test_save_writes_directory_layout(self, compiled_model, tmp_path):
        target = tmp_path / 'model'
        compiled_model.save(str(target))
        assert (target / 'graph.pb').is_file()
        assert (target / 'model_config.json').is_file()
        assert (target / 'variables' / 'hidden__kernel.npy').is_file()
        assert not any(name.startswith('optimizer') for name in os.listdir(target / 'variables'))

    def test_save_refuses_non_empty_directory(self, compiled_model, tmp_path):
        (tmp_path / 'existing.txt').write_text('x')
        with pytest.raises(FileExistsError):
            compiled_model.save(str(tmp_path))
        compiled_model.save(str(tmp_path), overwrite=True)

    def test_save_optimizer_state(self, compiled_model, tmp_path):
        compiled_model.save(str(tmp_path / 'm'), save_optimizer_state=True)
        files = os.listdir(tmp_path / 'm' / 'variables')
        assert 'optimizer__hidden__kernel__m.npy' in files
        assert 'optimizer__beta1_power.npy' in files

    def test_load_restores_architecture_and_weights(self, compiled_model, blobs, tmp_path):
        x, labels = blobs
        compiled_model.fit(x, labels, epochs=2, verbose=False)
        compiled_model.save(str(tmp_path / 'm'))
        expected = compiled_model.predict_softly(x[:10])

        with Sequential.load(str(tmp_path / 'm')) as restored:
            assert [l.name for l in restored.layers] == ['input', 'hidden', 'logits']
            restored.compile(optimizer='adam')
            restored.load_weights(str(tmp_path / 'm'))
            np.testing.assert_allclose(restored.predict_softly(x[:10]), expected, rtol=1e-5)

    def test_load_optimizer_state_requires_saved_state(self, compiled_model, tmp_path):
        compiled_model.save(str(tmp_path / 'm'))
        with Sequential.load(str(tmp_path / 'm')) as restored:
            restored.compile(optimizer='adam')
            with pytest.raises(FileNotFoundError):
                restored.load_weights(str(tmp_path / 'm'), load_optimizer_state=True)

    def test_load_missing_directory(self, tmp_path):
        with pytest.raises(NotADirectoryError):
            Sequential.load(str(tmp_path / 'nope'))

    def test_config_is_json_serializable(self, compiled_model, tmp_path):
        compiled_model.save(str(tmp_path / 'm'))
        with open(tmp_path / 'm' / 'model_config.json') as f:
            config = json.load(f)
        assert config['class_name'] == 'Sequential'
        assert config['training_config']['loss'] == 'softmax_cross_entropy_with_logits'

    def test_from_keras_config_without_input_layer(self):
        config = {
            'class_name': 'Sequential',
            'config': {
                'name': 'keras_model',
                'layers': [
                    {'class_name': 'Flatten',
                     'config': {'name': 'flatten', 'batch_input_shape': [None, 4, 4, 1]}},
                    {'class_name': 'Dense',
                     'config': {'name': 'dense', 'units': 2, 'activation': 'softmax'}},
                ],
            },
        }
        model = Sequential.from_config(config)
        assert isinstance(model.layers[0], Input)
        assert model.input_shape == (None, 4, 4, 1)
        assert model.output_shape == (None, 2)


class TestLifecycle:

    def test_close_releases_session(self, compiled_model, blobs):
        x, _ = blobs
        compiled_model.close()
        assert compiled_model.session is None
        with pytest.raises(ModelNotCompiledError):
            compiled_model.predict(x)

    def test_optimizer_serves_one_model_at_a_time(self, blobs):
        x, labels = blobs
        optimizer = SGD(learning_rate=0.1)
        first = Sequential.of(Input(4), Dense(3, name='out'))
        second = Sequential.of(Input(4), Dense(3, name='out'))
        try:
            first.compile(optimizer=optimizer)
            with pytest.raises(ValueError, match="already used"):
                second.compile(optimizer=optimizer)
            first.fit(x, labels, epochs=1, verbose=False)

            first.close()
            second.compile(optimizer=optimizer)
            second.fit(x, labels, epochs=1, verbose=False)
        finally:
            first.close()
            second.close()

    def test_accessor_reports_missing_variables(self, compiled_model):
        with pytest.raises(TensorNotFoundError):
            compiled_model._accessor.read(['no/such/variable'])
