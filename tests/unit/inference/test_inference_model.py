"""Unit tests for InferenceModel."""

import numpy as np
import pytest

from dlkit.core.exceptions import (ModelNotInitializedError, ShapeMismatchError,
                                   ShapeNotDefinedError, TensorNotFoundError)
from dlkit.inference import InferenceModel


@pytest.fixture
def saved_model_dir(compiled_model, blobs, tmp_path):
    x, labels = blobs
    compiled_model.fit(x, labels, epochs=2, verbose=False)
    directory = tmp_path / 'saved'
    compiled_model.save(str(directory), save_optimizer_state=True)
    return str(directory)


class TestLoading:

    def test_missing_directory(self, tmp_path):
        with pytest.raises(NotADirectoryError):
            InferenceModel.load(str(tmp_path / 'absent'))

    def test_missing_graph(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="graph.pb"):
            InferenceModel.load(str(tmp_path))

    def test_loaded_model_is_initialized(self, saved_model_dir):
        with InferenceModel.load(saved_model_dir) as model:
            assert model.is_initialized
            assert model.name == 'saved'
            assert 'hidden/kernel' in model.get_variables()

    def test_load_optimizer_state(self, saved_model_dir):
        with InferenceModel.load(saved_model_dir, load_optimizer_state=True) as model:
            assert model._accessor.uninitialized() == []


class TestPreconditions:

    def test_predict_requires_shape(self, saved_model_dir, blobs):
        x, _ = blobs
        with InferenceModel.load(saved_model_dir) as model:
            with pytest.raises(ShapeNotDefinedError, match="reshape"):
                model.predict(x[0])

    def test_predict_requires_weights(self, saved_model_dir, blobs):
        x, _ = blobs
        with InferenceModel.load(saved_model_dir, load_weights=False) as model:
            model.reshape(4)
            with pytest.raises(ModelNotInitializedError):
                model.predict(x[0])
            model.load_weights(saved_model_dir)
            assert isinstance(model.predict(x[0]), int)

    def test_unknown_tensor(self, saved_model_dir, blobs):
        x, _ = blobs
        with InferenceModel.load(saved_model_dir) as model:
            model.reshape(4)
            with pytest.raises(TensorNotFoundError):
                model.predict_softly(x[0], prediction_tensor_name='no_such_output')
            model.output('missing_output')
            with pytest.raises(TensorNotFoundError):
                model.predict(x[0])

    def test_reshape_checks_static_shape(self, saved_model_dir):
        with InferenceModel.load(saved_model_dir) as model:
            with pytest.raises(ShapeMismatchError):
                model.reshape(5)
            with pytest.raises(ShapeMismatchError):
                model.reshape(2, 2)

    def test_data_size_must_match_shape(self, saved_model_dir):
        with InferenceModel.load(saved_model_dir) as model:
            model.reshape(4)
            with pytest.raises(ShapeMismatchError):
                model.predict(np.zeros(5, np.float32))


class TestPrediction:

    def test_predictions_match_training_model(self, compiled_model, saved_model_dir, blobs):
        x, _ = blobs
        expected_labels = compiled_model.predict(x[:10])
        expected_soft = compiled_model.predict_softly(x[:10])

        with InferenceModel.load(saved_model_dir) as model:
            model.reshape(4)
            for i in range(10):
                assert model.predict(x[i]) == expected_labels[i]
                np.testing.assert_allclose(model.predict_softly(x[i]), expected_soft[i], rtol=1e-5)

    def test_explicit_tensor_names(self, saved_model_dir, blobs):
        x, _ = blobs
        with InferenceModel.load(saved_model_dir) as model:
            model.reshape(4)
            assert model.predict(x[0], 'x', 'output_argmax') == model.predict(x[0])

    def test_predict_softly_with_explicit_input(self, saved_model_dir, blobs):
        x, _ = blobs
        with InferenceModel.load(saved_model_dir) as model:
            model.reshape(4)
            np.testing.assert_array_equal(
                model.predict_softly(x[0], 'output', input_tensor_name='x'),
                model.predict_softly(x[0]))
            with pytest.raises(TensorNotFoundError):
                model.predict_softly(x[0], input_tensor_name='no_such_input')

    def test_copy_is_independent(self, saved_model_dir, blobs):
        x, _ = blobs
        with InferenceModel.load(saved_model_dir) as model:
            model.reshape(4)
            expected = model.predict_softly(x[0])
            copy = model.copy(name='copy')
            model.close()
            with copy:
                assert copy.name == 'copy'
                assert copy.shape == (4,)
                np.testing.assert_allclose(copy.predict_softly(x[0]), expected)

    def test_graph_to_string_lists_operations(self, saved_model_dir):
        with InferenceModel.load(saved_model_dir) as model:
            description = model.graph_to_string()
            assert 'Name: x; Type: Placeholder' in description
            assert 'Name: hidden/kernel; Type: VarHandleOp' in description

    def test_repr(self, saved_model_dir):
        with InferenceModel.load(saved_model_dir) as model:
            assert repr(model) == 'InferenceModel(name=saved)'
