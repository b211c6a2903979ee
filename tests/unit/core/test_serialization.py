"""Unit tests for the persisted-model directory helpers and VariableAccessor."""

import numpy as np
import pytest
import tensorflow as tf

from dlkit.core.exceptions import ShapeMismatchError, TensorNotFoundError
from dlkit.core.serialization import (VariableAccessor, load_variable_values, read_config,
                                      read_graph, save_variable_values, variable_file_name,
                                      write_config, write_graph)

tf1 = tf.compat.v1


@pytest.fixture
def graph_and_session():
    graph = tf.Graph()
    with graph.as_default():
        with tf1.name_scope('layer/'):
            tf.Variable(tf.zeros([2, 3]), name='kernel')
        tf1.placeholder(tf.float32, shape=[None, 2], name='x')
    session = tf1.Session(graph=graph)
    yield graph, session
    session.close()


class TestVariableAccessor:

    def test_lists_variables(self, graph_and_session):
        accessor = VariableAccessor(*graph_and_session)
        assert accessor.variable_names() == ['layer/kernel']

    def test_uninitialized_until_assigned(self, graph_and_session):
        accessor = VariableAccessor(*graph_and_session)
        assert accessor.uninitialized() == ['layer/kernel']

        value = np.arange(6, dtype=np.float32).reshape(2, 3)
        accessor.assign({'layer/kernel': value})
        assert accessor.uninitialized() == []
        np.testing.assert_array_equal(accessor.read()['layer/kernel'], value)

    def test_assign_checks_shape(self, graph_and_session):
        accessor = VariableAccessor(*graph_and_session)
        with pytest.raises(ShapeMismatchError):
            accessor.assign({'layer/kernel': np.zeros((3, 2), np.float32)})

    def test_non_variable_names_rejected(self, graph_and_session):
        accessor = VariableAccessor(*graph_and_session)
        with pytest.raises(TensorNotFoundError):
            accessor.read(['x'])
        with pytest.raises(TensorNotFoundError, match="not found"):
            accessor.read(['missing'])


class TestDirectoryLayout:

    def test_variable_file_name(self):
        assert variable_file_name('optimizer/dense_1/kernel/m') == 'optimizer__dense_1__kernel__m.npy'

    def test_graph_round_trip(self, graph_and_session, tmp_path):
        graph, _ = graph_and_session
        write_graph(graph, str(tmp_path))
        restored = read_graph(str(tmp_path / 'graph.pb'))
        assert restored.get_operation_by_name('layer/kernel').type == 'VarHandleOp'
        assert restored.get_tensor_by_name('x:0').shape.as_list() == [None, 2]

    def test_config_round_trip(self, tmp_path):
        write_config({'class_name': 'Sequential', 'config': {'layers': []}}, str(tmp_path))
        assert read_config(str(tmp_path))['class_name'] == 'Sequential'

    def test_missing_config(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="model_config.json"):
            read_config(str(tmp_path))

    def test_variable_values_round_trip(self, tmp_path):
        values = {'a/kernel': np.ones((2, 2), np.float32), 'b': np.zeros(3, np.float32)}
        save_variable_values(values, str(tmp_path))
        loaded = load_variable_values(str(tmp_path), ['a/kernel', 'b'])
        np.testing.assert_array_equal(loaded['a/kernel'], values['a/kernel'])
        with pytest.raises(FileNotFoundError):
            load_variable_values(str(tmp_path), ['c'])
