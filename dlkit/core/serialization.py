"""
Persisted-model directory layout shared by Sequential and InferenceModel.

A saved model directory holds:
    graph.pb            serialized TensorFlow GraphDef
    model_config.json   layer and training configuration
    variables/*.npy     one file per graph variable, named after the variable
"""

import json
import logging
import os
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
import tensorflow as tf

from .exceptions import ShapeMismatchError, TensorNotFoundError

logger = logging.getLogger(__name__)

tf1 = tf.compat.v1

GRAPH_FILE = 'graph.pb'
CONFIG_FILE = 'model_config.json'
VARIABLES_DIR = 'variables'

_VARIABLE_OP_TYPES = ('VarHandleOp',)


def variable_file_name(name: str) -> str:
    """File name holding the value of the graph variable called name."""
    return name.replace('/', '__') + '.npy'


def write_graph(graph: tf.Graph, directory: str):
    tf.io.write_graph(graph.as_graph_def(), directory, GRAPH_FILE, as_text=False)


def read_graph(path: str) -> tf.Graph:
    """
    Deserialize a GraphDef file into a fresh graph.

    Args:
        path: Path to a binary GraphDef file

    Returns:
        Graph holding the imported ops under their original names
    """
    graph_def = tf1.GraphDef()
    with open(path, 'rb') as f:
        graph_def.ParseFromString(f.read())

    graph = tf.Graph()
    with graph.as_default():
        tf1.import_graph_def(graph_def, name='')
    return graph


def write_config(config: Dict[str, Any], directory: str):
    with open(os.path.join(directory, CONFIG_FILE), 'w', encoding='utf-8') as f:
        json.dump(config, f, indent=2)


def read_config(directory: str) -> Dict[str, Any]:
    path = os.path.join(directory, CONFIG_FILE)
    if not os.path.isfile(path):
        raise FileNotFoundError(
            f"File '{CONFIG_FILE}' is not found. This file must be in the model directory "
            f"{directory}; it is written by Sequential.save()."
        )
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def save_variable_values(values: Dict[str, np.ndarray], directory: str):
    variables_dir = os.path.join(directory, VARIABLES_DIR)
    os.makedirs(variables_dir, exist_ok=True)
    for name, value in values.items():
        np.save(os.path.join(variables_dir, variable_file_name(name)), value)


def load_variable_values(directory: str, names: Iterable[str]) -> Dict[str, np.ndarray]:
    """
    Load stored values for the given variable names.

    Raises:
        FileNotFoundError: if a value file is missing
    """
    variables_dir = os.path.join(directory, VARIABLES_DIR)
    values = {}
    for name in names:
        path = os.path.join(variables_dir, variable_file_name(name))
        if not os.path.isfile(path):
            raise FileNotFoundError(f"No saved value for variable '{name}' (expected {path})")
        values[name] = np.load(path)
    return values


class VariableAccessor:
    """
    Reads and assigns the resource variables of a graph through a session.

    Works on any graph, including one deserialized from graph.pb where no
    tf.Variable objects exist, by emitting ReadVariableOp / AssignVariableOp
    against the variable handles. The ops are created once per variable.
    """

    def __init__(self, graph: tf.Graph, session: tf1.Session):
        self.graph = graph
        self.session = session
        self._readers = {}
        self._assigners = {}
        self._initialized_checks = {}

    def variable_names(self) -> List[str]:
        return [op.name for op in self.graph.get_operations() if op.type in _VARIABLE_OP_TYPES]

    def _handle(self, name: str) -> tf.Operation:
        try:
            op = self.graph.get_operation_by_name(name)
        except KeyError:
            raise TensorNotFoundError(name) from None
        if op.type not in _VARIABLE_OP_TYPES:
            raise TensorNotFoundError(name)
        return op

    def expected_shape(self, name: str) -> List[int]:
        return tf.TensorShape(self._handle(name).get_attr('shape')).as_list()

    def read(self, names: Optional[Iterable[str]] = None) -> Dict[str, np.ndarray]:
        names = list(names) if names is not None else self.variable_names()
        fetches = {}
        for name in names:
            if name not in self._readers:
                handle = self._handle(name)
                with self.graph.as_default(), tf1.name_scope('io/read/'):
                    self._readers[name] = tf.raw_ops.ReadVariableOp(
                        resource=handle.outputs[0], dtype=handle.get_attr('dtype'))
            fetches[name] = self._readers[name]
        return self.session.run(fetches) if fetches else {}

    def assign(self, values: Dict[str, np.ndarray]):
        """
        Assign values to variables by name.

        Raises:
            TensorNotFoundError: if a name is not a variable of the graph
            ShapeMismatchError: if a value does not match the variable's shape
        """
        ops = []
        feed = {}
        for name, value in values.items():
            value = np.asarray(value)
            expected = self.expected_shape(name)
            if list(value.shape) != expected:
                raise ShapeMismatchError(
                    name, tuple(expected), value.shape,
                    f"Value for variable '{name}' has shape {value.shape}, "
                    f"expected {tuple(expected)}"
                )
            if name not in self._assigners:
                handle = self._handle(name)
                dtype = handle.get_attr('dtype')
                with self.graph.as_default(), tf1.name_scope('io/assign/'):
                    placeholder = tf1.placeholder(dtype, shape=expected)
                    op = tf.raw_ops.AssignVariableOp(resource=handle.outputs[0], value=placeholder)
                self._assigners[name] = (placeholder, op)
            placeholder, op = self._assigners[name]
            feed[placeholder] = value
            ops.append(op)
        if ops:
            self.session.run(ops, feed_dict=feed)

    def uninitialized(self, names: Optional[Iterable[str]] = None) -> List[str]:
        """Names of variables that hold no value yet."""
        names = list(names) if names is not None else self.variable_names()
        fetches = {}
        for name in names:
            if name not in self._initialized_checks:
                handle = self._handle(name)
                with self.graph.as_default(), tf1.name_scope('io/is_initialized/'):
                    self._initialized_checks[name] = tf.raw_ops.VarIsInitializedOp(
                        resource=handle.outputs[0])
            fetches[name] = self._initialized_checks[name]
        flags = self.session.run(fetches) if fetches else {}
        return [name for name in names if not flags[name]]
