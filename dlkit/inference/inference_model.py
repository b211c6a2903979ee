"""
Inference over a saved model directory.

Loads the serialized graph and variable values written by Sequential.save()
and answers single-sample feed/fetch queries through a session.
"""

import logging
import os
from typing import Dict, Optional, Tuple

import numpy as np
import tensorflow as tf

from ..core.exceptions import (ModelNotInitializedError, ShapeMismatchError,
                               ShapeNotDefinedError, TensorNotFoundError)
from ..core.model import DATA_PLACEHOLDER, OUTPUT_ARG_MAX, OUTPUT_NAME
from ..core.optimizer import OPTIMIZER_SCOPE
from ..core.serialization import (GRAPH_FILE, VariableAccessor, load_variable_values,
                                  read_graph)

logger = logging.getLogger(__name__)

tf1 = tf.compat.v1


class InferenceModel:
    """
    A deserialized graph with a session, ready for prediction.

    Lifecycle: load -> reshape -> predict / predict_softly -> close.
    """

    def __init__(self, graph: Optional[tf.Graph] = None, name: Optional[str] = None):
        self.name = name
        self.input_name = DATA_PLACEHOLDER
        self.output_name = OUTPUT_ARG_MAX
        self.shape: Optional[Tuple[int, ...]] = None
        self.is_initialized = False

        self._graph = graph if graph is not None else tf.Graph()
        self._session = tf1.Session(graph=self._graph)
        self._accessor = VariableAccessor(self._graph, self._session)

    @classmethod
    def load(cls, directory: str, load_optimizer_state: bool = False,
             load_weights: bool = True) -> 'InferenceModel':
        """
        Load a graph and its variable values.

        Args:
            directory: Directory written by Sequential.save()
            load_optimizer_state: Whether optimizer variables are loaded too
            load_weights: Whether variable values are loaded now; if False,
                call load_weights() before predicting

        Raises:
            NotADirectoryError: if directory does not exist
            FileNotFoundError: if graph.pb or a variable file is missing
        """
        if not os.path.isdir(directory):
            raise NotADirectoryError(directory)

        graph_path = os.path.join(directory, GRAPH_FILE)
        if not os.path.isfile(graph_path):
            raise FileNotFoundError(
                f"File '{GRAPH_FILE}' is not found. This file must be in the model directory. "
                f"It is generated by Sequential.save()."
            )

        logger.debug("Model loading started.")
        model = cls(read_graph(graph_path), name=os.path.basename(os.path.normpath(directory)))
        if load_weights:
            model.load_weights(directory, load_optimizer_state)
        logger.debug("Model loading finished.")
        return model

    def _variable_names(self, include_optimizer: bool):
        names = self._accessor.variable_names()
        if include_optimizer:
            return names
        return [n for n in names if not n.startswith(OPTIMIZER_SCOPE + '/')]

    def load_weights(self, directory: str, load_optimizer_state: bool = False):
        values = load_variable_values(directory, self._variable_names(load_optimizer_state))
        self._accessor.assign(values)
        self.is_initialized = not self._accessor.uninitialized(self._variable_names(False))

    def reshape(self, *dims: int):
        """
        Set the shape of one input sample, without the batch dimension.

        Raises:
            ShapeMismatchError: if the input tensor has a static shape that
                disagrees with dims
        """
        dims = tuple(int(d) for d in dims)
        try:
            static = self._tensor(self.input_name).shape
        except TensorNotFoundError:
            static = tf.TensorShape(None)
        if static.rank is not None:
            expected = tuple(static.as_list()[1:])
            if len(expected) != len(dims) or any(e is not None and e != d
                                                 for e, d in zip(expected, dims)):
                raise ShapeMismatchError(self.input_name, (None,) + expected, (None,) + dims)
        self.shape = dims

    def input(self, input_name: str):
        self.input_name = input_name

    def output(self, output_name: str):
        self.output_name = output_name

    def _tensor(self, name: str) -> tf.Tensor:
        tensor_name = name if ':' in name else name + ':0'
        try:
            return self._graph.get_tensor_by_name(tensor_name)
        except (KeyError, ValueError):
            raise TensorNotFoundError(name) from None

    def _check_ready(self):
        if self.shape is None:
            raise ShapeNotDefinedError("Model input shape is not defined. "
                                       "Call reshape() to set input shape.")
        if not self.is_initialized:
            raise ModelNotInitializedError("Model weights are not initialized.")

    def _prepare(self, data: np.ndarray) -> np.ndarray:
        data = np.asarray(data, dtype=np.float32)
        if data.size != int(np.prod(self.shape)):
            raise ShapeMismatchError(self.input_name, (1,) + self.shape, data.shape)
        return data.reshape((1,) + self.shape)

    def predict(self, data: np.ndarray, input_tensor_name: Optional[str] = None,
                output_tensor_name: Optional[str] = None) -> int:
        """
        Predict the class of one sample.

        Args:
            data: Sample values, flat or shaped like the input
            input_tensor_name: Tensor fed with the sample, defaults to input_name
            output_tensor_name: Tensor holding the class index, defaults to output_name

        Returns:
            Predicted class index
        """
        self._check_ready()
        feed = self._tensor(input_tensor_name or self.input_name)
        fetch = self._tensor(output_tensor_name or self.output_name)
        result = self._session.run(fetch, feed_dict={feed: self._prepare(data)})
        return int(np.asarray(result).reshape(-1)[0])

    def predict_softly(self, data: np.ndarray,
                       prediction_tensor_name: Optional[str] = None,
                       input_tensor_name: Optional[str] = None) -> np.ndarray:
        """
        Activated output vector for one sample.

        Args:
            data: Sample values, flat or shaped like the input
            prediction_tensor_name: Tensor holding the activated outputs, defaults to 'output'
            input_tensor_name: Tensor fed with the sample, defaults to input_name
        """
        self._check_ready()
        fetch = self._tensor(prediction_tensor_name or OUTPUT_NAME)
        feed = self._tensor(input_tensor_name or self.input_name)
        result = self._session.run(fetch, feed_dict={feed: self._prepare(data)})
        return np.asarray(result)[0]

    def get_variables(self) -> Dict[str, np.ndarray]:
        """Values of every graph variable keyed by name."""
        return self._accessor.read(self._variable_names(False))

    def graph_to_string(self) -> str:
        """Describe every operation of the graph, one per line."""
        return '\n'.join(
            f"Name: {op.name}; Type: {op.type}; Out #tensors: {len(op.outputs)}"
            for op in self._graph.get_operations()
        )

    def copy(self, name: Optional[str] = None) -> 'InferenceModel':
        """Copy graph, settings and variable values into an independent model."""
        graph = tf.Graph()
        with graph.as_default():
            tf1.import_graph_def(self._graph.as_graph_def(), name='')

        model = InferenceModel(graph, name=name if name is not None else self.name)
        model.shape = self.shape
        model.input_name = self.input_name
        model.output_name = self.output_name
        if self.is_initialized:
            uninitialized = set(self._accessor.uninitialized())
            names = [n for n in self._accessor.variable_names() if n not in uninitialized]
            model._accessor.assign(self._accessor.read(names))
            model.is_initialized = True
        return model

    def close(self):
        if self._session is not None:
            self._session.close()
            self._session = None
        self.is_initialized = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def __repr__(self):
        return f"InferenceModel(name={self.name})"
