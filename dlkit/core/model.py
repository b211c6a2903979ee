"""
Sequential model for dlkit.
Wires layers into a TensorFlow graph and drives compile/fit/evaluate/predict
through a session, plus save/load of the persisted-model directory.
"""

import logging
import os
import re
import time
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np
import tensorflow as tf
from tqdm import tqdm

from .exceptions import ModelNotCompiledError, ModelNotInitializedError, ShapeMismatchError
from .hdf5 import read_hdf5_weights
from .layers import Input, Layer, deserialize, serialize
from .optimizer import Optimizer, get_optimizer, variable_name
from .serialization import (VariableAccessor, load_variable_values, read_config,
                            save_variable_values, write_config, write_graph)
from ..dataset.dataset import Dataset, one_hot
from ..utils.losses import Loss, get_loss
from ..utils.metrics import Metric, get_metric

logger = logging.getLogger(__name__)

tf1 = tf.compat.v1

DATA_PLACEHOLDER = 'x'
LABELS_PLACEHOLDER = 'y'
TRAINING_PLACEHOLDER = 'training'
OUTPUT_NAME = 'output'
OUTPUT_ARG_MAX = 'output_argmax'
LOSS_NAME = 'loss'

ArrayOrDataset = Union[np.ndarray, Dataset]


def _default_layer_name(layer: Layer) -> str:
    # MaxPool2D -> max_pool2d
    return re.sub(r'(?<!^)(?=[A-Z][a-z])', '_', type(layer).__name__).lower()


class Sequential:
    """
    A linear stack of layers compiled into one TensorFlow graph.

    The first layer must be an Input layer. Lifecycle:
    construct -> compile -> fit/evaluate/predict -> close.
    """

    def __init__(self, layers: Optional[List[Layer]] = None, name: Optional[str] = None,
                 seed: Optional[int] = 12):
        """
        Initialize the model.

        Args:
            layers: Layers to add, starting with an Input layer
            name: Name of the model
            seed: Graph-level random seed for initializers and dropout
        """
        self.name = name or 'sequential'
        self.seed = seed
        self.layers: List[Layer] = []

        self.compiled = False
        self.is_initialized = False
        self.stop_training = False

        # Training configuration
        self.optimizer: Optional[Optimizer] = None
        self.loss_fn: Optional[Loss] = None
        self.metrics: List[Metric] = []
        self.history: Dict[str, List[float]] = {}

        self._graph = tf.Graph()
        self._session = None
        self._accessor = None
        self._trainable_snapshot = {}

        for layer in layers or []:
            self.add(layer)

    @classmethod
    def of(cls, *layers: Layer, name: Optional[str] = None, seed: Optional[int] = 12) -> 'Sequential':
        """Build a model from layers given as positional arguments."""
        return cls(list(layers), name=name, seed=seed)

    # ------------------------------------------------------------------
    # Structure

    def add(self, layer: Layer):
        """Append a layer, validating its name and shape against the stack."""
        if self.compiled:
            raise RuntimeError("Cannot add layers to a compiled model")
        if not self.layers and not isinstance(layer, Input):
            raise ValueError("The first layer of a Sequential model must be an Input layer")
        if self.layers and isinstance(layer, Input):
            raise ValueError("Only the first layer of a Sequential model may be an Input layer")

        self._assign_name(layer)
        self.layers.append(layer)
        try:
            self._infer_shapes()
        except ShapeMismatchError:
            self.layers.pop()
            raise

    def _assign_name(self, layer: Layer):
        taken = {l.name for l in self.layers}
        if layer.name is None:
            base = _default_layer_name(layer)
            index = 1
            while f"{base}_{index}" in taken:
                index += 1
            layer.name = f"{base}_{index}"
        elif layer.name in taken:
            raise ValueError(f"Layer name '{layer.name}' is already used in model '{self.name}'")

    def _infer_shapes(self) -> List[Tuple[Optional[int], ...]]:
        shape = self.layers[0].output_shape
        shapes = [shape]
        for layer in self.layers[1:]:
            output_shape = layer.infer_output_shape(shape)
            layer.input_shape, layer.output_shape = tuple(shape), output_shape
            shape = output_shape
            shapes.append(shape)
        return shapes

    @property
    def input_shape(self) -> Tuple[Optional[int], ...]:
        return self.layers[0].output_shape

    @property
    def output_shape(self) -> Tuple[Optional[int], ...]:
        return self._infer_shapes()[-1]

    @property
    def graph(self) -> tf.Graph:
        return self._graph

    @property
    def session(self):
        return self._session

    def get_layer(self, name: str) -> Layer:
        for layer in self.layers:
            if layer.name == name:
                return layer
        raise ValueError(f"No layer named '{name}' in model '{self.name}'")

    @property
    def variables(self) -> List[tf.Variable]:
        return [v for layer in self.layers for v in layer.variables]

    @property
    def trainable_variables(self) -> List[tf.Variable]:
        return [v for layer in self.layers for v in layer.trainable_variables]

    # ------------------------------------------------------------------
    # Compilation

    def compile(self, optimizer: Union[Optimizer, str] = 'adam',
                loss: Union[Loss, str] = 'softmax_cross_entropy_with_logits',
                metrics: Optional[List[Union[Metric, str]]] = None):
        """
        Build the graph and open a session.

        Args:
            optimizer: Optimizer instance or name
            loss: Loss function instance or name
            metrics: List of metrics to track
        """
        if self.compiled:
            raise RuntimeError(f"Model '{self.name}' is already compiled")
        if len(self.layers) < 2:
            raise ValueError("A Sequential model needs at least one layer after its Input layer")

        self.loss_fn = get_loss(loss)
        self.metrics = [get_metric(m) for m in (metrics or [])]
        optimizer = get_optimizer(optimizer)
        optimizer.bind(self)
        self.optimizer = optimizer

        self._build_graph()
        self._session = tf1.Session(graph=self._graph)
        self._accessor = VariableAccessor(self._graph, self._session)
        self._trainable_snapshot = {layer.name: layer.trainable for layer in self.layers}
        self.compiled = True
        logger.debug("Model '%s' compiled with %s, loss %s", self.name,
                     self.optimizer.name, self.loss_fn.name)

        self.init()

    def _build_graph(self):
        with self._graph.as_default():
            if self.seed is not None:
                tf1.set_random_seed(self.seed)

            self._x = tf1.placeholder(tf.float32, shape=self.input_shape, name=DATA_PLACEHOLDER)
            self._training = tf1.placeholder_with_default(False, shape=[], name=TRAINING_PLACEHOLDER)

            output = self._x
            shape = self.input_shape
            for layer in self.layers[1:]:
                with tf1.name_scope(layer.name + '/'):
                    layer.build(shape)
                    output = layer.forward(output, self._training)
                shape = layer.output_shape

            self._y = tf1.placeholder(tf.float32, shape=shape, name=LABELS_PLACEHOLDER)
            self._loss = tf.identity(self.loss_fn(self._y, output), name=LOSS_NAME)
            self._predictions = tf.identity(self.loss_fn.activate(output), name=OUTPUT_NAME)
            self._argmax = tf.argmax(self._predictions, axis=-1, name=OUTPUT_ARG_MAX)
            self._metric_tensors = {m.name: m(self._y, self._predictions) for m in self.metrics}

            trainable = self.trainable_variables
            if trainable:
                gradients = tf1.gradients(self._loss, trainable)
                train_op = self.optimizer.apply_gradients(list(zip(gradients, trainable)))
            else:
                logger.warning("Model '%s' has no trainable variables", self.name)
                train_op = tf.no_op()

            update_ops = [op for layer in self.layers for op in layer.update_ops]
            self._train_op = tf.group(train_op, *update_ops, name='train_step')

            self._init_op = tf1.variables_initializer(
                self.variables + self.optimizer.variables(), name='init')

        logger.debug("Graph of model '%s' built: %d variables, %d trainable",
                     self.name, len(self.variables), len(self.trainable_variables))

    def init(self):
        """(Re-)initialize every layer and optimizer variable."""
        self._check_compiled()
        self._session.run(self._init_op)
        self.is_initialized = True

    def _check_compiled(self):
        if not self.compiled or self._session is None:
            raise ModelNotCompiledError("Model must be compiled before use")

    def _check_initialized(self):
        self._check_compiled()
        if not self.is_initialized:
            raise ModelNotInitializedError("Model weights are not initialized.")

    # ------------------------------------------------------------------
    # Data preparation

    def _prepare_input(self, x: np.ndarray) -> Tuple[np.ndarray, bool]:
        """Return a batch matching the input shape and whether x was a single sample."""
        x = np.asarray(x, dtype=np.float32)
        dims = tuple(self.input_shape[1:])
        sample_size = int(np.prod(dims))

        if x.shape[1:] == dims:
            return x, False
        if x.shape == dims:
            return x[np.newaxis], True
        if x.ndim == 1 and x.size == sample_size:
            return x.reshape((1,) + dims), True
        if x.ndim == 2 and x.shape[1] == sample_size:
            return x.reshape((-1,) + dims), False
        raise ShapeMismatchError(self.layers[0].name, (None,) + dims, x.shape)

    def _as_dataset(self, x: ArrayOrDataset, y: Optional[np.ndarray]) -> Dataset:
        if isinstance(x, Dataset):
            dataset = x
        else:
            if y is None:
                raise ValueError("Targets are required when x is not a Dataset")
            x, _ = self._prepare_input(x)
            y = np.asarray(y)
            units = self.output_shape[-1]
            if y.ndim == 1 and units > 1:
                y = one_hot(y, units)
            dataset = Dataset(x, y)

        expected = tuple(self.output_shape[1:])
        if tuple(dataset.y.shape[1:]) != expected:
            raise ShapeMismatchError(LABELS_PLACEHOLDER, (None,) + expected, dataset.y.shape)
        return dataset

    # ------------------------------------------------------------------
    # Training and inference

    def fit(self, x: ArrayOrDataset = None, y: Optional[np.ndarray] = None,
            epochs: int = 1, batch_size: int = 32,
            validation_data: Optional[Union[Tuple[np.ndarray, np.ndarray], Dataset]] = None,
            validation_rate: Optional[float] = None,
            validation_batch_size: Optional[int] = None,
            callbacks: Optional[List] = None, verbose: bool = True,
            shuffle: bool = True) -> Dict[str, List[float]]:
        """
        Train the model.

        Args:
            x: Training inputs or a Dataset
            y: Training targets (one-hot or integer labels); omitted for a Dataset
            epochs: Number of epochs
            batch_size: Batch size
            validation_data: (x_val, y_val) tuple or Dataset
            validation_rate: Fraction of the training data held out for
                validation when validation_data is not given
            validation_batch_size: Batch size for validation, defaults to batch_size
            callbacks: List of callbacks
            verbose: Whether to show progress bars and epoch summaries
            shuffle: Whether to shuffle training data every epoch

        Returns:
            Training history: per-epoch values of loss, metrics and their
            'val_' counterparts
        """
        self._check_initialized()
        self._warn_on_trainability_change()

        train = self._as_dataset(x, y)
        val = None
        if isinstance(validation_data, Dataset):
            val = self._as_dataset(validation_data, None)
        elif validation_data is not None:
            val = self._as_dataset(*validation_data)
        elif validation_rate:
            train, val = train.split(1.0 - validation_rate)
        if len(train) == 0:
            raise ValueError("Training data is empty")

        callbacks = callbacks or []
        for callback in callbacks:
            callback.set_model(self)
            callback.on_train_begin()

        rng = np.random.default_rng(self.seed)
        self.stop_training = False
        self.history = {}

        try:
            for epoch in range(epochs):
                epoch_start_time = time.time()
                for callback in callbacks:
                    callback.on_epoch_begin(epoch)

                epoch_data = train.shuffle(rng) if shuffle else train
                logs = self._run_epoch(epoch_data, batch_size, epoch, epochs, verbose)

                if val is not None and len(val):
                    val_results = self.evaluate(val, batch_size=validation_batch_size or batch_size,
                                                verbose=False)
                    logs.update({f'val_{k}': v for k, v in val_results.items()})

                for key, value in logs.items():
                    self.history.setdefault(key, []).append(value)

                if verbose:
                    summary = ' - '.join(f'{k}: {v:.4f}' for k, v in logs.items())
                    logger.info("Epoch %d/%d - %.2fs - %s", epoch + 1, epochs,
                                time.time() - epoch_start_time, summary)

                for callback in callbacks:
                    callback.on_epoch_end(epoch, logs)

                if self.stop_training:
                    logger.info("Training stopped at epoch %d", epoch + 1)
                    break
        finally:
            for callback in callbacks:
                callback.on_train_end()

        return self.history

    def _run_epoch(self, data: Dataset, batch_size: int, epoch: int, epochs: int,
                   verbose: bool) -> Dict[str, float]:
        batches = data.batches(batch_size)
        if verbose:
            batches = tqdm(batches, total=data.num_batches(batch_size),
                           desc=f"Epoch {epoch + 1}/{epochs}")

        fetches = {'train': self._train_op, 'loss': self._loss, **self._metric_tensors}
        totals = defaultdict(float)
        seen = 0

        for batch_x, batch_y in batches:
            feed = {self._x: batch_x, self._y: batch_y, self._training: True}
            feed.update(self.optimizer.feed_dict())
            results = self._session.run(fetches, feed_dict=feed)
            self.optimizer.iterations += 1

            count = len(batch_x)
            seen += count
            for key, value in results.items():
                if key != 'train':
                    totals[key] += float(value) * count

            if verbose:
                batches.set_postfix({'loss': f"{results['loss']:.4f}"})

        return {key: value / seen for key, value in totals.items()}

    def evaluate(self, x: ArrayOrDataset, y: Optional[np.ndarray] = None,
                 batch_size: int = 32, verbose: bool = False) -> Dict[str, float]:
        """
        Evaluate the model.

        Args:
            x: Inputs or a Dataset
            y: Targets; omitted for a Dataset
            batch_size: Batch size for evaluation
            verbose: Whether to show a progress bar and log the result

        Returns:
            Dictionary with 'loss' and one entry per metric, averaged over samples
        """
        self._check_initialized()
        data = self._as_dataset(x, y)
        if len(data) == 0:
            raise ValueError("Evaluation data is empty")

        batches = data.batches(batch_size)
        if verbose:
            batches = tqdm(batches, total=data.num_batches(batch_size), desc="Evaluating")

        fetches = {'loss': self._loss, **self._metric_tensors}
        totals = defaultdict(float)
        for batch_x, batch_y in batches:
            results = self._session.run(fetches, feed_dict={self._x: batch_x, self._y: batch_y})
            for key, value in results.items():
                totals[key] += float(value) * len(batch_x)

        results = {key: value / len(data) for key, value in totals.items()}
        if verbose:
            logger.info("Evaluation - %s", ' - '.join(f'{k}: {v:.4f}' for k, v in results.items()))
        return results

    def _run_batched(self, fetch: tf.Tensor, x: np.ndarray, batch_size: int) -> np.ndarray:
        if len(x) == 0:
            return np.zeros((0,) + tuple(fetch.shape[1:].as_list()),
                            dtype=fetch.dtype.as_numpy_dtype)
        outputs = [self._session.run(fetch, feed_dict={self._x: x[i:i + batch_size]})
                   for i in range(0, len(x), batch_size)]
        return np.concatenate(outputs, axis=0)

    def predict(self, x: np.ndarray, batch_size: int = 32) -> Union[int, np.ndarray]:
        """
        Predict class indices.

        Args:
            x: A batch of samples or a single sample (shaped or flat)
            batch_size: Batch size for prediction

        Returns:
            Class index for a single sample, else an array of class indices
        """
        self._check_initialized()
        x, single = self._prepare_input(x)
        labels = self._run_batched(self._argmax, x, batch_size)
        return int(labels[0]) if single else labels

    def predict_softly(self, x: np.ndarray, batch_size: int = 32) -> np.ndarray:
        """Predict activated outputs (class probabilities for classification losses)."""
        self._check_initialized()
        x, single = self._prepare_input(x)
        outputs = self._run_batched(self._predictions, x, batch_size)
        return outputs[0] if single else outputs

    # ------------------------------------------------------------------
    # Weights

    def _resolve_layer(self, layer: Union[Layer, str]) -> Layer:
        return self.get_layer(layer) if isinstance(layer, str) else layer

    def get_layer_weights(self, layer: Union[Layer, str]) -> Dict[str, np.ndarray]:
        """Current values of a layer's variables keyed by short name."""
        self._check_initialized()
        layer = self._resolve_layer(layer)
        names = {short: variable_name(v) for short, v in layer.weights.items()}
        values = self._accessor.read(names.values())
        return {short: values[full] for short, full in names.items()}

    def set_layer_weights(self, layer: Union[Layer, str], weights: Dict[str, np.ndarray]):
        """
        Assign values to a layer's variables.

        Raises:
            ValueError: if a key is not a variable of the layer
            ShapeMismatchError: if a value has the wrong shape
        """
        self._check_initialized()
        layer = self._resolve_layer(layer)
        unknown = set(weights) - set(layer.weights)
        if unknown:
            raise ValueError(f"Layer '{layer.name}' has no variables named {sorted(unknown)}")
        self._accessor.assign({variable_name(layer.weights[k]): v for k, v in weights.items()})

    def get_weights(self) -> Dict[str, Dict[str, np.ndarray]]:
        """Values of all layer variables as {layer name: {short name: array}}."""
        return {layer.name: self.get_layer_weights(layer)
                for layer in self.layers if layer.weights}

    def set_weights(self, weights: Dict[str, Dict[str, np.ndarray]]):
        for layer_name, layer_weights in weights.items():
            self.set_layer_weights(layer_name, layer_weights)

    def _variable_names(self, include_optimizer: bool) -> List[str]:
        names = [variable_name(v) for v in self.variables]
        if include_optimizer:
            names.extend(variable_name(v) for v in self.optimizer.variables())
        return names

    def load_weights_from_hdf5(self, path: str) -> List[str]:
        """
        Copy weights from a Keras HDF5 file into layers with matching names.

        Layers absent from the file keep their current values.

        Returns:
            Names of the layers that received weights
        """
        self._check_initialized()
        stored = read_hdf5_weights(path)
        loaded = []
        for layer in self.layers:
            if not layer.weights:
                continue
            if layer.name not in stored:
                logger.warning("No weights for layer '%s' in %s", layer.name, path)
                continue
            values = {k: v for k, v in stored[layer.name].items() if k in layer.weights}
            self.set_layer_weights(layer, values)
            loaded.append(layer.name)
        logger.debug("Loaded weights of %d layers from %s", len(loaded), path)
        return loaded

    # ------------------------------------------------------------------
    # Persistence

    def save(self, directory: str, save_optimizer_state: bool = False, overwrite: bool = False):
        """
        Save graph, configuration and variable values to a directory.

        Args:
            directory: Target directory
            save_optimizer_state: Whether optimizer slots are saved too
            overwrite: Whether a non-empty directory may be overwritten
        """
        self._check_initialized()
        if os.path.isdir(directory) and os.listdir(directory) and not overwrite:
            raise FileExistsError(f"Directory {directory} is not empty; pass overwrite=True")
        os.makedirs(directory, exist_ok=True)

        write_graph(self._graph, directory)
        write_config(self.get_config(), directory)
        values = self._accessor.read(self._variable_names(save_optimizer_state))
        save_variable_values(values, directory)
        logger.debug("Model '%s' saved to %s (%d variables)", self.name, directory, len(values))

    def load_weights(self, directory: str, load_optimizer_state: bool = False):
        """Load variable values written by save() into this compiled model."""
        self._check_compiled()
        if not os.path.isdir(directory):
            raise NotADirectoryError(directory)
        values = load_variable_values(directory, self._variable_names(load_optimizer_state))
        self._accessor.assign(values)
        self.is_initialized = True
        logger.debug("Weights of model '%s' loaded from %s", self.name, directory)

    @classmethod
    def load(cls, directory: str) -> 'Sequential':
        """
        Rebuild an uncompiled model from the configuration saved in directory.

        Compile it, then call load_weights(directory) to restore its values.
        """
        if not os.path.isdir(directory):
            raise NotADirectoryError(directory)
        return cls.from_config(read_config(directory))

    def get_config(self) -> Dict[str, Any]:
        config = {
            'class_name': 'Sequential',
            'config': {
                'name': self.name,
                'seed': self.seed,
                'layers': [serialize(layer) for layer in self.layers],
            },
        }
        if self.compiled:
            config['training_config'] = {
                'optimizer': {'class_name': self.optimizer.name,
                              'config': self.optimizer.get_config()},
                'loss': self.loss_fn.name,
                'metrics': [m.name for m in self.metrics],
            }
        return config

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'Sequential':
        """
        Build a model from get_config() output or a Keras Sequential JSON config.

        A Keras config whose first layer is not an InputLayer gets an Input
        layer derived from that layer's batch_input_shape.
        """
        model_config = config.get('config', config)
        if isinstance(model_config, list):
            # Older Keras versions store the layer list directly
            layer_configs, name, seed = model_config, None, 12
        else:
            layer_configs = model_config.get('layers', [])
            name = model_config.get('name')
            seed = model_config.get('seed', 12)

        layers = [deserialize(c) for c in layer_configs]
        if layers and not isinstance(layers[0], Input):
            first = layers[0]
            if first.declared_input_shape is None:
                raise ValueError("Model configuration defines no input shape")
            layers.insert(0, Input(*first.declared_input_shape))
        return cls(layers, name=name, seed=seed)

    # ------------------------------------------------------------------

    def _warn_on_trainability_change(self):
        for layer in self.layers:
            if self._trainable_snapshot.get(layer.name, layer.trainable) != layer.trainable:
                logger.warning("Layer '%s' changed its trainable flag after compile; "
                               "the change takes effect only in a newly compiled model",
                               layer.name)

    def summary(self, print_fn=print):
        """Print model summary."""
        shapes = self._infer_shapes()
        print_fn(f"Model: {self.name}")
        print_fn("=" * 65)
        print_fn(f"{'Layer (type)':<30} {'Output Shape':<20} {'Param #':<10}")
        print_fn("=" * 65)

        total_params = 0
        trainable_params = 0
        for layer, shape in zip(self.layers, shapes):
            layer_name = f"{layer.name} ({type(layer).__name__})"
            layer_params = layer.count_params()
            print_fn(f"{layer_name:<30} {str(shape):<20} {layer_params:<10}")

            total_params += layer_params
            trainable_params += sum(int(np.prod(v.shape.as_list()))
                                    for v in layer.trainable_variables)

        print_fn("=" * 65)
        print_fn(f"Total params: {total_params:,}")
        print_fn(f"Trainable params: {trainable_params:,}")
        print_fn(f"Non-trainable params: {total_params - trainable_params:,}")
        print_fn("=" * 65)

    def close(self):
        """Release the session and graph resources."""
        if self._session is not None:
            self._session.close()
            self._session = None
        if self.optimizer is not None:
            self.optimizer.release(self)
        self.is_initialized = False
        logger.debug("Model '%s' closed", self.name)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def __repr__(self):
        return f"Sequential(name={self.name!r}, layers={len(self.layers)})"
