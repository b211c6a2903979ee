"""
Neural network layers for dlkit.
Each layer turns its hyperparameters into TensorFlow variables and ops when the
owning model builds its graph.
"""

import inspect
import math
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import numpy as np
import tensorflow as tf

from .activations import get_activation, serialize_activation
from .exceptions import ShapeMismatchError
from .initializers import Initializer, get_initializer, serialize_initializer

Shape = Tuple[Optional[int], ...]


def _pair(value: Union[int, Tuple[int, int], List[int]]) -> Tuple[int, int]:
    if isinstance(value, int):
        return (value, value)
    value = tuple(int(v) for v in value)
    if len(value) != 2:
        raise ValueError(f"Expected an int or a pair, got {value}")
    return value


def _in_training(training, true_fn: Callable, false_fn: Callable):
    """Pick a branch from a Python bool or build a tf.cond on a boolean tensor."""
    if isinstance(training, bool):
        return true_fn() if training else false_fn()
    return tf.cond(training, true_fn, false_fn)


class Layer(ABC):
    """
    Abstract base class for all layers.

    Shapes handled by layers always include the batch dimension as None,
    e.g. (None, 28, 28, 1).
    """

    def __init__(self, name: Optional[str] = None, trainable: bool = True,
                 input_shape: Optional[Tuple[int, ...]] = None):
        """
        Initialize the layer.

        Args:
            name: Optional name for the layer; the model assigns one if omitted
            trainable: Whether the optimizer may update this layer's variables
            input_shape: Optional per-sample input shape (without batch dimension)
                the layer insists on receiving
        """
        self.name = name
        self.trainable = trainable
        self.declared_input_shape = tuple(input_shape) if input_shape is not None else None
        self.built = False
        self.input_shape = None
        self.output_shape = None
        self.update_ops = []
        self._weights: Dict[str, tf.Variable] = {}
        self._non_trainable_weights = set()

    @abstractmethod
    def forward(self, x: tf.Tensor, training=False) -> tf.Tensor:
        """
        Emit the layer's ops on top of x.

        Args:
            x: Input tensor
            training: Python bool or boolean scalar tensor

        Returns:
            Output tensor
        """

    def compute_output_shape(self, input_shape: Shape) -> Shape:
        return input_shape

    def infer_output_shape(self, input_shape: Shape) -> Shape:
        """Validate input_shape against this layer and return the output shape."""
        input_shape = tuple(input_shape)
        if self.declared_input_shape is not None and input_shape[1:] != self.declared_input_shape:
            raise ShapeMismatchError(self.name, (None,) + self.declared_input_shape, input_shape)
        return self.compute_output_shape(input_shape)

    def build(self, input_shape: Shape):
        """
        Create the layer's variables in the current default graph.

        Args:
            input_shape: Shape of the input tensor, batch dimension included
        """
        self.output_shape = self.infer_output_shape(input_shape)
        self.input_shape = tuple(input_shape)
        self._weights = {}
        self._non_trainable_weights = set()
        self.update_ops = []
        self.create_variables(self.input_shape)
        self.built = True

    def create_variables(self, input_shape: Shape):
        """Hook for layers holding variables."""

    def add_weight(self, name: str, shape: Tuple[int, ...], initializer: Initializer,
                   fan_in: int, fan_out: int, trainable: bool = True) -> tf.Variable:
        variable = tf.Variable(initializer(shape, fan_in, fan_out), name=name,
                               trainable=trainable, dtype=tf.float32)
        self._weights[name] = variable
        if not trainable:
            self._non_trainable_weights.add(name)
        return variable

    @property
    def weights(self) -> Dict[str, tf.Variable]:
        """Variables of this layer keyed by their short name ('kernel', 'bias', ...)."""
        return dict(self._weights)

    @property
    def variables(self) -> List[tf.Variable]:
        return list(self._weights.values())

    @property
    def trainable_variables(self) -> List[tf.Variable]:
        if not self.trainable:
            return []
        return [v for n, v in self._weights.items() if n not in self._non_trainable_weights]

    @property
    def has_activation(self) -> bool:
        return False

    def count_params(self) -> int:
        if not self.built:
            return 0
        return int(sum(np.prod(v.shape.as_list()) for v in self._weights.values()))

    def get_config(self) -> Dict[str, Any]:
        """Get layer configuration."""
        config = {'name': self.name, 'trainable': self.trainable}
        if self.declared_input_shape is not None:
            config['input_shape'] = list(self.declared_input_shape)
        return config

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'Layer':
        accepted = inspect.signature(cls.__init__).parameters
        layer = cls(**{k: v for k, v in config.items() if k in accepted})
        if config.get('input_shape') is not None and layer.declared_input_shape is None:
            layer.declared_input_shape = tuple(config['input_shape'])
        return layer

    def __call__(self, x: tf.Tensor, training=False) -> tf.Tensor:
        if not self.built:
            self.build(tuple(x.shape.as_list()))
        return self.forward(x, training)

    def __repr__(self):
        return f"{type(self).__name__}(name={self.name!r})"


class Input(Layer):
    """
    Entry point of a Sequential model.

    Declares the per-sample shape of the data fed to the model.
    """

    def __init__(self, *dims: int, name: Optional[str] = 'input'):
        super().__init__(name=name, trainable=False)
        if not dims:
            raise ValueError("Input requires at least one dimension")
        if any(int(d) <= 0 for d in dims):
            raise ValueError(f"Input dimensions must be positive, got {dims}")
        self.dims = tuple(int(d) for d in dims)
        self.input_shape = (None,) + self.dims
        self.output_shape = self.input_shape

    def compute_output_shape(self, input_shape):
        return (None,) + self.dims

    def forward(self, x, training=False):
        return x

    def get_config(self):
        return {'name': self.name, 'dims': list(self.dims)}

    @classmethod
    def from_config(cls, config):
        if 'dims' in config:
            dims = config['dims']
        else:
            # Keras InputLayer
            shape = config.get('batch_input_shape') or config.get('batch_shape')
            dims = shape[1:]
        return cls(*dims, name=config.get('name', 'input'))


class Dense(Layer):
    """
    Fully connected layer.

    Performs the operation: output = activation(dot(input, kernel) + bias)
    """

    def __init__(self, units: int, activation: Optional[Union[str, Callable]] = None,
                 use_bias: bool = True,
                 kernel_initializer: Union[str, dict, Initializer] = 'glorot_uniform',
                 bias_initializer: Union[str, dict, Initializer] = 'zeros',
                 name: Optional[str] = None, trainable: bool = True,
                 input_shape: Optional[Tuple[int, ...]] = None):
        """
        Initialize Dense layer.

        Args:
            units: Number of output units
            activation: Activation function name or callable
            use_bias: Whether to add a bias vector
            kernel_initializer: Kernel initializer name or instance
            bias_initializer: Bias initializer name or instance
            name: Layer name
            trainable: Whether the layer's variables are updated during training
            input_shape: Optional expected per-sample input shape
        """
        super().__init__(name, trainable, input_shape)
        if units <= 0:
            raise ValueError(f"Dense units must be positive, got {units}")
        self.units = units
        self.activation = get_activation(activation)
        self.use_bias = use_bias
        self.kernel_initializer = get_initializer(kernel_initializer)
        self.bias_initializer = get_initializer(bias_initializer)

        self.kernel = None
        self.bias = None

    def compute_output_shape(self, input_shape):
        if len(input_shape) != 2:
            raise ShapeMismatchError(
                self.name, '(None, features)', input_shape,
                f"Dense layer '{self.name}' expects 2D input (batch, features), got {input_shape}; "
                f"add a Flatten layer before it"
            )
        return (input_shape[0], self.units)

    def create_variables(self, input_shape):
        input_dim = input_shape[-1]
        self.kernel = self.add_weight('kernel', (input_dim, self.units),
                                      self.kernel_initializer, input_dim, self.units)
        if self.use_bias:
            self.bias = self.add_weight('bias', (self.units,),
                                        self.bias_initializer, input_dim, self.units)

    def forward(self, x, training=False):
        output = tf.matmul(x, self.kernel)
        if self.use_bias:
            output = tf.nn.bias_add(output, self.bias)
        return self.activation(output)

    @property
    def has_activation(self):
        return True

    def get_config(self):
        config = super().get_config()
        config.update({
            'units': self.units,
            'activation': serialize_activation(self.activation),
            'use_bias': self.use_bias,
            'kernel_initializer': serialize_initializer(self.kernel_initializer),
            'bias_initializer': serialize_initializer(self.bias_initializer),
        })
        return config


class Conv2D(Layer):
    """
    2D convolution over NHWC images.
    """

    def __init__(self, filters: int, kernel_size: Union[int, Tuple[int, int]] = 3,
                 strides: Union[int, Tuple[int, int]] = 1,
                 dilations: Union[int, Tuple[int, int]] = 1,
                 padding: str = 'valid', activation: Optional[Union[str, Callable]] = None,
                 use_bias: bool = True,
                 kernel_initializer: Union[str, dict, Initializer] = 'glorot_uniform',
                 bias_initializer: Union[str, dict, Initializer] = 'zeros',
                 name: Optional[str] = None, trainable: bool = True,
                 input_shape: Optional[Tuple[int, ...]] = None):
        """
        Initialize Conv2D layer.

        Args:
            filters: Number of output filters
            kernel_size: Height and width of the convolution window
            strides: Stride of the convolution
            dilations: Dilation rate; cannot exceed 1 when strides exceed 1
            padding: 'valid' or 'same'
            activation: Activation function
            use_bias: Whether to add a bias per filter
            kernel_initializer: Kernel initializer
            bias_initializer: Bias initializer
            name: Layer name
            trainable: Whether the layer's variables are updated during training
            input_shape: Optional expected per-sample input shape
        """
        super().__init__(name, trainable, input_shape)
        self.filters = filters
        self.kernel_size = _pair(kernel_size)
        self.strides = _pair(strides)
        self.dilations = _pair(dilations)
        self.padding = padding.lower()
        if self.padding not in ('valid', 'same'):
            raise ValueError(f"Unknown padding: {padding}")
        if max(self.strides) > 1 and max(self.dilations) > 1:
            raise ValueError("Conv2D does not support dilations > 1 together with strides > 1")
        self.activation = get_activation(activation)
        self.use_bias = use_bias
        self.kernel_initializer = get_initializer(kernel_initializer)
        self.bias_initializer = get_initializer(bias_initializer)

        self.kernel = None
        self.bias = None

    def compute_output_shape(self, input_shape):
        if len(input_shape) != 4:
            raise ShapeMismatchError(
                self.name, '(None, height, width, channels)', input_shape,
                f"Conv2D layer '{self.name}' expects 4D input, got {len(input_shape)}D {input_shape}"
            )
        _, height, width, _ = input_shape
        out_h = _conv_output_length(height, self.kernel_size[0], self.strides[0],
                                    self.dilations[0], self.padding)
        out_w = _conv_output_length(width, self.kernel_size[1], self.strides[1],
                                    self.dilations[1], self.padding)
        if out_h <= 0 or out_w <= 0:
            raise ShapeMismatchError(
                self.name, 'spatial size covering the kernel', input_shape,
                f"Conv2D layer '{self.name}' produces empty output for input {input_shape}"
            )
        return (input_shape[0], out_h, out_w, self.filters)

    def create_variables(self, input_shape):
        in_channels = input_shape[-1]
        receptive_field = self.kernel_size[0] * self.kernel_size[1]
        fan_in = in_channels * receptive_field
        fan_out = self.filters * receptive_field
        self.kernel = self.add_weight('kernel', self.kernel_size + (in_channels, self.filters),
                                      self.kernel_initializer, fan_in, fan_out)
        if self.use_bias:
            self.bias = self.add_weight('bias', (self.filters,),
                                        self.bias_initializer, fan_in, fan_out)

    def forward(self, x, training=False):
        output = tf.nn.conv2d(x, self.kernel,
                              strides=[1, self.strides[0], self.strides[1], 1],
                              padding=self.padding.upper(),
                              dilations=[1, self.dilations[0], self.dilations[1], 1])
        if self.use_bias:
            output = tf.nn.bias_add(output, self.bias)
        return self.activation(output)

    @property
    def has_activation(self):
        return True

    def get_config(self):
        config = super().get_config()
        config.update({
            'filters': self.filters,
            'kernel_size': list(self.kernel_size),
            'strides': list(self.strides),
            'dilations': list(self.dilations),
            'padding': self.padding,
            'activation': serialize_activation(self.activation),
            'use_bias': self.use_bias,
            'kernel_initializer': serialize_initializer(self.kernel_initializer),
            'bias_initializer': serialize_initializer(self.bias_initializer),
        })
        return config


def _conv_output_length(length: int, kernel: int, stride: int, dilation: int, padding: str) -> int:
    if padding == 'same':
        return math.ceil(length / stride)
    effective_kernel = (kernel - 1) * dilation + 1
    return math.ceil((length - effective_kernel + 1) / stride)


class _Pool2D(Layer):

    _pool_fn = None

    def __init__(self, pool_size: Union[int, Tuple[int, int]] = 2,
                 strides: Optional[Union[int, Tuple[int, int]]] = None,
                 padding: str = 'valid', name: Optional[str] = None):
        super().__init__(name, trainable=False)
        self.pool_size = _pair(pool_size)
        self.strides = _pair(strides) if strides is not None else self.pool_size
        self.padding = padding.lower()
        if self.padding not in ('valid', 'same'):
            raise ValueError(f"Unknown padding: {padding}")

    def compute_output_shape(self, input_shape):
        if len(input_shape) != 4:
            raise ShapeMismatchError(
                self.name, '(None, height, width, channels)', input_shape,
                f"{type(self).__name__} layer '{self.name}' expects 4D input, got {input_shape}"
            )
        _, height, width, channels = input_shape
        out_h = _conv_output_length(height, self.pool_size[0], self.strides[0], 1, self.padding)
        out_w = _conv_output_length(width, self.pool_size[1], self.strides[1], 1, self.padding)
        if out_h <= 0 or out_w <= 0:
            raise ShapeMismatchError(
                self.name, 'spatial size covering the pool window', input_shape,
                f"{type(self).__name__} layer '{self.name}' produces empty output for input {input_shape}"
            )
        return (input_shape[0], out_h, out_w, channels)

    def forward(self, x, training=False):
        return type(self)._pool_fn(x, ksize=[1, *self.pool_size, 1],
                                   strides=[1, *self.strides, 1],
                                   padding=self.padding.upper())

    def get_config(self):
        return {
            'name': self.name,
            'pool_size': list(self.pool_size),
            'strides': list(self.strides),
            'padding': self.padding,
        }


class MaxPool2D(_Pool2D):
    """Max pooling over NHWC images."""

    _pool_fn = staticmethod(tf.nn.max_pool2d)


class AvgPool2D(_Pool2D):
    """Average pooling over NHWC images."""

    _pool_fn = staticmethod(tf.nn.avg_pool2d)


class Flatten(Layer):
    """Collapse all non-batch dimensions into one."""

    def __init__(self, name: Optional[str] = None):
        super().__init__(name, trainable=False)

    def compute_output_shape(self, input_shape):
        if len(input_shape) < 2:
            raise ShapeMismatchError(self.name, '(None, ...)', input_shape)
        return (input_shape[0], int(np.prod(input_shape[1:])))

    def forward(self, x, training=False):
        return tf.reshape(x, [-1, self.output_shape[1]])

    def get_config(self):
        return {'name': self.name}


class Reshape(Layer):
    """Reshape every sample to target_shape."""

    def __init__(self, target_shape: Tuple[int, ...], name: Optional[str] = None):
        super().__init__(name, trainable=False)
        self.target_shape = tuple(int(d) for d in target_shape)

    def compute_output_shape(self, input_shape):
        if int(np.prod(input_shape[1:])) != int(np.prod(self.target_shape)):
            raise ShapeMismatchError(
                self.name, f"{int(np.prod(self.target_shape))} elements per sample", input_shape,
                f"Cannot reshape {input_shape} to {(None,) + self.target_shape} "
                f"in layer '{self.name}'"
            )
        return (input_shape[0],) + self.target_shape

    def forward(self, x, training=False):
        return tf.reshape(x, [-1, *self.target_shape])

    def get_config(self):
        return {'name': self.name, 'target_shape': list(self.target_shape)}


class Dropout(Layer):
    """
    Dropout layer for regularization.

    Randomly sets input units to 0 with a frequency of rate at each step during training.
    """

    def __init__(self, rate: float, seed: Optional[int] = None, name: Optional[str] = None):
        super().__init__(name, trainable=False)
        if not 0 <= rate < 1:
            raise ValueError(f"Dropout rate must be in [0, 1), got {rate}")
        self.rate = rate
        self.seed = seed

    def forward(self, x, training=False):
        if self.rate == 0:
            return x
        return _in_training(training,
                            lambda: tf.nn.dropout(x, rate=self.rate, seed=self.seed),
                            lambda: tf.identity(x))

    def get_config(self):
        return {'name': self.name, 'rate': self.rate, 'seed': self.seed}


class BatchNorm(Layer):
    """
    Batch normalization over the last axis.

    Uses batch statistics while training and the moving averages otherwise.
    The moving averages are refreshed by update_ops, which the model runs with
    each training step. A layer built with trainable=False always runs in
    inference mode, so none of its weights change during fit().
    """

    def __init__(self, momentum: float = 0.99, epsilon: float = 1e-3,
                 center: bool = True, scale: bool = True,
                 name: Optional[str] = None, trainable: bool = True):
        super().__init__(name, trainable)
        self.momentum = momentum
        self.epsilon = epsilon
        self.center = center
        self.scale = scale

        self.gamma = None
        self.beta = None
        self.moving_mean = None
        self.moving_variance = None

    def compute_output_shape(self, input_shape):
        if len(input_shape) < 2:
            raise ShapeMismatchError(self.name, '(None, ..., channels)', input_shape)
        return input_shape

    def create_variables(self, input_shape):
        channels = input_shape[-1]
        param_shape = (channels,)
        if self.scale:
            self.gamma = self.add_weight('gamma', param_shape, get_initializer('ones'),
                                         channels, channels)
        if self.center:
            self.beta = self.add_weight('beta', param_shape, get_initializer('zeros'),
                                        channels, channels)
        self.moving_mean = self.add_weight('moving_mean', param_shape, get_initializer('zeros'),
                                           channels, channels, trainable=False)
        self.moving_variance = self.add_weight('moving_variance', param_shape,
                                               get_initializer('ones'), channels, channels,
                                               trainable=False)

    def forward(self, x, training=False):
        if not self.trainable:
            # frozen: normalize with the moving statistics and never update them
            self.update_ops = []
            return tf.nn.batch_normalization(x, self.moving_mean, self.moving_variance,
                                             offset=self.beta, scale=self.gamma,
                                             variance_epsilon=self.epsilon)

        axes = list(range(len(x.shape) - 1))
        batch_mean, batch_variance = tf.nn.moments(x, axes)

        decay = 1.0 - self.momentum
        self.update_ops = [
            self.moving_mean.assign_sub((self.moving_mean - batch_mean) * decay,
                                        read_value=False),
            self.moving_variance.assign_sub((self.moving_variance - batch_variance) * decay,
                                            read_value=False),
        ]

        mean, variance = _in_training(
            training,
            lambda: (batch_mean, batch_variance),
            lambda: (tf.identity(self.moving_mean), tf.identity(self.moving_variance)),
        )
        return tf.nn.batch_normalization(x, mean, variance,
                                         offset=self.beta, scale=self.gamma,
                                         variance_epsilon=self.epsilon)

    def get_config(self):
        config = super().get_config()
        config.update({'momentum': self.momentum, 'epsilon': self.epsilon,
                       'center': self.center, 'scale': self.scale})
        return config


class Activation(Layer):
    """Apply an activation function as a standalone layer."""

    def __init__(self, activation: Union[str, Callable], name: Optional[str] = None):
        super().__init__(name, trainable=False)
        self.activation = get_activation(activation)

    def forward(self, x, training=False):
        return self.activation(x)

    @property
    def has_activation(self):
        return True

    def get_config(self):
        return {'name': self.name, 'activation': serialize_activation(self.activation)}


_LAYERS = {
    'Input': Input,
    'InputLayer': Input,
    'Dense': Dense,
    'Conv2D': Conv2D,
    'MaxPool2D': MaxPool2D,
    'MaxPooling2D': MaxPool2D,
    'AvgPool2D': AvgPool2D,
    'AveragePooling2D': AvgPool2D,
    'Flatten': Flatten,
    'Reshape': Reshape,
    'Dropout': Dropout,
    'BatchNorm': BatchNorm,
    'BatchNormalization': BatchNorm,
    'Activation': Activation,
}

# Keras config keys that map onto differently named arguments here
_KEY_ALIASES = {
    'dilation_rate': 'dilations',
}


def serialize(layer: Layer) -> Dict[str, Any]:
    """Serialize a layer to a {'class_name', 'config'} dictionary."""
    return {'class_name': type(layer).__name__, 'config': layer.get_config()}


def deserialize(config: Dict[str, Any]) -> Layer:
    """
    Rebuild a layer from its serialized form.

    Accepts the format produced by serialize() as well as Keras layer configs,
    whose class names and a few argument names differ.

    Args:
        config: Dictionary with 'class_name' and 'config' keys

    Returns:
        Layer instance
    """
    class_name = config.get('class_name')
    if class_name not in _LAYERS:
        raise ValueError(f"Unknown layer type: {class_name}")
    layer_config = {_KEY_ALIASES.get(k, k): v for k, v in (config.get('config') or {}).items()}

    if class_name != 'InputLayer' and 'batch_input_shape' in layer_config:
        layer_config['input_shape'] = layer_config.pop('batch_input_shape')[1:]
    return _LAYERS[class_name].from_config(layer_config)
