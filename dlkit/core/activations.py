"""
Activation functions for dlkit layers.
Each activation maps an engine tensor to an engine tensor.
"""

from typing import Callable, Optional, Union

import tensorflow as tf


def linear(x: tf.Tensor) -> tf.Tensor:
    """Identity activation."""
    return x


def relu(x: tf.Tensor) -> tf.Tensor:
    return tf.nn.relu(x)


def relu6(x: tf.Tensor) -> tf.Tensor:
    return tf.nn.relu6(x)


def elu(x: tf.Tensor) -> tf.Tensor:
    return tf.nn.elu(x)


def selu(x: tf.Tensor) -> tf.Tensor:
    return tf.nn.selu(x)


def sigmoid(x: tf.Tensor) -> tf.Tensor:
    return tf.math.sigmoid(x)


def tanh(x: tf.Tensor) -> tf.Tensor:
    return tf.math.tanh(x)


def softmax(x: tf.Tensor, axis: int = -1) -> tf.Tensor:
    """Softmax over the given axis."""
    return tf.nn.softmax(x, axis=axis)


def softplus(x: tf.Tensor) -> tf.Tensor:
    return tf.math.softplus(x)


def softsign(x: tf.Tensor) -> tf.Tensor:
    return tf.math.softsign(x)


def swish(x: tf.Tensor) -> tf.Tensor:
    """Swish activation: x * sigmoid(x)."""
    return x * tf.math.sigmoid(x)


def leaky_relu(x: tf.Tensor, alpha: float = 0.2) -> tf.Tensor:
    return tf.nn.leaky_relu(x, alpha=alpha)


_ACTIVATIONS = {
    'linear': linear,
    'relu': relu,
    'relu6': relu6,
    'elu': elu,
    'selu': selu,
    'sigmoid': sigmoid,
    'tanh': tanh,
    'softmax': softmax,
    'softplus': softplus,
    'softsign': softsign,
    'swish': swish,
    'leaky_relu': leaky_relu,
}


def get_activation(activation: Optional[Union[str, Callable]]) -> Callable:
    """
    Resolve an activation by name.

    Args:
        activation: Activation name, callable, or None (linear)

    Returns:
        Callable applying the activation to a tensor
    """
    if activation is None:
        return linear
    if callable(activation):
        return activation

    name = activation.lower()
    if name not in _ACTIVATIONS:
        raise ValueError(f"Unknown activation function: {activation}")
    return _ACTIVATIONS[name]


def serialize_activation(activation: Callable) -> str:
    """Return the registered name of an activation function."""
    for name, fn in _ACTIVATIONS.items():
        if fn is activation:
            return name
    return getattr(activation, '__name__', 'custom')
