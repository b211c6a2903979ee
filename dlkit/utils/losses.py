"""
Loss functions for dlkit models.
A loss reduces labels and raw model outputs to a scalar engine tensor and knows
how raw outputs are turned into predictions.
"""

from abc import ABC, abstractmethod
from typing import Union

import tensorflow as tf


class Loss(ABC):
    """Base class for all losses."""

    name = 'loss'

    @abstractmethod
    def __call__(self, y_true: tf.Tensor, y_pred: tf.Tensor) -> tf.Tensor:
        """
        Compute the mean loss over the batch.

        Args:
            y_true: Label tensor
            y_pred: Raw model output tensor

        Returns:
            Scalar loss tensor
        """

    def activate(self, output: tf.Tensor) -> tf.Tensor:
        """Turn raw model outputs into predictions."""
        return output


class SoftmaxCrossEntropyWithLogits(Loss):
    """
    Categorical cross entropy on unnormalized logits.

    Labels are one-hot; the last layer should use a linear activation.
    """

    name = 'softmax_cross_entropy_with_logits'

    def __call__(self, y_true, y_pred):
        return tf.reduce_mean(
            tf.nn.softmax_cross_entropy_with_logits(labels=y_true, logits=y_pred))

    def activate(self, output):
        return tf.nn.softmax(output)


class SigmoidCrossEntropyWithLogits(Loss):
    """Binary cross entropy on unnormalized logits."""

    name = 'sigmoid_cross_entropy_with_logits'

    def __call__(self, y_true, y_pred):
        return tf.reduce_mean(
            tf.nn.sigmoid_cross_entropy_with_logits(labels=y_true, logits=y_pred))

    def activate(self, output):
        return tf.math.sigmoid(output)


class MeanSquaredError(Loss):

    name = 'mse'

    def __call__(self, y_true, y_pred):
        return tf.reduce_mean(tf.math.squared_difference(y_pred, y_true))


class MeanAbsoluteError(Loss):

    name = 'mae'

    def __call__(self, y_true, y_pred):
        return tf.reduce_mean(tf.abs(y_pred - y_true))


class Huber(Loss):
    """Quadratic for small errors, linear beyond delta."""

    name = 'huber'

    def __init__(self, delta: float = 1.0):
        self.delta = delta

    def __call__(self, y_true, y_pred):
        error = tf.abs(y_pred - y_true)
        quadratic = tf.minimum(error, self.delta)
        linear = error - quadratic
        return tf.reduce_mean(0.5 * tf.square(quadratic) + self.delta * linear)


class Hinge(Loss):
    """Hinge loss; labels in {0, 1} are mapped to {-1, 1}."""

    name = 'hinge'

    def __call__(self, y_true, y_pred):
        signed = 2.0 * y_true - 1.0
        return tf.reduce_mean(tf.maximum(1.0 - signed * y_pred, 0.0))


_LOSSES = {
    'softmax_cross_entropy_with_logits': SoftmaxCrossEntropyWithLogits,
    'categorical_crossentropy': SoftmaxCrossEntropyWithLogits,
    'sigmoid_cross_entropy_with_logits': SigmoidCrossEntropyWithLogits,
    'binary_crossentropy': SigmoidCrossEntropyWithLogits,
    'mse': MeanSquaredError,
    'mean_squared_error': MeanSquaredError,
    'mae': MeanAbsoluteError,
    'mean_absolute_error': MeanAbsoluteError,
    'huber': Huber,
    'hinge': Hinge,
}


def get_loss(loss: Union[str, Loss]) -> Loss:
    """Resolve a loss by name or pass an instance through."""
    if isinstance(loss, Loss):
        return loss
    key = str(loss).lower()
    if key not in _LOSSES:
        raise ValueError(f"Unknown loss function: {loss}")
    return _LOSSES[key]()
