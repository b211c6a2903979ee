"""
Metrics evaluated inside the model graph.
Each metric reduces labels and predictions of one batch to a scalar tensor.
"""

from abc import ABC, abstractmethod
from typing import Union

import tensorflow as tf


class Metric(ABC):
    """Base class for all metrics."""

    name = 'metric'

    @abstractmethod
    def __call__(self, y_true: tf.Tensor, y_pred: tf.Tensor) -> tf.Tensor:
        """
        Compute the metric over one batch.

        Args:
            y_true: Label tensor
            y_pred: Activated model predictions

        Returns:
            Scalar metric tensor
        """


class Accuracy(Metric):
    """
    Fraction of correctly classified samples.

    Multi-column outputs compare argmax positions; single-column outputs are
    thresholded at 0.5.
    """

    name = 'accuracy'

    def __call__(self, y_true, y_pred):
        if y_pred.shape[-1] == 1:
            predicted = tf.cast(y_pred > 0.5, tf.float32)
            correct = tf.equal(predicted, tf.cast(y_true, tf.float32))
        else:
            correct = tf.equal(tf.argmax(y_pred, axis=-1), tf.argmax(y_true, axis=-1))
        return tf.reduce_mean(tf.cast(correct, tf.float32))


class MeanAbsoluteError(Metric):

    name = 'mae'

    def __call__(self, y_true, y_pred):
        return tf.reduce_mean(tf.abs(y_pred - y_true))


class MeanSquaredError(Metric):

    name = 'mse'

    def __call__(self, y_true, y_pred):
        return tf.reduce_mean(tf.math.squared_difference(y_pred, y_true))


_METRICS = {
    'accuracy': Accuracy,
    'acc': Accuracy,
    'mae': MeanAbsoluteError,
    'mean_absolute_error': MeanAbsoluteError,
    'mse': MeanSquaredError,
    'mean_squared_error': MeanSquaredError,
}


def get_metric(metric: Union[str, Metric]) -> Metric:
    """Resolve a metric by name or pass an instance through."""
    if isinstance(metric, Metric):
        return metric
    key = str(metric).lower()
    if key not in _METRICS:
        raise ValueError(f"Unknown metric: {metric}")
    return _METRICS[key]()
