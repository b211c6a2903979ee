"""Losses, metrics and plotting helpers."""

from .losses import (Loss, SoftmaxCrossEntropyWithLogits, SigmoidCrossEntropyWithLogits,
                     MeanSquaredError, MeanAbsoluteError, Huber, Hinge, get_loss)
from .metrics import Metric, Accuracy, get_metric
from .visualization import plot_history

__all__ = [
    'Loss', 'SoftmaxCrossEntropyWithLogits', 'SigmoidCrossEntropyWithLogits',
    'MeanSquaredError', 'MeanAbsoluteError', 'Huber', 'Hinge', 'get_loss',
    'Metric', 'Accuracy', 'get_metric', 'plot_history',
]
