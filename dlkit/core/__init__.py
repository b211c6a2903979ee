"""Core framework components for dlkit."""

from .layers import (Layer, Input, Dense, Conv2D, MaxPool2D, AvgPool2D, Flatten, Reshape,
                     Dropout, BatchNorm, Activation)
from .model import Sequential
from .optimizer import Optimizer, SGD, Adam, Adamax, RMSProp, AdaGrad, AdaDelta, Ftrl

__all__ = [
    'Layer', 'Input', 'Dense', 'Conv2D', 'MaxPool2D', 'AvgPool2D', 'Flatten', 'Reshape',
    'Dropout', 'BatchNorm', 'Activation', 'Sequential',
    'Optimizer', 'SGD', 'Adam', 'Adamax', 'RMSProp', 'AdaGrad', 'AdaDelta', 'Ftrl'
]
