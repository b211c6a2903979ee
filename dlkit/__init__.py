"""
dlkit - A high-level deep learning library on top of TensorFlow graphs.

This package provides:
- Layers, activations and initializers that translate into engine ops
- Optimizers emitting the engine's native update operators
- The Sequential model container with training, evaluation and persistence
- An inference wrapper for saved models
- Image preprocessing operations
- Callbacks, datasets and ready-made architectures
"""

import logging

__version__ = "0.1.0"

# Core imports
from dlkit.core.layers import (Layer, Input, Dense, Conv2D, MaxPool2D, AvgPool2D, Flatten,
                               Reshape, Dropout, BatchNorm, Activation)
from dlkit.core.model import Sequential
from dlkit.core.optimizer import (Optimizer, SGD, Adam, Adamax, RMSProp, AdaGrad, AdaDelta, Ftrl,
                                  ClipGradientByValue, ClipGradientByNorm, NoClipGradient)
from dlkit.core.exceptions import (DLKitError, ShapeMismatchError, SlotNotFoundError,
                                   ModelNotCompiledError, ModelNotInitializedError,
                                   ShapeNotDefinedError, TensorNotFoundError)

# Inference and data
from dlkit.inference.inference_model import InferenceModel
from dlkit.dataset.dataset import Dataset

# Utilities
from dlkit.utils.losses import SoftmaxCrossEntropyWithLogits, MeanSquaredError
from dlkit.utils.metrics import Accuracy
from dlkit.callbacks.early_stopping import EarlyStopping
from dlkit.callbacks.model_checkpoint import ModelCheckpoint

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Core
    'Layer', 'Input', 'Dense', 'Conv2D', 'MaxPool2D', 'AvgPool2D', 'Flatten', 'Reshape',
    'Dropout', 'BatchNorm', 'Activation', 'Sequential',
    'Optimizer', 'SGD', 'Adam', 'Adamax', 'RMSProp', 'AdaGrad', 'AdaDelta', 'Ftrl',
    'ClipGradientByValue', 'ClipGradientByNorm', 'NoClipGradient',

    # Errors
    'DLKitError', 'ShapeMismatchError', 'SlotNotFoundError', 'ModelNotCompiledError',
    'ModelNotInitializedError', 'ShapeNotDefinedError', 'TensorNotFoundError',

    # Inference and data
    'InferenceModel', 'Dataset',

    # Utils
    'SoftmaxCrossEntropyWithLogits', 'MeanSquaredError', 'Accuracy',
    'EarlyStopping', 'ModelCheckpoint'
]
