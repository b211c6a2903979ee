"""Callbacks for training neural networks."""

from .base import Callback
from .early_stopping import EarlyStopping, ReduceLROnPlateau, LearningRateScheduler
from .model_checkpoint import ModelCheckpoint, CSVLogger

__all__ = [
    'Callback', 'EarlyStopping', 'ReduceLROnPlateau', 'LearningRateScheduler',
    'ModelCheckpoint', 'CSVLogger',
]
