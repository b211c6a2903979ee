"""
Base class for training callbacks.
"""

from typing import Any, Callable, Dict, Optional

import numpy as np


class Callback:
    """
    Hooks called by Sequential.fit().

    The model is attached with set_model() before on_train_begin().
    """

    def __init__(self):
        self.model = None

    def set_model(self, model):
        self.model = model

    def on_train_begin(self, logs: Optional[Dict[str, Any]] = None):
        """Called at the beginning of training."""

    def on_epoch_begin(self, epoch: int, logs: Optional[Dict[str, Any]] = None):
        """Called at the beginning of each epoch."""

    def on_epoch_end(self, epoch: int, logs: Optional[Dict[str, Any]] = None):
        """Called at the end of each epoch."""

    def on_train_end(self, logs: Optional[Dict[str, Any]] = None):
        """Called at the end of training."""


def resolve_monitor_op(mode: str, monitor: str) -> Callable[[Any, Any], bool]:
    """
    Comparison telling whether a monitored value improved.

    'auto' maximizes accuracy-like quantities and minimizes everything else.
    """
    if mode not in ['auto', 'min', 'max']:
        raise ValueError(f"Mode {mode} is unknown, please use one of 'auto', 'min', 'max'")
    if mode == 'min':
        return np.less
    if mode == 'max':
        return np.greater
    return np.greater if 'acc' in monitor else np.less
