"""
Callbacks reacting to epoch results: early stopping and learning-rate control.
"""

import inspect
import logging
from typing import Any, Callable, Dict, Optional

import numpy as np

from .base import Callback, resolve_monitor_op

logger = logging.getLogger(__name__)


class EarlyStopping(Callback):
    """
    Set model.stop_training once the monitored value stops improving.

    Sequential.fit() checks the flag after every epoch.
    """

    def __init__(self, monitor: str = 'val_loss', min_delta: float = 0,
                 patience: int = 0, mode: str = 'auto',
                 baseline: Optional[float] = None, restore_best_weights: bool = False):
        """
        Args:
            monitor: Key of the epoch logs to watch, e.g. 'val_loss' or 'accuracy'
            min_delta: Smallest change counted as an improvement
            patience: Epochs without improvement tolerated before stopping
            mode: 'min', 'max', or 'auto' (maximize names containing 'acc')
            baseline: Value the monitored quantity has to beat from the first epoch
            restore_best_weights: On stop, put back the weights of the best epoch
                via Sequential.set_weights()
        """
        super().__init__()
        self.monitor = monitor
        self.patience = patience
        self.baseline = baseline
        self.restore_best_weights = restore_best_weights

        self.monitor_op = resolve_monitor_op(mode, monitor)
        self.min_delta = abs(min_delta) if self.monitor_op == np.greater else -abs(min_delta)

        self.best = None
        self.wait = 0
        self.stopped_epoch = 0
        self.best_epoch = 0
        self.best_weights = None

    def on_train_begin(self, logs: Optional[Dict[str, Any]] = None):
        self.wait = 0
        self.stopped_epoch = 0
        self.best_epoch = 0
        self.best_weights = None
        if self.baseline is None:
            self.best = np.inf if self.monitor_op == np.less else -np.inf
        else:
            self.best = self.baseline

    def on_epoch_end(self, epoch: int, logs: Optional[Dict[str, Any]] = None):
        current = (logs or {}).get(self.monitor)
        if current is None:
            logger.warning("EarlyStopping: metric '%s' is not in the epoch results %s",
                           self.monitor, sorted(logs or {}))
            return

        if self.monitor_op(current - self.min_delta, self.best):
            self.best, self.best_epoch, self.wait = current, epoch, 0
            if self.restore_best_weights:
                self.best_weights = self.model.get_weights()
            return

        self.wait += 1
        if self.wait < self.patience:
            return

        self.stopped_epoch = epoch
        self.model.stop_training = True
        if self.restore_best_weights and self.best_weights is not None:
            logger.info("EarlyStopping: restoring weights of epoch %d", self.best_epoch + 1)
            self.model.set_weights(self.best_weights)

    def on_train_end(self, logs: Optional[Dict[str, Any]] = None):
        if self.stopped_epoch > 0:
            logger.info("EarlyStopping: stopped after epoch %d", self.stopped_epoch + 1)


class ReduceLROnPlateau(Callback):
    """Multiply the optimizer's learning rate by factor when progress stalls."""

    def __init__(self, monitor: str = 'val_loss', factor: float = 0.1,
                 patience: int = 10, mode: str = 'auto',
                 min_delta: float = 1e-4, cooldown: int = 0, min_lr: float = 0):
        """
        Args:
            monitor: Key of the epoch logs to watch
            factor: Multiplier applied to the learning rate, below 1
            patience: Epochs without improvement before reducing
            mode: 'min', 'max' or 'auto'
            min_delta: Smallest change counted as an improvement
            cooldown: Epochs after a reduction during which stalls are not counted
            min_lr: The learning rate is never reduced below this value
        """
        super().__init__()
        if factor >= 1.0:
            raise ValueError(f"ReduceLROnPlateau factor must be below 1.0, got {factor}")
        self.monitor = monitor
        self.factor = factor
        self.patience = patience
        self.cooldown = cooldown
        self.min_lr = min_lr

        self.monitor_op = resolve_monitor_op(mode, monitor)
        self.min_delta = abs(min_delta) if self.monitor_op == np.greater else -abs(min_delta)

        self.cooldown_counter = 0
        self.wait = 0
        self.best = None

    def on_train_begin(self, logs: Optional[Dict[str, Any]] = None):
        self.wait = 0
        self.cooldown_counter = 0
        self.best = np.inf if self.monitor_op == np.less else -np.inf

    def in_cooldown(self) -> bool:
        return self.cooldown_counter > 0

    def on_epoch_end(self, epoch: int, logs: Optional[Dict[str, Any]] = None):
        current = (logs or {}).get(self.monitor)
        if current is None:
            logger.warning("ReduceLROnPlateau: metric '%s' is not in the epoch results %s",
                           self.monitor, sorted(logs or {}))
            return

        if self.in_cooldown():
            self.cooldown_counter -= 1
            self.wait = 0

        if self.monitor_op(current - self.min_delta, self.best):
            self.best = current
            self.wait = 0
            return
        if self.in_cooldown():
            return

        self.wait += 1
        if self.wait < self.patience:
            return

        optimizer = self.model.optimizer
        old_lr = optimizer.learning_rate
        # min_lr * 1e-4 tolerates float noise around min_lr
        if old_lr > self.min_lr * (1 + 1e-4):
            optimizer.learning_rate = max(old_lr * self.factor, self.min_lr)
            logger.info("Epoch %d: learning rate reduced from %s to %s",
                        epoch + 1, old_lr, optimizer.learning_rate)
            self.cooldown_counter = self.cooldown
            self.wait = 0


class LearningRateScheduler(Callback):
    """
    Set the learning rate from a schedule before every epoch.

    The schedule is called as schedule(epoch) or, if it takes two
    arguments, schedule(epoch, current_learning_rate).
    """

    def __init__(self, schedule: Callable[..., float]):
        super().__init__()
        self.schedule = schedule
        self._pass_lr = len(inspect.signature(schedule).parameters) > 1

    def on_epoch_begin(self, epoch: int, logs: Optional[Dict[str, Any]] = None):
        if self.model is None:
            raise ValueError("LearningRateScheduler is not attached to a model")

        optimizer = self.model.optimizer
        if self._pass_lr:
            lr = self.schedule(epoch, optimizer.learning_rate)
        else:
            lr = self.schedule(epoch)
        optimizer.learning_rate = float(lr)
        logger.debug("Epoch %d: learning rate set to %s", epoch + 1, optimizer.learning_rate)
