"""
Callbacks persisting training progress: model checkpoints and CSV epoch logs.
"""

import csv
import logging
import os
from typing import Any, Dict, Optional

import numpy as np

from .base import Callback, resolve_monitor_op

logger = logging.getLogger(__name__)


class ModelCheckpoint(Callback):
    """
    Write a saved-model directory every `period` epochs.

    Checkpoints use the layout of Sequential.save(), so they can be served
    with InferenceModel.load() or resumed with Sequential.load() followed by
    compile() and load_weights().
    """

    def __init__(self, filepath: str, monitor: str = 'val_loss',
                 save_best_only: bool = False, save_optimizer_state: bool = False,
                 mode: str = 'auto', period: int = 1):
        """
        Args:
            filepath: Target directory. May hold format fields such as
                '{epoch:02d}' or '{val_loss:.3f}', filled from the epoch results
            monitor: Key of the epoch results compared when save_best_only is set
            save_best_only: Skip epochs that do not improve on the best value so far
            save_optimizer_state: Include optimizer slots so training can resume
            mode: 'min', 'max' or 'auto'
            period: Number of epochs between checkpoints
        """
        super().__init__()
        self.filepath = filepath
        self.monitor = monitor
        self.save_best_only = save_best_only
        self.save_optimizer_state = save_optimizer_state
        self.period = period

        self.monitor_op = resolve_monitor_op(mode, monitor)
        self.best = np.inf if self.monitor_op == np.less else -np.inf
        self._since_last_save = 0

    def on_train_begin(self, logs: Optional[Dict[str, Any]] = None):
        self._since_last_save = 0

    def on_epoch_end(self, epoch: int, logs: Optional[Dict[str, Any]] = None):
        self._since_last_save += 1
        if self._since_last_save < self.period:
            return
        self._since_last_save = 0

        logs = logs or {}
        directory = self.filepath.format(epoch=epoch + 1, **logs)
        if self.save_best_only and not self._improved(epoch, logs):
            return

        logger.info("Epoch %d: saving model to %s", epoch + 1, directory)
        self.model.save(directory, save_optimizer_state=self.save_optimizer_state, overwrite=True)

    def _improved(self, epoch: int, logs: Dict[str, Any]) -> bool:
        current = logs.get(self.monitor)
        if current is None:
            logger.warning("ModelCheckpoint: metric '%s' is not in the epoch results, "
                           "skipping save", self.monitor)
            return False
        if not self.monitor_op(current, self.best):
            logger.debug("Epoch %d: %s did not improve from %.5f", epoch + 1, self.monitor, self.best)
            return False
        self.best = current
        return True


class CSVLogger(Callback):
    """Append one row per epoch, holding the epoch index and its results, to a CSV file."""

    def __init__(self, filename: str, separator: str = ',', append: bool = False):
        """
        Args:
            filename: CSV file path; missing parent directories are created
            separator: Field delimiter
            append: Continue an existing file instead of truncating it
        """
        super().__init__()
        self.filename = filename
        self.separator = separator
        self.append = append
        self._file = None
        self._writer = None
        self._write_header = True

    def on_train_begin(self, logs: Optional[Dict[str, Any]] = None):
        directory = os.path.dirname(self.filename)
        if directory:
            os.makedirs(directory, exist_ok=True)

        # an existing non-empty file already carries the header
        self._write_header = not (self.append and os.path.isfile(self.filename)
                                  and os.path.getsize(self.filename) > 0)
        self._file = open(self.filename, 'a' if self.append else 'w', newline='')
        self._writer = None

    def on_epoch_end(self, epoch: int, logs: Optional[Dict[str, Any]] = None):
        logs = logs or {}
        if self._writer is None:
            fieldnames = ['epoch'] + sorted(logs)
            self._writer = csv.DictWriter(self._file, fieldnames=fieldnames,
                                          delimiter=self.separator, restval='NA',
                                          extrasaction='ignore')
            if self._write_header:
                self._writer.writeheader()

        self._writer.writerow({'epoch': epoch, **logs})
        self._file.flush()

    def on_train_end(self, logs: Optional[Dict[str, Any]] = None):
        if self._file is not None:
            self._file.close()
            self._file = None
        self._writer = None
