"""
In-memory dataset used by Sequential.fit/evaluate.
Holds features and one-hot (or regression) targets as float32 arrays.
"""

import logging
from typing import Iterator, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)


def one_hot(labels: np.ndarray, num_classes: Optional[int] = None) -> np.ndarray:
    """
    One-hot encode integer class labels.

    Args:
        labels: 1D array of class indices
        num_classes: Number of classes; inferred from the labels if omitted

    Returns:
        float32 array of shape (len(labels), num_classes)
    """
    labels = np.asarray(labels).astype(np.int64).reshape(-1)
    if labels.size and labels.min() < 0:
        raise ValueError("Class labels must be non-negative")
    if num_classes is None:
        num_classes = int(labels.max()) + 1 if labels.size else 0
    elif labels.size and labels.max() >= num_classes:
        raise ValueError(f"Label {labels.max()} out of range for {num_classes} classes")
    return np.eye(num_classes, dtype=np.float32)[labels]


class Dataset:
    """
    Features and targets kept on the host.

    Samples are indexed along the first axis of both arrays.
    """

    def __init__(self, x: np.ndarray, y: np.ndarray):
        x = np.asarray(x, dtype=np.float32)
        y = np.asarray(y, dtype=np.float32)
        if y.ndim == 1:
            y = y.reshape(-1, 1)
        if len(x) != len(y):
            raise ValueError(f"Features and targets differ in length: {len(x)} != {len(y)}")
        self.x = x
        self.y = y

    @classmethod
    def create(cls, x: np.ndarray, labels: np.ndarray,
               num_classes: Optional[int] = None) -> 'Dataset':
        """Build a classification dataset from integer labels."""
        return cls(x, one_hot(labels, num_classes))

    def __len__(self) -> int:
        return len(self.x)

    @property
    def num_classes(self) -> int:
        return self.y.shape[1]

    def labels(self) -> np.ndarray:
        """Class index of every sample."""
        return np.argmax(self.y, axis=1)

    def shuffle(self, seed: Optional[int] = None) -> 'Dataset':
        indices = np.random.default_rng(seed).permutation(len(self))
        return Dataset(self.x[indices], self.y[indices])

    def split(self, train_ratio: float) -> Tuple['Dataset', 'Dataset']:
        """
        Split into two datasets without shuffling.

        Args:
            train_ratio: Fraction of samples placed in the first dataset

        Returns:
            (first, second) datasets
        """
        if not 0 < train_ratio < 1:
            raise ValueError(f"train_ratio must be in (0, 1), got {train_ratio}")
        boundary = int(len(self) * train_ratio)
        return (Dataset(self.x[:boundary], self.y[:boundary]),
                Dataset(self.x[boundary:], self.y[boundary:]))

    def num_batches(self, batch_size: int) -> int:
        return -(-len(self) // batch_size)

    def batches(self, batch_size: int) -> Iterator[Tuple[np.ndarray, np.ndarray]]:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        for start in range(0, len(self), batch_size):
            end = min(start + batch_size, len(self))
            yield self.x[start:end], self.y[start:end]

    def __repr__(self):
        return f"Dataset(samples={len(self)}, x_shape={self.x.shape[1:]}, y_shape={self.y.shape[1:]})"
