"""In-memory datasets."""

from .dataset import Dataset, one_hot

__all__ = ['Dataset', 'one_hot']
