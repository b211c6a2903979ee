"""Shared fixtures for dlkit tests."""

import numpy as np
import pytest

from dlkit.core.layers import Dense, Input
from dlkit.core.model import Sequential
from dlkit.core.optimizer import Adam


@pytest.fixture
def blobs():
    """Three well separated Gaussian blobs in 4 dimensions with integer labels."""
    rng = np.random.default_rng(0)
    centers = np.array([[3, 0, 0, 0], [0, 3, 0, 0], [0, 0, 3, 0]], dtype=np.float32)
    labels = rng.integers(0, 3, size=300)
    x = centers[labels] + rng.normal(scale=0.5, size=(300, 4)).astype(np.float32)
    return x.astype(np.float32), labels


@pytest.fixture
def dense_model():
    """Small uncompiled classifier for 4 features and 3 classes."""
    model = Sequential.of(
        Input(4),
        Dense(8, activation='relu', name='hidden'),
        Dense(3, name='logits'),
    )
    yield model
    model.close()


@pytest.fixture
def compiled_model(dense_model):
    dense_model.compile(optimizer=Adam(learning_rate=0.01), loss='softmax_cross_entropy_with_logits',
                        metrics=['accuracy'])
    return dense_model
