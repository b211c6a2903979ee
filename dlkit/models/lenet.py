"""
LeNet-5 style convolutional network for small grayscale images.
"""

from ..core.layers import AvgPool2D, Conv2D, Dense, Flatten, Input
from ..core.model import Sequential


def lenet5(image_size: int = 28, num_channels: int = 1, num_classes: int = 10,
           seed: int = 12) -> Sequential:
    """Build an uncompiled LeNet-5 with tanh activations and average pooling."""
    return Sequential.of(
        Input(image_size, image_size, num_channels),
        Conv2D(6, kernel_size=5, padding='same', activation='tanh', name='conv2d_1'),
        AvgPool2D(pool_size=2, strides=2, name='pool_1'),
        Conv2D(16, kernel_size=5, padding='valid', activation='tanh', name='conv2d_2'),
        AvgPool2D(pool_size=2, strides=2, name='pool_2'),
        Flatten(name='flatten'),
        Dense(120, activation='tanh', name='dense_1'),
        Dense(84, activation='tanh', name='dense_2'),
        Dense(num_classes, activation='linear', name='dense_3'),
        name='lenet5',
        seed=seed,
    )
