"""
VGG16 architecture.

Layer names follow the Keras application so weights exported from Keras
(see Sequential.load_weights_from_hdf5) map onto it by name.
"""

from typing import Callable, Union

from ..core.layers import Conv2D, Dense, Flatten, Input, MaxPool2D
from ..core.model import Sequential

# (number of conv layers, filters) per block
_VGG16_BLOCKS = [(2, 64), (2, 128), (3, 256), (3, 512), (3, 512)]


def vgg16(image_size: int = 224, num_classes: int = 10,
          last_activation: Union[str, Callable] = 'linear',
          fc_units: int = 4096) -> Sequential:
    """
    Build an uncompiled VGG16 model.

    Args:
        image_size: Height and width of the RGB input images
        num_classes: Number of output units
        last_activation: Activation of the 'predictions' layer
        fc_units: Units of the two fully connected layers

    Returns:
        Sequential model with layers block1_conv1 ... predictions
    """
    layers = [Input(image_size, image_size, 3)]
    for block, (num_convs, filters) in enumerate(_VGG16_BLOCKS, start=1):
        for conv in range(1, num_convs + 1):
            layers.append(Conv2D(filters, kernel_size=3, strides=1, padding='same',
                                 activation='relu', kernel_initializer='glorot_uniform',
                                 bias_initializer='zeros', name=f'block{block}_conv{conv}'))
        layers.append(MaxPool2D(pool_size=2, strides=2, padding='valid',
                                name=f'block{block}_pool'))

    layers.extend([
        Flatten(name='flatten'),
        Dense(fc_units, activation='relu', name='fc1'),
        Dense(fc_units, activation='relu', name='fc2'),
        Dense(num_classes, activation=last_activation, name='predictions'),
    ])
    return Sequential(layers, name='vgg16')
