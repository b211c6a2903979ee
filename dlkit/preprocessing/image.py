"""
Image preprocessing operations.

Images are numpy arrays shaped (height, width, channels). Decoding and
resizing run eagerly through TensorFlow; rotation uses scipy.ndimage.
"""

import logging
import os
from typing import Optional, Sequence, Union

import numpy as np
import tensorflow as tf
from scipy import ndimage

from .operation import Operation, Shape

logger = logging.getLogger(__name__)


def load_image(path: str, channels: int = 0) -> np.ndarray:
    """
    Decode an image file.

    Args:
        path: Path to a JPEG, PNG, GIF or BMP file
        channels: Number of color channels to decode to, 0 keeps the file's

    Returns:
        uint8 array of shape (height, width, channels)
    """
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Image file {path} does not exist")
    image = tf.io.read_file(path)
    image = tf.io.decode_image(image, channels=channels, expand_animations=False)
    return image.numpy()


def _check_image(image: np.ndarray) -> np.ndarray:
    image = np.asarray(image)
    if image.ndim != 3:
        raise ValueError(f"Expected an image of shape (height, width, channels), got {image.shape}")
    return image


class LoadImage(Operation):
    """Turns a file path into a decoded image."""

    def __init__(self, channels: int = 0):
        self.channels = channels

    def apply(self, input: str) -> np.ndarray:
        return load_image(input, self.channels)

    def get_output_shape(self, input_shape):
        return (None, None, self.channels or None)


class Resize(Operation):
    """Resize to a fixed size with the given interpolation method."""

    def __init__(self, height: int, width: int, method: str = 'bilinear'):
        if height <= 0 or width <= 0:
            raise ValueError(f"Target size must be positive, got {(height, width)}")
        self.height = height
        self.width = width
        self.method = method

    def apply(self, input):
        image = _check_image(input)
        resized = tf.image.resize(image, (self.height, self.width), method=self.method)
        return resized.numpy().astype(np.float32)

    def get_output_shape(self, input_shape):
        return (self.height, self.width, input_shape[2])

    def __repr__(self):
        return f"Resize(height={self.height}, width={self.width}, method={self.method!r})"


class Crop(Operation):
    """Remove the given number of pixels from each border."""

    def __init__(self, top: int = 0, bottom: int = 0, left: int = 0, right: int = 0):
        if min(top, bottom, left, right) < 0:
            raise ValueError("Crop margins must be non-negative")
        self.top = top
        self.bottom = bottom
        self.left = left
        self.right = right

    def apply(self, input):
        image = _check_image(input)
        height, width = image.shape[:2]
        if self.top + self.bottom >= height or self.left + self.right >= width:
            raise ValueError(f"Crop margins leave nothing of an image of shape {image.shape}")
        return image[self.top:height - self.bottom, self.left:width - self.right]

    def get_output_shape(self, input_shape):
        height, width, channels = input_shape
        return (None if height is None else height - self.top - self.bottom,
                None if width is None else width - self.left - self.right,
                channels)


class CenterCrop(Operation):
    """Keep a centered window of the given size."""

    def __init__(self, height: int, width: int):
        self.height = height
        self.width = width

    def apply(self, input):
        image = _check_image(input)
        height, width = image.shape[:2]
        if self.height > height or self.width > width:
            raise ValueError(f"Crop size {(self.height, self.width)} exceeds image shape {image.shape}")
        top = (height - self.height) // 2
        left = (width - self.width) // 2
        return image[top:top + self.height, left:left + self.width]

    def get_output_shape(self, input_shape):
        return (self.height, self.width, input_shape[2])


class Rotate(Operation):
    """
    Rotate counter-clockwise around the image center.

    The output keeps the input size; uncovered pixels are filled with fill_value.
    """

    def __init__(self, degrees: float, order: int = 1, fill_value: float = 0.0):
        self.degrees = degrees
        self.order = order
        self.fill_value = fill_value

    def apply(self, input):
        image = _check_image(input)
        return ndimage.rotate(image, self.degrees, axes=(1, 0), reshape=False,
                              order=self.order, mode='constant', cval=self.fill_value)


class Grayscale(Operation):
    """Convert RGB to a single luminance channel."""

    def apply(self, input):
        image = _check_image(input)
        channels = image.shape[2]
        if channels == 1:
            return image
        if channels != 3:
            raise ValueError(f"Grayscale expects 1 or 3 channels, got {channels}")
        return tf.image.rgb_to_grayscale(image).numpy()

    def get_output_shape(self, input_shape):
        return (input_shape[0], input_shape[1], 1)


class ConvertToFloatArray(Operation):
    """Convert pixel values to float32 without changing the shape."""

    def apply(self, input):
        return np.asarray(input, dtype=np.float32)


class Rescale(Operation):
    """Divide every value by scale."""

    def __init__(self, scale: float = 255.0):
        if scale == 0:
            raise ValueError("scale must be non-zero")
        self.scale = scale

    def apply(self, input):
        return np.asarray(input, dtype=np.float32) / np.float32(self.scale)


class Normalize(Operation):
    """Subtract mean and divide by std, per channel."""

    def __init__(self, mean: Union[float, Sequence[float]], std: Union[float, Sequence[float]]):
        self.mean = np.asarray(mean, dtype=np.float32)
        self.std = np.asarray(std, dtype=np.float32)
        if np.any(self.std == 0):
            raise ValueError("std must be non-zero")

    def apply(self, input):
        return (np.asarray(input, dtype=np.float32) - self.mean) / self.std


class FlattenArray(Operation):
    """Flatten to one dimension."""

    def apply(self, input):
        return np.asarray(input).reshape(-1)

    def get_output_shape(self, input_shape: Shape) -> Shape:
        if any(d is None for d in input_shape):
            return (None,)
        return (int(np.prod(input_shape)),)
