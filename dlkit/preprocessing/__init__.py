"""Preprocessing operations turning raw images into model inputs."""

from .operation import Operation, Pipeline
from .image import (load_image, LoadImage, Resize, Crop, CenterCrop, Rotate, Grayscale,
                    ConvertToFloatArray, Rescale, Normalize, FlattenArray)

__all__ = [
    'Operation', 'Pipeline', 'load_image', 'LoadImage', 'Resize', 'Crop', 'CenterCrop',
    'Rotate', 'Grayscale', 'ConvertToFloatArray', 'Rescale', 'Normalize', 'FlattenArray',
]
