"""Ready-made model architectures."""

from .vgg import vgg16
from .lenet import lenet5

__all__ = ['vgg16', 'lenet5']
