"""
Weight initializers for dlkit layers.
An initializer turns a variable shape and its fan-in/fan-out into an engine tensor
holding the initial value.
"""

import math
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple, Union

import tensorflow as tf


class Initializer(ABC):
    """Base class for all initializers."""

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed

    @abstractmethod
    def __call__(self, shape: Tuple[int, ...], fan_in: int, fan_out: int) -> tf.Tensor:
        """
        Produce the initial value.

        Args:
            shape: Shape of the variable
            fan_in: Number of input units feeding each output unit
            fan_out: Number of output units

        Returns:
            Initial value tensor of dtype float32
        """

    def get_config(self) -> Dict[str, Any]:
        return {'seed': self.seed}


class Zeros(Initializer):

    def __call__(self, shape, fan_in, fan_out):
        return tf.zeros(shape, dtype=tf.float32)

    def get_config(self):
        return {}


class Ones(Initializer):

    def __call__(self, shape, fan_in, fan_out):
        return tf.ones(shape, dtype=tf.float32)

    def get_config(self):
        return {}


class Constant(Initializer):
    """Fill the variable with a single value."""

    def __init__(self, value: float = 0.0):
        super().__init__()
        self.value = value

    def __call__(self, shape, fan_in, fan_out):
        return tf.fill(shape, tf.constant(self.value, dtype=tf.float32))

    def get_config(self):
        return {'value': self.value}


class RandomNormal(Initializer):

    def __init__(self, mean: float = 0.0, stddev: float = 0.05, seed: Optional[int] = None):
        super().__init__(seed)
        self.mean = mean
        self.stddev = stddev

    def __call__(self, shape, fan_in, fan_out):
        return tf.random.normal(shape, mean=self.mean, stddev=self.stddev,
                                dtype=tf.float32, seed=self.seed)

    def get_config(self):
        return {'mean': self.mean, 'stddev': self.stddev, 'seed': self.seed}


class TruncatedNormal(RandomNormal):

    def __call__(self, shape, fan_in, fan_out):
        return tf.random.truncated_normal(shape, mean=self.mean, stddev=self.stddev,
                                          dtype=tf.float32, seed=self.seed)


class RandomUniform(Initializer):

    def __init__(self, minval: float = -0.05, maxval: float = 0.05, seed: Optional[int] = None):
        super().__init__(seed)
        self.minval = minval
        self.maxval = maxval

    def __call__(self, shape, fan_in, fan_out):
        return tf.random.uniform(shape, minval=self.minval, maxval=self.maxval,
                                 dtype=tf.float32, seed=self.seed)

    def get_config(self):
        return {'minval': self.minval, 'maxval': self.maxval, 'seed': self.seed}


class VarianceScaling(Initializer):
    """
    Scale the initial distribution by the number of units.

    With mode 'fan_in' the variance is scale / fan_in, with 'fan_out' it is
    scale / fan_out and with 'fan_avg' it is 2 * scale / (fan_in + fan_out).
    """

    def __init__(self, scale: float = 1.0, mode: str = 'fan_in',
                 distribution: str = 'truncated_normal', seed: Optional[int] = None):
        super().__init__(seed)
        if mode not in ('fan_in', 'fan_out', 'fan_avg'):
            raise ValueError(f"Unknown variance scaling mode: {mode}")
        if distribution not in ('truncated_normal', 'uniform'):
            raise ValueError(f"Unknown variance scaling distribution: {distribution}")
        self.scale = scale
        self.mode = mode
        self.distribution = distribution

    def __call__(self, shape, fan_in, fan_out):
        if self.mode == 'fan_in':
            n = max(1.0, fan_in)
        elif self.mode == 'fan_out':
            n = max(1.0, fan_out)
        else:
            n = max(1.0, (fan_in + fan_out) / 2.0)
        variance = self.scale / n

        if self.distribution == 'uniform':
            limit = math.sqrt(3.0 * variance)
            return tf.random.uniform(shape, -limit, limit, dtype=tf.float32, seed=self.seed)

        # 0.8796... is the stddev of a unit normal truncated to [-2, 2]
        stddev = math.sqrt(variance) / 0.87962566103423978
        return tf.random.truncated_normal(shape, stddev=stddev, dtype=tf.float32, seed=self.seed)

    def get_config(self):
        return {'scale': self.scale, 'mode': self.mode,
                'distribution': self.distribution, 'seed': self.seed}


class GlorotUniform(VarianceScaling):

    def __init__(self, seed: Optional[int] = None):
        super().__init__(1.0, 'fan_avg', 'uniform', seed)

    def get_config(self):
        return {'seed': self.seed}


class GlorotNormal(VarianceScaling):

    def __init__(self, seed: Optional[int] = None):
        super().__init__(1.0, 'fan_avg', 'truncated_normal', seed)

    def get_config(self):
        return {'seed': self.seed}


class HeNormal(VarianceScaling):

    def __init__(self, seed: Optional[int] = None):
        super().__init__(2.0, 'fan_in', 'truncated_normal', seed)

    def get_config(self):
        return {'seed': self.seed}


class HeUniform(VarianceScaling):

    def __init__(self, seed: Optional[int] = None):
        super().__init__(2.0, 'fan_in', 'uniform', seed)

    def get_config(self):
        return {'seed': self.seed}


class LeCunNormal(VarianceScaling):

    def __init__(self, seed: Optional[int] = None):
        super().__init__(1.0, 'fan_in', 'truncated_normal', seed)

    def get_config(self):
        return {'seed': self.seed}


class LeCunUniform(VarianceScaling):

    def __init__(self, seed: Optional[int] = None):
        super().__init__(1.0, 'fan_in', 'uniform', seed)

    def get_config(self):
        return {'seed': self.seed}


_INITIALIZERS = {
    'zeros': Zeros,
    'ones': Ones,
    'constant': Constant,
    'random_normal': RandomNormal,
    'random_uniform': RandomUniform,
    'truncated_normal': TruncatedNormal,
    'variance_scaling': VarianceScaling,
    'glorot_uniform': GlorotUniform,
    'glorot_normal': GlorotNormal,
    'he_normal': HeNormal,
    'he_uniform': HeUniform,
    'lecun_normal': LeCunNormal,
    'lecun_uniform': LeCunUniform,
}


def get_initializer(initializer: Union[str, dict, Initializer]) -> Initializer:
    """
    Resolve an initializer from a name, a serialized config or an instance.

    Args:
        initializer: Name such as 'glorot_uniform', a dict produced by
            serialize_initializer(), or an Initializer instance

    Returns:
        Initializer instance
    """
    if isinstance(initializer, Initializer):
        return initializer
    if isinstance(initializer, dict):
        name = initializer.get('class_name', '')
        config = initializer.get('config', {}) or {}
        key = _snake_case(name)
        if key not in _INITIALIZERS:
            raise ValueError(f"Unknown initializer: {name}")
        return _INITIALIZERS[key](**config)
    if isinstance(initializer, str):
        key = initializer.lower()
        if key not in _INITIALIZERS:
            raise ValueError(f"Unknown initializer: {initializer}")
        return _INITIALIZERS[key]()
    raise ValueError(f"Unknown initializer: {initializer!r}")


def serialize_initializer(initializer: Initializer) -> Dict[str, Any]:
    return {'class_name': type(initializer).__name__, 'config': initializer.get_config()}


def _snake_case(name: str) -> str:
    # GlorotUniform -> glorot_uniform, LeCunNormal -> lecun_normal
    aliases = {'LeCunNormal': 'lecun_normal', 'LeCunUniform': 'lecun_uniform'}
    if name in aliases:
        return aliases[name]
    out = []
    for i, ch in enumerate(name):
        if ch.isupper() and i > 0:
            out.append('_')
        out.append(ch.lower())
    return ''.join(out)
