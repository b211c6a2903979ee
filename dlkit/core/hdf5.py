"""
Import of Keras-format HDF5 weight files.

Supports the legacy Keras layout: a root (or 'model_weights') group carrying a
'layer_names' attribute, with one group per layer whose 'weight_names'
attribute lists datasets such as 'conv2d/kernel:0'.
"""

import logging
from typing import Dict

import h5py
import numpy as np

logger = logging.getLogger(__name__)


def _decode(value) -> str:
    return value.decode('utf8') if isinstance(value, bytes) else str(value)


def _short_name(weight_name: str) -> str:
    # 'block1_conv1/kernel:0' -> 'kernel'
    return weight_name.split('/')[-1].split(':')[0]


def read_hdf5_weights(path: str) -> Dict[str, Dict[str, np.ndarray]]:
    """
    Read all layer weights from a Keras HDF5 file.

    Args:
        path: Path to a .h5 file saved by Keras save_weights() or save()

    Returns:
        Mapping of layer name to {'kernel': ..., 'bias': ...} arrays
    """
    weights = {}
    with h5py.File(path, 'r') as f:
        root = f['model_weights'] if 'model_weights' in f else f
        if 'layer_names' not in root.attrs:
            raise ValueError(f"{path} is not a Keras HDF5 weights file: 'layer_names' attribute missing")

        for layer_name in (_decode(n) for n in root.attrs['layer_names']):
            group = root[layer_name]
            weight_names = [_decode(n) for n in group.attrs.get('weight_names', [])]
            if not weight_names:
                continue
            weights[layer_name] = {
                _short_name(name): np.asarray(group[name]) for name in weight_names
            }
    logger.debug("Read weights of %d layers from %s", len(weights), path)
    return weights
