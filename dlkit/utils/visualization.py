"""
Plotting of training history.
"""

from typing import Dict, List, Optional

import matplotlib.pyplot as plt


def plot_history(history: Dict[str, List[float]], item: str = 'loss',
                 ax: Optional[plt.Axes] = None, show: bool = False) -> plt.Axes:
    """
    Plot a training quantity and its validation counterpart over epochs.

    Args:
        history: History returned by Sequential.fit()
        item: Quantity to plot, e.g. 'loss' or 'accuracy'
        ax: Axes to draw on; a new figure is created if omitted
        show: Whether to call plt.show()

    Returns:
        The axes drawn on
    """
    if item not in history:
        raise KeyError(f"'{item}' not in history; available: {sorted(history)}")

    if ax is None:
        _, ax = plt.subplots()
    ax.plot(history[item], label=item)
    if 'val_' + item in history:
        ax.plot(history['val_' + item], label='val_' + item)
    ax.set_xlabel("Epochs")
    ax.set_ylabel(item)
    ax.set_title(f"Train and Validation {item} Over Epochs", fontsize=14)
    ax.legend()
    ax.grid()
    if show:
        plt.show()
    return ax
