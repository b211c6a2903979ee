"""
Exceptions raised by dlkit.
Every error is a plain precondition failure surfaced immediately to the caller.
"""


class DLKitError(Exception):
    """Base class for all dlkit errors."""


class ShapeMismatchError(DLKitError, ValueError):
    """
    Raised when a layer cannot accept the shape produced by the previous layer.

    Attributes:
        layer_name: Name of the layer that rejected the shape
        expected: Shape (or description) the layer expected
        actual: Shape it received
    """

    def __init__(self, layer_name: str, expected, actual, message: str = None):
        self.layer_name = layer_name
        self.expected = expected
        self.actual = actual
        if message is None:
            message = (f"Layer '{layer_name}' expects input shape {expected}, "
                       f"got {actual}")
        super().__init__(message)


class SlotNotFoundError(DLKitError, KeyError):
    """Raised when an optimizer slot is requested before it was created."""

    def __init__(self, variable_name: str, slot_name: str):
        self.variable_name = variable_name
        self.slot_name = slot_name
        super().__init__(f"Slot '{slot_name}' for variable '{variable_name}' "
                         f"has not been created")

    def __str__(self):
        # KeyError quotes its argument otherwise
        return self.args[0]


class ModelNotCompiledError(DLKitError, RuntimeError):
    """Raised when a model is used before compile()."""


class ModelNotInitializedError(DLKitError, RuntimeError):
    """Raised when model weights are used before being initialized or loaded."""


class ShapeNotDefinedError(DLKitError, RuntimeError):
    """Raised when an inference model predicts before reshape()."""


class TensorNotFoundError(DLKitError, KeyError):
    """Raised when a named tensor does not exist in the graph."""

    def __init__(self, tensor_name: str):
        self.tensor_name = tensor_name
        super().__init__(f"Tensor named '{tensor_name}' not found in the TensorFlow graph.")

    def __str__(self):
        return self.args[0]
