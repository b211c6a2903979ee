"""
Preprocessing operations and their composition.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Tuple

logger = logging.getLogger(__name__)

Shape = Tuple[Optional[int], ...]


class Operation(ABC):
    """
    A stateless transformation of one input.

    get_output_shape() describes what apply() produces for an input of the
    given shape, so pipelines can be checked before any data flows.
    """

    @abstractmethod
    def apply(self, input: Any) -> Any:
        """Transform the input."""

    def get_output_shape(self, input_shape: Shape) -> Shape:
        return input_shape

    def __call__(self, input: Any) -> Any:
        return self.apply(input)

    def __repr__(self):
        return f"{type(self).__name__}()"


class Pipeline(Operation):
    """Operations applied one after another."""

    def __init__(self, *operations: Operation):
        self.operations: List[Operation] = list(operations)

    def then(self, operation: Operation) -> 'Pipeline':
        """Return a new pipeline with operation appended."""
        return Pipeline(*self.operations, operation)

    def apply(self, input):
        for operation in self.operations:
            input = operation.apply(input)
        return input

    def get_output_shape(self, input_shape):
        for operation in self.operations:
            input_shape = operation.get_output_shape(input_shape)
        return input_shape

    def __len__(self):
        return len(self.operations)

    def __repr__(self):
        return f"Pipeline({', '.join(repr(op) for op in self.operations)})"
