"""
Optimizers for dlkit.
An optimizer allocates per-variable slot variables and emits the engine's native
update operator for its family; no update math is computed here.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np
import tensorflow as tf

from .exceptions import SlotNotFoundError

logger = logging.getLogger(__name__)

tf1 = tf.compat.v1

OPTIMIZER_SCOPE = 'optimizer'


def variable_name(variable: tf.Variable) -> str:
    """Graph name of a variable without the output index."""
    return variable.name.split(':')[0]


class ClipGradientAction(ABC):
    """Transformation applied to every gradient before the update op."""

    @abstractmethod
    def __call__(self, gradient: tf.Tensor) -> tf.Tensor:
        pass


class NoClipGradient(ClipGradientAction):

    def __call__(self, gradient):
        return gradient


class ClipGradientByValue(ClipGradientAction):
    """Clip every gradient element to [-clip_value, clip_value]."""

    def __init__(self, clip_value: float):
        self.clip_value = clip_value

    def __call__(self, gradient):
        return tf.clip_by_value(gradient, -self.clip_value, self.clip_value)


class ClipGradientByNorm(ClipGradientAction):
    """Rescale each gradient so its L2 norm does not exceed clip_norm."""

    def __init__(self, clip_norm: float):
        self.clip_norm = clip_norm

    def __call__(self, gradient):
        return tf.clip_by_norm(gradient, self.clip_norm)


class Optimizer(ABC):
    """
    Abstract base class for all optimizers.

    Subclasses declare which slots they need in create_slots() and emit the
    engine update op for one variable in apply_dense().
    """

    def __init__(self, learning_rate: float = 0.001,
                 clip_gradient: Optional[ClipGradientAction] = None):
        """
        Initialize the optimizer.

        Args:
            learning_rate: Learning rate; fed on every step so it may change
                between steps
            clip_gradient: Gradient clipping applied before each update
        """
        self.learning_rate = learning_rate
        self.clip_gradient = clip_gradient or NoClipGradient()
        self.iterations = 0

        self._slots: Dict[str, Dict[str, tf.Variable]] = {}
        self._extra_variables: List[tf.Variable] = []
        self._learning_rate_tensor = None
        self._owner = None

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    def create_slots(self, variables: List[tf.Variable]):
        """Create every slot the update op needs for each of the variables."""

    @abstractmethod
    def apply_dense(self, gradient: tf.Tensor, variable: tf.Variable) -> tf.Operation:
        """Emit the engine update op for one variable."""

    def finish(self, update_ops: List[tf.Operation]) -> List[tf.Operation]:
        """Ops that must run after all variables were updated."""
        return []

    def apply_gradients(self, grads_and_vars: List[Tuple[tf.Tensor, tf.Variable]]) -> tf.Operation:
        """
        Build the training step for the given gradients.

        Must be called inside the model graph. Slots are created for every
        variable before any update op is emitted.

        Args:
            grads_and_vars: Pairs of (gradient, variable)

        Returns:
            A single op running all updates
        """
        pairs = [(g, v) for g, v in grads_and_vars if g is not None]
        for g, v in grads_and_vars:
            if g is None:
                logger.warning("No gradient flows to variable %s; it will not be updated",
                               variable_name(v))

        with tf1.name_scope(OPTIMIZER_SCOPE + '/'):
            self._learning_rate_tensor = tf1.placeholder_with_default(
                np.float32(self.learning_rate), shape=[], name='learning_rate')
            self.create_slots([v for _, v in pairs])

            update_ops = []
            for gradient, variable in pairs:
                self._check_slots(variable)
                update_ops.append(self.apply_dense(self.clip_gradient(gradient), variable))

            with tf.control_dependencies(update_ops):
                finish_ops = self.finish(update_ops)

            logger.debug("%s emitted update ops for %d variables", self.name, len(pairs))
            return tf.group(*update_ops, *finish_ops, name='train')

    def create_slot(self, variable: tf.Variable, slot_name: str,
                    initial_value: float = 0.0) -> tf.Variable:
        """
        Create a slot variable shaped like variable.

        Slots are named 'optimizer/<variable name>/<slot name>'.
        """
        var_name = variable_name(variable)
        slots = self._slots.setdefault(var_name, {})
        if slot_name in slots:
            return slots[slot_name]

        # Absolute scope so the name does not depend on the caller's scope
        with tf1.name_scope(f"{OPTIMIZER_SCOPE}/{var_name}/"):
            slot = tf.Variable(tf.fill(variable.shape.as_list(), np.float32(initial_value)),
                               name=slot_name, trainable=False, dtype=tf.float32)
        slots[slot_name] = slot
        return slot

    def create_scalar(self, name: str, initial_value: float) -> tf.Variable:
        """Create an optimizer-wide scalar variable such as a beta power accumulator."""
        with tf1.name_scope(f"{OPTIMIZER_SCOPE}/"):
            variable = tf.Variable(np.float32(initial_value), name=name,
                                   trainable=False, dtype=tf.float32)
        self._extra_variables.append(variable)
        return variable

    def get_slot(self, variable: Union[tf.Variable, str], slot_name: str) -> tf.Variable:
        var_name = variable if isinstance(variable, str) else variable_name(variable)
        try:
            return self._slots[var_name][slot_name]
        except KeyError:
            raise SlotNotFoundError(var_name, slot_name) from None

    def slot_names(self, variable: Union[tf.Variable, str]) -> List[str]:
        var_name = variable if isinstance(variable, str) else variable_name(variable)
        return list(self._slots.get(var_name, {}))

    def variables(self) -> List[tf.Variable]:
        """All variables owned by the optimizer: slots and scalar accumulators."""
        result = []
        for slots in self._slots.values():
            result.extend(slots.values())
        result.extend(self._extra_variables)
        return result

    def feed_dict(self) -> Dict[tf.Tensor, Any]:
        """Values to feed with every training step."""
        if self._learning_rate_tensor is None:
            return {}
        return {self._learning_rate_tensor: np.float32(self.learning_rate)}

    def bind(self, owner: Any):
        """
        Attach the optimizer to the model whose graph will hold its slots.

        Slots and the learning-rate placeholder live in one graph, so an
        optimizer serves a single model until that model releases it.

        Raises:
            ValueError: if another model still holds the optimizer
        """
        if self._owner is not None and self._owner is not owner:
            raise ValueError(
                f"{self.name} optimizer is already used by model '{self._owner.name}'; "
                f"pass a new optimizer instance or close that model first")
        self.reset()
        self._owner = owner

    def release(self, owner: Any):
        """Detach the optimizer from owner so another model may compile with it."""
        if self._owner is owner:
            self._owner = None

    def reset(self):
        """Forget slots of a previous graph."""
        self._slots = {}
        self._extra_variables = []
        self._learning_rate_tensor = None
        self.iterations = 0

    def get_config(self) -> Dict[str, Any]:
        """Get optimizer configuration."""
        return {
            'learning_rate': self.learning_rate,
            'iterations': self.iterations
        }

    def _check_slots(self, variable: tf.Variable):
        if variable_name(variable) not in self._slots and self._requires_slots():
            raise SlotNotFoundError(variable_name(variable), '*')

    def _requires_slots(self) -> bool:
        return True

    def _lr(self) -> tf.Tensor:
        return self._learning_rate_tensor

    @staticmethod
    def _const(value: float) -> tf.Tensor:
        return tf.constant(value, dtype=tf.float32)

    @staticmethod
    def _decayed(gradient: tf.Tensor, variable: tf.Variable, weight_decay: float) -> tf.Tensor:
        if weight_decay == 0:
            return gradient
        return gradient + weight_decay * tf.convert_to_tensor(variable)


class SGD(Optimizer):
    """
    Stochastic Gradient Descent optimizer.

    Without momentum no slots are allocated; with momentum a 'momentum'
    accumulator is kept per variable.
    """

    def __init__(self, learning_rate: float = 0.01, momentum: float = 0.0,
                 weight_decay: float = 0.0, nesterov: bool = False,
                 clip_gradient: Optional[ClipGradientAction] = None):
        """
        Initialize SGD optimizer.

        Args:
            learning_rate: Learning rate
            momentum: Momentum factor
            weight_decay: Weight decay (L2 regularization)
            nesterov: Whether to use Nesterov momentum
            clip_gradient: Gradient clipping
        """
        super().__init__(learning_rate, clip_gradient)
        self.momentum = momentum
        self.weight_decay = weight_decay
        self.nesterov = nesterov

    def create_slots(self, variables):
        if self.momentum == 0:
            return
        for variable in variables:
            self.create_slot(variable, 'momentum')

    def _requires_slots(self):
        return self.momentum != 0

    def apply_dense(self, gradient, variable):
        gradient = self._decayed(gradient, variable, self.weight_decay)
        if self.momentum == 0:
            return tf.raw_ops.ResourceApplyGradientDescent(
                var=variable.handle, alpha=self._lr(), delta=gradient)
        return tf.raw_ops.ResourceApplyMomentum(
            var=variable.handle,
            accum=self.get_slot(variable, 'momentum').handle,
            lr=self._lr(),
            grad=gradient,
            momentum=self._const(self.momentum),
            use_nesterov=self.nesterov)

    def get_config(self):
        config = super().get_config()
        config.update({
            'momentum': self.momentum,
            'weight_decay': self.weight_decay,
            'nesterov': self.nesterov
        })
        return config


class Adam(Optimizer):
    """
    Adam optimizer.

    Keeps first ('m') and second ('v') moment slots per variable plus two
    optimizer-wide beta power accumulators used for bias correction.
    """

    def __init__(self, learning_rate: float = 0.001, beta1: float = 0.9,
                 beta2: float = 0.999, epsilon: float = 1e-7,
                 weight_decay: float = 0.0, amsgrad: bool = False,
                 clip_gradient: Optional[ClipGradientAction] = None):
        """
        Initialize Adam optimizer.

        Args:
            learning_rate: Learning rate
            beta1: Exponential decay rate for first moment estimates
            beta2: Exponential decay rate for second moment estimates
            epsilon: Small constant for numerical stability
            weight_decay: Weight decay (L2 regularization)
            amsgrad: Whether to use the AMSGrad variant
            clip_gradient: Gradient clipping
        """
        super().__init__(learning_rate, clip_gradient)
        self.beta1 = beta1
        self.beta2 = beta2
        self.epsilon = epsilon
        self.weight_decay = weight_decay
        self.amsgrad = amsgrad

        self._beta1_power = None
        self._beta2_power = None

    def create_slots(self, variables):
        for variable in variables:
            self.create_slot(variable, 'm')
            self.create_slot(variable, 'v')
            if self.amsgrad:
                self.create_slot(variable, 'vhat')
        self._beta1_power = self.create_scalar('beta1_power', self.beta1)
        self._beta2_power = self.create_scalar('beta2_power', self.beta2)

    def apply_dense(self, gradient, variable):
        gradient = self._decayed(gradient, variable, self.weight_decay)
        common = dict(
            var=variable.handle,
            m=self.get_slot(variable, 'm').handle,
            v=self.get_slot(variable, 'v').handle,
            beta1_power=tf.convert_to_tensor(self._beta1_power),
            beta2_power=tf.convert_to_tensor(self._beta2_power),
            lr=self._lr(),
            beta1=self._const(self.beta1),
            beta2=self._const(self.beta2),
            epsilon=self._const(self.epsilon),
            grad=gradient,
        )
        if self.amsgrad:
            return tf.raw_ops.ResourceApplyAdamWithAmsgrad(
                vhat=self.get_slot(variable, 'vhat').handle, **common)
        return tf.raw_ops.ResourceApplyAdam(**common)

    def finish(self, update_ops):
        return [
            self._beta1_power.assign(self._beta1_power * self.beta1, read_value=False),
            self._beta2_power.assign(self._beta2_power * self.beta2, read_value=False),
        ]

    def reset(self):
        super().reset()
        self._beta1_power = None
        self._beta2_power = None

    def get_config(self):
        config = super().get_config()
        config.update({
            'beta1': self.beta1,
            'beta2': self.beta2,
            'epsilon': self.epsilon,
            'weight_decay': self.weight_decay,
            'amsgrad': self.amsgrad
        })
        return config


class Adamax(Optimizer):
    """
    Adamax optimizer, the infinity-norm variant of Adam.

    The engine kernel is known to produce NaN gradients on some GPU builds;
    prefer CPU execution when using it.
    """

    def __init__(self, learning_rate: float = 0.001, beta1: float = 0.9,
                 beta2: float = 0.999, epsilon: float = 1e-7,
                 clip_gradient: Optional[ClipGradientAction] = None):
        super().__init__(learning_rate, clip_gradient)
        self.beta1 = beta1
        self.beta2 = beta2
        self.epsilon = epsilon
        self._beta1_power = None

    def create_slots(self, variables):
        for variable in variables:
            self.create_slot(variable, 'm')
            self.create_slot(variable, 'v')
        self._beta1_power = self.create_scalar('beta1_power', self.beta1)

    def apply_dense(self, gradient, variable):
        return tf.raw_ops.ResourceApplyAdaMax(
            var=variable.handle,
            m=self.get_slot(variable, 'm').handle,
            v=self.get_slot(variable, 'v').handle,
            beta1_power=tf.convert_to_tensor(self._beta1_power),
            lr=self._lr(),
            beta1=self._const(self.beta1),
            beta2=self._const(self.beta2),
            epsilon=self._const(self.epsilon),
            grad=gradient)

    def finish(self, update_ops):
        return [self._beta1_power.assign(self._beta1_power * self.beta1, read_value=False)]

    def reset(self):
        super().reset()
        self._beta1_power = None

    def get_config(self):
        config = super().get_config()
        config.update({'beta1': self.beta1, 'beta2': self.beta2, 'epsilon': self.epsilon})
        return config


class RMSProp(Optimizer):
    """
    RMSProp optimizer.

    Slots: 'ms' (mean square), 'mom' (momentum) and, when centered, 'mg'
    (mean gradient).
    """

    def __init__(self, learning_rate: float = 0.001, rho: float = 0.9,
                 epsilon: float = 1e-7, weight_decay: float = 0.0,
                 momentum: float = 0.0, centered: bool = False,
                 clip_gradient: Optional[ClipGradientAction] = None):
        """
        Initialize RMSProp optimizer.

        Args:
            learning_rate: Learning rate
            rho: Smoothing constant
            epsilon: Small constant for numerical stability
            weight_decay: Weight decay (L2 regularization)
            momentum: Momentum factor
            centered: Whether to use centered RMSProp
            clip_gradient: Gradient clipping
        """
        super().__init__(learning_rate, clip_gradient)
        self.rho = rho
        self.epsilon = epsilon
        self.weight_decay = weight_decay
        self.momentum = momentum
        self.centered = centered

    def create_slots(self, variables):
        for variable in variables:
            self.create_slot(variable, 'ms')
            self.create_slot(variable, 'mom')
            if self.centered:
                self.create_slot(variable, 'mg')

    def apply_dense(self, gradient, variable):
        gradient = self._decayed(gradient, variable, self.weight_decay)
        common = dict(
            var=variable.handle,
            ms=self.get_slot(variable, 'ms').handle,
            mom=self.get_slot(variable, 'mom').handle,
            lr=self._lr(),
            rho=self._const(self.rho),
            momentum=self._const(self.momentum),
            epsilon=self._const(self.epsilon),
            grad=gradient,
        )
        if self.centered:
            return tf.raw_ops.ResourceApplyCenteredRMSProp(
                mg=self.get_slot(variable, 'mg').handle, **common)
        return tf.raw_ops.ResourceApplyRMSProp(**common)

    def get_config(self):
        config = super().get_config()
        config.update({
            'rho': self.rho,
            'epsilon': self.epsilon,
            'weight_decay': self.weight_decay,
            'momentum': self.momentum,
            'centered': self.centered
        })
        return config


class AdaGrad(Optimizer):
    """AdaGrad optimizer with an 'accumulator' slot per variable."""

    def __init__(self, learning_rate: float = 0.01, epsilon: float = 1e-7,
                 initial_accumulator_value: float = 0.1, weight_decay: float = 0.0,
                 clip_gradient: Optional[ClipGradientAction] = None):
        """
        Initialize AdaGrad optimizer.

        Args:
            learning_rate: Learning rate
            epsilon: Small constant for numerical stability
            initial_accumulator_value: Starting value of the squared-gradient sums
            weight_decay: Weight decay (L2 regularization)
            clip_gradient: Gradient clipping
        """
        super().__init__(learning_rate, clip_gradient)
        self.epsilon = epsilon
        self.initial_accumulator_value = initial_accumulator_value
        self.weight_decay = weight_decay

    def create_slots(self, variables):
        for variable in variables:
            self.create_slot(variable, 'accumulator', self.initial_accumulator_value)

    def apply_dense(self, gradient, variable):
        gradient = self._decayed(gradient, variable, self.weight_decay)
        return tf.raw_ops.ResourceApplyAdagradV2(
            var=variable.handle,
            accum=self.get_slot(variable, 'accumulator').handle,
            lr=self._lr(),
            epsilon=self._const(self.epsilon),
            grad=gradient)

    def get_config(self):
        config = super().get_config()
        config.update({
            'epsilon': self.epsilon,
            'initial_accumulator_value': self.initial_accumulator_value,
            'weight_decay': self.weight_decay
        })
        return config


class AdaDelta(Optimizer):
    """AdaDelta optimizer with 'accum' and 'accum_update' slots."""

    def __init__(self, learning_rate: float = 1.0, rho: float = 0.95,
                 epsilon: float = 1e-6,
                 clip_gradient: Optional[ClipGradientAction] = None):
        super().__init__(learning_rate, clip_gradient)
        self.rho = rho
        self.epsilon = epsilon

    def create_slots(self, variables):
        for variable in variables:
            self.create_slot(variable, 'accum')
            self.create_slot(variable, 'accum_update')

    def apply_dense(self, gradient, variable):
        return tf.raw_ops.ResourceApplyAdadelta(
            var=variable.handle,
            accum=self.get_slot(variable, 'accum').handle,
            accum_update=self.get_slot(variable, 'accum_update').handle,
            lr=self._lr(),
            rho=self._const(self.rho),
            epsilon=self._const(self.epsilon),
            grad=gradient)

    def get_config(self):
        config = super().get_config()
        config.update({'rho': self.rho, 'epsilon': self.epsilon})
        return config


class Ftrl(Optimizer):
    """Follow-the-regularized-leader optimizer with 'accum' and 'linear' slots."""

    def __init__(self, learning_rate: float = 0.001, learning_rate_power: float = -0.5,
                 initial_accumulator_value: float = 0.1,
                 l1_regularization_strength: float = 0.0,
                 l2_regularization_strength: float = 0.0,
                 clip_gradient: Optional[ClipGradientAction] = None):
        super().__init__(learning_rate, clip_gradient)
        if learning_rate_power > 0:
            raise ValueError("learning_rate_power must be less than or equal to zero")
        self.learning_rate_power = learning_rate_power
        self.initial_accumulator_value = initial_accumulator_value
        self.l1_regularization_strength = l1_regularization_strength
        self.l2_regularization_strength = l2_regularization_strength

    def create_slots(self, variables):
        for variable in variables:
            self.create_slot(variable, 'accum', self.initial_accumulator_value)
            self.create_slot(variable, 'linear')

    def apply_dense(self, gradient, variable):
        return tf.raw_ops.ResourceApplyFtrl(
            var=variable.handle,
            accum=self.get_slot(variable, 'accum').handle,
            linear=self.get_slot(variable, 'linear').handle,
            grad=gradient,
            lr=self._lr(),
            l1=self._const(self.l1_regularization_strength),
            l2=self._const(self.l2_regularization_strength),
            lr_power=self._const(self.learning_rate_power))

    def get_config(self):
        config = super().get_config()
        config.update({
            'learning_rate_power': self.learning_rate_power,
            'initial_accumulator_value': self.initial_accumulator_value,
            'l1_regularization_strength': self.l1_regularization_strength,
            'l2_regularization_strength': self.l2_regularization_strength,
        })
        return config


_OPTIMIZERS = {
    'sgd': SGD,
    'adam': Adam,
    'adamax': Adamax,
    'rmsprop': RMSProp,
    'adagrad': AdaGrad,
    'adadelta': AdaDelta,
    'ftrl': Ftrl,
}


def get_optimizer(optimizer: Union[str, Optimizer]) -> Optimizer:
    """Resolve an optimizer by name or pass an instance through."""
    if isinstance(optimizer, Optimizer):
        return optimizer
    key = str(optimizer).lower()
    if key not in _OPTIMIZERS:
        raise ValueError(f"Unknown optimizer: {optimizer}")
    return _OPTIMIZERS[key]()
