import abc
import itertools
import logging
import math
from typing import Iterator, Optional, Sequence

import numpy as np

from .log import LogFunction, NullLogFunction
from .oracle import GradientOracle
from .parametric import SufficientStatistics
from .reduce import GradientEvaluation, GradientReducer, MapReduceExecutor

MOVING_AVERAGE_DISCOUNT = 0.9


class Regularizer(abc.ABC):
    """
    Abstract base class for regularized parameter updates. `apply` adjusts
    `gradient` for the regularization penalty, then takes the step
    `parameters <- parameters + step_size * gradient`. It returns the change in
    objective value due to the penalty.
    """

    @abc.abstractmethod
    def apply(
        self,
        gradient: SufficientStatistics,
        parameters: SufficientStatistics,
        step_size: float,
        rng: np.random.Generator,
    ) -> float:
        ...


class StochasticL2Regularizer(Regularizer):
    """
    L2 regularization applied to a random subset of iterations. With probability
    `frequency` the gradient gains :math:`-\\frac{\\lambda}{f} \\theta`, so the
    expected penalty per iteration equals applying :math:`\\lambda` every time.
    Infrequent application keeps sparse gradients sparse for most updates.

    The objective penalty is :math:`\\frac{\\lambda}{2f} \\|\\theta\\|_2^2`.
    """

    def __init__(self, l2_penalty: float, frequency: float=1.0):
        if l2_penalty < 0.0:
            raise ValueError(f"l2_penalty must be non-negative, got {l2_penalty}")
        if not (0.0 <= frequency <= 1.0):
            raise ValueError(f"frequency must be in [0, 1], got {frequency}")
        self.l2_penalty = l2_penalty
        self.frequency = frequency

    def __repr__(self,):
        return f"StochasticL2Regularizer(l2_penalty={self.l2_penalty}, frequency={self.frequency})"

    def apply(self, gradient, parameters, step_size, rng) -> float:
        objective_change = 0.0
        if self.l2_penalty != 0.0 and rng.random() < self.frequency:
            weight = self.l2_penalty / self.frequency
            objective_change = -weight * (parameters.get_l2_norm() ** 2) / 2.0
            gradient.increment(parameters, -weight)
        parameters.increment(gradient, step_size)
        return objective_change


class L1Regularizer(Regularizer):
    """
    Truncated gradient for L1 regularization: a plain gradient step followed by
    soft-thresholding every parameter by `step_size * l1_penalty`.
    """

    def __init__(self, l1_penalty: float):
        if l1_penalty < 0.0:
            raise ValueError(f"l1_penalty must be non-negative, got {l1_penalty}")
        self.l1_penalty = l1_penalty

    def __repr__(self,):
        return f"L1Regularizer(l1_penalty={self.l1_penalty})"

    def apply(self, gradient, parameters, step_size, rng) -> float:
        objective_change = -self.l1_penalty * parameters.get_l1_norm()
        parameters.increment(gradient, step_size)
        parameters.soft_threshold(step_size * self.l1_penalty)
        return objective_change


def cycle_batches(examples: Sequence, batch_size: int) -> Iterator[list]:
    """
    Yields consecutive batches of `batch_size` examples from an endless cycle
    over `examples`. This approximates sampling with replacement while visiting
    every example equally often. Empty `examples` yields empty batches.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    if len(examples) == 0:
        while True:
            yield []
    cycle = itertools.cycle(examples)
    while True:
        yield list(itertools.islice(cycle, batch_size))


class StochasticGradientTrainer:
    """
    Maximizes the objective of a `GradientOracle` by stochastic gradient ascent.

    Each iteration draws the next batch, instantiates the model at the current
    parameters, sums per-example gradients with `executor` and takes a
    regularized step of size `step_size`, or `step_size / sqrt(iteration + 2)`
    if `decay_step_size`. If `return_average_parameters`, the average of the
    parameters over all iterations is returned instead of the final ones.

    + `num_iterations`: number of parameter updates
    + `batch_size`: examples per update
    + `regularizer`: defaults to no regularization
    + `log`: a `LogFunction`. Defaults to `NullLogFunction`.
    + `rng`: a `numpy.random.Generator` for stochastic regularization
    + `executor`: a `MapReduceExecutor`. Defaults to a single worker.
    """

    def __init__(
        self,
        num_iterations: int,
        batch_size: int,
        step_size: float,
        decay_step_size: bool=True,
        return_average_parameters: bool=False,
        regularizer: Optional[Regularizer]=None,
        log: Optional[LogFunction]=None,
        rng: Optional[np.random.Generator]=None,
        executor: Optional[MapReduceExecutor]=None,
    ):
        if num_iterations < 0:
            raise ValueError(f"num_iterations must be non-negative, got {num_iterations}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.num_iterations = num_iterations
        self.batch_size = batch_size
        self.step_size = step_size
        self.decay_step_size = decay_step_size
        self.return_average_parameters = return_average_parameters
        self.regularizer = regularizer if regularizer is not None else StochasticL2Regularizer(0.0)
        self.log = log if log is not None else NullLogFunction()
        self.rng = rng if rng is not None else np.random.default_rng()
        self.executor = executor if executor is not None else MapReduceExecutor(1)

    @classmethod
    def create_with_l2_regularization(
        cls,
        num_iterations: int,
        batch_size: int,
        step_size: float,
        decay_step_size: bool,
        return_average_parameters: bool,
        l2_penalty: float,
        frequency: float=1.0,
        **kwargs,
    ):
        return cls(
            num_iterations,
            batch_size,
            step_size,
            decay_step_size,
            return_average_parameters,
            regularizer=StochasticL2Regularizer(l2_penalty, frequency),
            **kwargs,
        )

    @classmethod
    def create_with_l1_regularization(
        cls,
        num_iterations: int,
        batch_size: int,
        step_size: float,
        decay_step_size: bool,
        return_average_parameters: bool,
        l1_penalty: float,
        **kwargs,
    ):
        return cls(
            num_iterations,
            batch_size,
            step_size,
            decay_step_size,
            return_average_parameters,
            regularizer=L1Regularizer(l1_penalty),
            **kwargs,
        )

    def __repr__(self,):
        return f"StochasticGradientTrainer(num_iterations={self.num_iterations}, " \
            f"batch_size={self.batch_size}, step_size={self.step_size}, regularizer={self.regularizer})"

    def get_step_size(self, iteration: int) -> float:
        if self.decay_step_size:
            return self.step_size / math.sqrt(iteration + 2)
        return self.step_size

    def train(
        self,
        oracle: GradientOracle,
        initial_parameters: SufficientStatistics,
        examples: Sequence,
    ) -> SufficientStatistics:
        """
        Trains from `initial_parameters`, which are updated in place. Returns the
        final (or average) parameters.
        The executor's worker threads are released before returning.
        """
        parameters = initial_parameters
        average_parameters = None
        if self.return_average_parameters and self.num_iterations > 0:
            average_parameters = initial_parameters.duplicate()
            average_parameters.zero_out()

        batches = cycle_batches(examples, self.batch_size)
        evaluation = GradientEvaluation(oracle.initialize_gradient())
        objective_average = None
        gradient_norm_average = None
        logging.info(f"Training {self} on {len(examples)} examples")
        with self.executor:
            for i in range(self.num_iterations):
                self.log.notify_iteration_start(i)
                batch = next(batches)

                self.log.start_timer("instantiate_model")
                model = oracle.instantiate_model(parameters)
                self.log.stop_timer("instantiate_model")

                self.log.start_timer("compute_gradient")
                evaluation.zero_out()
                reducer = GradientReducer(oracle, model, parameters, self.log)
                evaluation = self.executor.map_reduce(batch, reducer, initial_value=evaluation)
                self.log.stop_timer("compute_gradient")

                self.log.start_timer("parameter_update")
                gradient = evaluation.gradient
                if len(batch) > 0:
                    gradient.multiply(1.0 / len(batch))
                    objective_value = evaluation.objective_value / len(batch)
                else:
                    objective_value = math.nan
                current_step_size = self.get_step_size(i)
                objective_value += self.regularizer.apply(gradient, parameters, current_step_size, self.rng)
                gradient_l2 = gradient.get_l2_norm()
                self.log.stop_timer("parameter_update")

                self.log.start_timer("compute_statistics")
                if objective_average is None:
                    objective_average = objective_value
                    gradient_norm_average = gradient_l2
                else:
                    objective_average = MOVING_AVERAGE_DISCOUNT * objective_average \
                        + (1.0 - MOVING_AVERAGE_DISCOUNT) * objective_value
                    gradient_norm_average = MOVING_AVERAGE_DISCOUNT * gradient_norm_average \
                        + (1.0 - MOVING_AVERAGE_DISCOUNT) * gradient_l2
                self.log.log_statistic(i, "search errors", evaluation.search_errors)
                self.log.log_statistic(i, "gradient l2 norm", gradient_l2)
                self.log.log_statistic(i, "step size", current_step_size)
                self.log.log_statistic(i, "objective value", objective_value)
                self.log.log_statistic(i, "objective value moving average", objective_average)
                self.log.log_statistic(i, "gradient l2 norm moving average", gradient_norm_average)
                self.log.stop_timer("compute_statistics")

                if average_parameters is not None:
                    self.log.start_timer("average_parameters")
                    average_parameters.increment(parameters, 1.0 / self.num_iterations)
                    self.log.stop_timer("average_parameters")

                self.log.log_parameters(i, parameters)
                self.log.notify_iteration_end(i)

        if average_parameters is not None:
            return average_parameters
        return parameters
