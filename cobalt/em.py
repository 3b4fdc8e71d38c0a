import logging
import math
from typing import Optional, Sequence

import numpy as np

from .inference import ExactMarginalCalculator, MarginalCalculator
from .log import LogFunction, NullLogFunction
from .oracle import ZeroProbabilityError
from .parametric import ParametricFactorGraph, SufficientStatistics
from .variables import Assignment


class IncrementalEMTrainer:
    """
    Incremental (online) EM for count-based families such as `CptTableFactor`.

    Every example keeps the marginals it last contributed to each parametric
    factor. Visiting an example first subtracts those marginals from the counts,
    then re-runs inference under the current counts and adds the new marginals.
    Each example therefore contributes exactly once to the counts at any time,
    and the model improves after every example rather than every pass.

    + `smoothing`: pseudo-count added to every count before training
    + `shuffle`: visit examples in a random order each pass, drawn from `rng`
    """

    def __init__(
        self,
        num_iterations: int,
        smoothing: float,
        marginal_calculator: Optional[MarginalCalculator]=None,
        log: Optional[LogFunction]=None,
        rng: Optional[np.random.Generator]=None,
        shuffle: bool=False,
    ):
        if smoothing < 0.0:
            raise ValueError(f"smoothing must be non-negative, got {smoothing}")
        self.num_iterations = num_iterations
        self.smoothing = smoothing
        self.marginal_calculator = marginal_calculator or ExactMarginalCalculator()
        self.log = log if log is not None else NullLogFunction()
        self.rng = rng if rng is not None else np.random.default_rng()
        self.shuffle = shuffle

    def __repr__(self,):
        return f"IncrementalEMTrainer(num_iterations={self.num_iterations}, smoothing={self.smoothing})"

    def train(
        self,
        family: ParametricFactorGraph,
        examples: Sequence[Assignment],
        initial_parameters: Optional[SufficientStatistics]=None,
    ) -> SufficientStatistics:
        """
        Returns the counts after `num_iterations` passes over `examples`. Counts
        start from `initial_parameters` (zero by default) plus `smoothing`.
        """
        if initial_parameters is not None:
            parameters = initial_parameters.duplicate().coerce_to_list()
        else:
            parameters = family.get_new_sufficient_statistics()
        parameters.increment_all(self.smoothing)

        # (example index, factor name) -> (marginal, partition function)
        cached_marginals = dict()
        logging.info(f"Training {self} on {len(examples)} examples")
        for i in range(self.num_iterations):
            self.log.notify_iteration_start(i)
            order = range(len(examples))
            if self.shuffle:
                order = self.rng.permutation(len(examples)).tolist()

            log_likelihood = 0.0
            for j in order:
                example = examples[j]
                self.log.log(example, family.graph, iteration=i, example_num=j)

                for (name, f) in family.parametric_factors.items():
                    if (j, name) in cached_marginals:
                        (marginal, partition_function) = cached_marginals.pop((j, name))
                        f.increment_sufficient_statistics_from_marginal(
                            parameters.get(name),
                            marginal,
                            -1.0,
                            partition_function,
                        )

                model = family.get_factor_graph_from_parameters(parameters)
                marginals = self.marginal_calculator.compute_marginals(model.conditional(example))
                partition_function = marginals.get_partition_function()
                if partition_function <= 0.0:
                    raise ZeroProbabilityError(f"Example {j} has zero probability: {example}")
                log_likelihood += math.log(partition_function)

                for (name, f) in family.parametric_factors.items():
                    marginal = marginals.get_marginal(f.vars.var_nums)
                    f.increment_sufficient_statistics_from_marginal(
                        parameters.get(name),
                        marginal,
                        1.0,
                        partition_function,
                    )
                    cached_marginals[(j, name)] = (marginal, partition_function)

            self.log.log_statistic(i, "log likelihood", log_likelihood)
            self.log.log_parameters(i, parameters)
            self.log.notify_iteration_end(i)
        return parameters
