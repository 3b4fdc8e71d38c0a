import abc
import logging
import math
from typing import Optional, Sequence

from . import factor
from .graph import FactorGraph
from .inference import ExactMarginalCalculator, MarginalCalculator
from .log import LogFunction, NullLogFunction
from .oracle import ZeroProbabilityError, update_subgradient_with_instance
from .parametric import ParametricFactorGraph, SufficientStatistics
from .sgd import cycle_batches
from .variables import Assignment


class CostFunction(abc.ABC):
    """
    Abstract base class for the task loss used in cost-augmented decoding.
    `augment` returns a copy of `graph` whose weights are scaled by
    :math:`\\exp(\\mathrm{cost}(a, \\mathrm{output}))` for every assignment `a`.
    """

    @abc.abstractmethod
    def augment(self, graph: FactorGraph, output: Assignment) -> FactorGraph:
        ...


class HammingCost(CostFunction):
    """
    Hamming distance to the labeled output, weighted by `cost`. For each labeled
    variable, one factor gives weight :math:`e^{\\mathrm{cost}}` to every wrong
    value and 1 to the true value.
    """

    def __init__(self, cost: float=1.0):
        self.cost = cost

    def __repr__(self,):
        return f"HammingCost(cost={self.cost})"

    def augment(self, graph: FactorGraph, output: Assignment) -> FactorGraph:
        cost_weight = math.exp(self.cost)
        relevant = output.intersection(graph.variables)
        for (var_num, true_value) in zip(relevant.var_nums, relevant.values):
            the_vars = graph.variables.intersection([var_num])
            cost_factor = factor.TableFactor(the_vars)
            for a in the_vars.assignment_iterator():
                cost_factor.set_weight(a, 1.0 if a.get_value(var_num) == true_value else cost_weight)
            graph = graph.add_factor(cost_factor)
        return graph


class SubgradientSvmTrainer:
    """
    Trains a `ParametricFactorGraph` as a structured SVM by projected subgradient
    descent on the regularized hinge loss (Pegasos). At iteration `i`
    the step size is :math:`1 / (\\lambda \\sqrt{i + 1})` and the update is
    :math:`\\theta \\leftarrow (1 - \\eta \\lambda) \\theta + \\frac{\\eta}{|B|} g`
    where `g` is the summed subgradient of the batch.

    + `regularization_constant`: :math:`\\lambda`, must be positive
    + `cost_function`: defaults to `HammingCost()`
    """

    def __init__(
        self,
        num_iterations: int,
        batch_size: int,
        regularization_constant: float,
        cost_function: Optional[CostFunction]=None,
        marginal_calculator: Optional[MarginalCalculator]=None,
        log: Optional[LogFunction]=None,
    ):
        if regularization_constant <= 0.0:
            raise ValueError(
                f"regularization_constant must be positive, got {regularization_constant}"
            )
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.num_iterations = num_iterations
        self.batch_size = batch_size
        self.regularization_constant = regularization_constant
        self.cost_function = cost_function if cost_function is not None else HammingCost()
        self.marginal_calculator = marginal_calculator or ExactMarginalCalculator()
        self.log = log if log is not None else NullLogFunction()

    def __repr__(self,):
        return f"SubgradientSvmTrainer(num_iterations={self.num_iterations}, " \
            f"batch_size={self.batch_size}, regularization_constant={self.regularization_constant})"

    def get_step_size(self, iteration: int) -> float:
        return 1.0 / (self.regularization_constant * math.sqrt(iteration + 1))

    def train(
        self,
        family: ParametricFactorGraph,
        initial_parameters: SufficientStatistics,
        examples: Sequence,
    ) -> SufficientStatistics:
        """
        Trains from `initial_parameters`, which are updated in place and returned.
        """
        parameters = initial_parameters
        batches = cycle_batches(examples, self.batch_size)
        logging.info(f"Training {self} on {len(examples)} examples")
        for i in range(self.num_iterations):
            self.log.notify_iteration_start(i)
            batch = next(batches)

            self.log.start_timer("instantiate_model")
            model = family.get_factor_graph_from_parameters(parameters)
            self.log.stop_timer("instantiate_model")

            self.log.start_timer("compute_subgradient")
            subgradient = family.get_new_sufficient_statistics()
            hinge_loss = 0.0
            num_within_margin = 0
            search_errors = 0
            for (j, example) in enumerate(batch):
                self.log.log(example, model, iteration=i, example_num=j)
                try:
                    loss = update_subgradient_with_instance(
                        family,
                        model,
                        self.cost_function,
                        self.marginal_calculator,
                        example,
                        subgradient,
                    )
                except ZeroProbabilityError as e:
                    logging.debug(f"Search error: {e}")
                    search_errors += 1
                    continue
                hinge_loss += loss
                if loss > 0.0:
                    num_within_margin += 1
            self.log.stop_timer("compute_subgradient")

            self.log.start_timer("parameter_update")
            step_size = self.get_step_size(i)
            objective_value = self.regularization_constant * (parameters.get_l2_norm() ** 2) / 2.0
            objective_value += hinge_loss / len(batch) if len(batch) > 0 else math.nan
            parameters.multiply(1.0 - step_size * self.regularization_constant)
            if len(batch) > 0:
                parameters.increment(subgradient, step_size / len(batch))
            self.log.stop_timer("parameter_update")

            self.log.log_statistic(i, "number of examples within margin", num_within_margin)
            self.log.log_statistic(i, "search errors", search_errors)
            self.log.log_statistic(i, "approximate objective value", objective_value)
            self.log.log_parameters(i, parameters)
            self.log.notify_iteration_end(i)
        return parameters
