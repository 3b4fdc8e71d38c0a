import abc
import math

from .graph import FactorGraph
from .inference import ExactMarginalCalculator, MarginalCalculator
from .parametric import ParametricFactorGraph, SufficientStatistics
from .variables import Assignment


class ZeroProbabilityError(ValueError):
    """
    Raised when the labeled output of a training example has zero probability
    under the current model, so no gradient can be computed for it. Trainers
    count these as search errors.
    """


class GradientOracle(abc.ABC):
    """
    Abstract base class for objectives optimized by `StochasticGradientTrainer`.
    Subclasses must implement:

    + `initialize_gradient`: a zero vector with the parameters' composition
    + `instantiate_model`: the model snapshot for a parameter vector
    + `accumulate_gradient`: adds one example's gradient to `gradient` and
        returns its objective value. The objective is maximized.

    `accumulate_gradient` is called concurrently from worker threads, each with
    its own `gradient`. It must not mutate `model` or `parameters`.
    """

    @abc.abstractmethod
    def initialize_gradient(self,) -> SufficientStatistics:
        ...

    @abc.abstractmethod
    def instantiate_model(self, parameters: SufficientStatistics) -> FactorGraph:
        ...

    @abc.abstractmethod
    def accumulate_gradient(
        self,
        gradient: SufficientStatistics,
        model: FactorGraph,
        parameters: SufficientStatistics,
        example,
        log,
    ) -> float:
        ...


class LoglikelihoodOracle(GradientOracle):
    """
    Conditional log-likelihood :math:`\\log p(y | x)` of a `ParametricFactorGraph`
    with log-linear factors. The gradient is the expected feature counts given
    both input and output minus the expected counts given only the input, so
    hidden variables are summed over.
    """

    def __init__(
        self,
        family: ParametricFactorGraph,
        marginal_calculator: MarginalCalculator=None,
    ):
        self.family = family
        self.marginal_calculator = marginal_calculator or ExactMarginalCalculator()

    def initialize_gradient(self,) -> SufficientStatistics:
        return self.family.get_new_sufficient_statistics()

    def instantiate_model(self, parameters: SufficientStatistics) -> FactorGraph:
        return self.family.get_factor_graph_from_parameters(parameters)

    def accumulate_gradient(self, gradient, model, parameters, example, log) -> float:
        input_graph = model.conditional(example.input)
        output_graph = model.conditional(example.input.union(example.output))
        input_marginals = self.marginal_calculator.compute_marginals(input_graph)
        output_marginals = self.marginal_calculator.compute_marginals(output_graph)
        log.log(example, output_graph)

        output_partition = output_marginals.get_partition_function()
        if output_partition <= 0.0:
            raise ZeroProbabilityError(f"Labeled output {example.output} has zero probability")
        input_partition = input_marginals.get_partition_function()

        self.family.increment_sufficient_statistics(gradient, output_marginals, 1.0)
        self.family.increment_sufficient_statistics(gradient, input_marginals, -1.0)
        return math.log(output_partition) - math.log(input_partition)


def best_assignment(
    marginal_calculator: MarginalCalculator,
    graph: FactorGraph,
    example,
) -> Assignment:
    """
    The highest-weight assignment of `graph`. Raises `ZeroProbabilityError` when
    every assignment has zero weight.
    """
    max_marginals = marginal_calculator.compute_max_marginals(graph, 1)
    if max_marginals.beam_size() == 0:
        raise ZeroProbabilityError(f"No assignment consistent with {example} has non-zero weight")
    return max_marginals.get_nth_best_assignment(0)


def update_subgradient_with_instance(
    family: ParametricFactorGraph,
    model: FactorGraph,
    cost_function,
    marginal_calculator: MarginalCalculator,
    example,
    subgradient: SufficientStatistics,
) -> float:
    """
    Accumulates the structured hinge loss subgradient of one example into
    `subgradient` and returns the example's hinge loss.

    The prediction is the best assignment of the cost-augmented model given the
    input. The truth is the best assignment of the model given input and output,
    which resolves any hidden variables. If they differ, `subgradient` gains the
    features of the truth minus the features of the prediction, and the loss is
    the difference in their cost-augmented log weights.
    """
    cost_graph = cost_function.augment(model, example.output).conditional(example.input)
    true_graph = model.conditional(example.input.union(example.output))

    prediction = best_assignment(marginal_calculator, cost_graph, example)
    truth = best_assignment(marginal_calculator, true_graph, example)
    if prediction == truth:
        return 0.0

    family.increment_sufficient_statistics_from_assignment(subgradient, truth, 1.0)
    family.increment_sufficient_statistics_from_assignment(subgradient, prediction, -1.0)
    return cost_graph.get_unnormalized_log_probability(prediction) \
        - cost_graph.get_unnormalized_log_probability(truth)


class MaxMarginOracle(GradientOracle):
    """
    The negated structured hinge loss of a `ParametricFactorGraph`, for training
    max-margin models with `StochasticGradientTrainer`. `cost_function` builds
    the cost-augmented graph, e.g. a `cobalt.svm.HammingCost`.
    """

    def __init__(
        self,
        family: ParametricFactorGraph,
        cost_function,
        marginal_calculator: MarginalCalculator=None,
    ):
        self.family = family
        self.cost_function = cost_function
        self.marginal_calculator = marginal_calculator or ExactMarginalCalculator()

    def initialize_gradient(self,) -> SufficientStatistics:
        return self.family.get_new_sufficient_statistics()

    def instantiate_model(self, parameters: SufficientStatistics) -> FactorGraph:
        return self.family.get_factor_graph_from_parameters(parameters)

    def accumulate_gradient(self, gradient, model, parameters, example, log) -> float:
        log.log(example, model)
        loss = update_subgradient_with_instance(
            self.family,
            model,
            self.cost_function,
            self.marginal_calculator,
            example,
            gradient,
        )
        return -loss
