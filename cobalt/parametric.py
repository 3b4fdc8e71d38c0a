import abc
import collections
import logging
import math
from typing import Mapping, Optional, Sequence

import numpy as np
import torch

from . import factor
from .graph import FactorGraph
from .inference import MarginalSet
from .variables import Assignment, VariableNumMap


class CoercionError(ValueError):
    """
    Raised when a `SufficientStatistics` vector does not have the composition an
    operation requires.
    """


class SufficientStatistics(abc.ABC):
    """
    Abstract base class for vectors of (expected) event counts. Since a model
    family's parameters have the same dimensionality as its sufficient statistics,
    instances also serve as parameter vectors.

    All mutators operate in place. Use `duplicate` for an independent copy.
    """

    @abc.abstractmethod
    def increment(self, other: "SufficientStatistics", multiplier: float=1.0):
        """
        Performs `self <- self + multiplier * other`. `other` must have the same
        composition and dimensionality as `self`.
        """
        ...

    @abc.abstractmethod
    def increment_all(self, amount: float):
        """
        Adds `amount` to every entry. Useful for additive smoothing.
        """
        ...

    @abc.abstractmethod
    def multiply(self, amount: float):
        ...

    @abc.abstractmethod
    def perturb(self, stddev: float, rng: Optional[np.random.Generator]=None):
        """
        Adds independent mean-0 Gaussian noise with standard deviation `stddev`
        to every entry.
        """
        ...

    @abc.abstractmethod
    def soft_threshold(self, threshold: float):
        """
        Shrinks every entry toward zero by `threshold`, clamping at zero.
        """
        ...

    @abc.abstractmethod
    def transfer_parameters(self, other: "SufficientStatistics"):
        """
        Copies entries of `other` into `self`, matching entries by name. Entries
        present in only one of the two vectors are left alone, so this can move
        parameters between models that share some parameter names.
        """
        ...

    @abc.abstractmethod
    def duplicate(self,) -> "SufficientStatistics":
        ...

    @abc.abstractmethod
    def inner_product(self, other: "SufficientStatistics") -> float:
        ...

    @abc.abstractmethod
    def get_l2_norm(self,) -> float:
        ...

    @abc.abstractmethod
    def get_l1_norm(self,) -> float:
        ...

    def zero_out(self,):
        self.multiply(0.0)

    def coerce_to_list(self,) -> "ListSufficientStatistics":
        raise CoercionError(f"Can't coerce {self} to ListSufficientStatistics")

    def coerce_to_tensor(self,) -> "TensorSufficientStatistics":
        raise CoercionError(f"Can't coerce {self} to TensorSufficientStatistics")


class TensorSufficientStatistics(SufficientStatistics):
    """
    A flat vector of named statistics stored in a one-dimensional `torch.Tensor`.
    """

    def __init__(
        self,
        names: Sequence[str],
        values: Optional[torch.Tensor]=None,
    ):
        self.names = tuple(names)
        self._name_index = {name: i for (i, name) in enumerate(self.names)}
        if len(self._name_index) != len(self.names):
            raise ValueError("Statistic names must be unique.")
        if values is None:
            values = torch.zeros(len(self.names), dtype=torch.float64)
        if tuple(values.shape) != (len(self.names),):
            raise ValueError(
                f"Values of shape {tuple(values.shape)} don't match {len(self.names)} names"
            )
        self.values = values.to(torch.float64)

    def __len__(self,):
        return len(self.names)

    def __repr__(self,):
        return f"TensorSufficientStatistics(size={len(self.names)}, l2={self.get_l2_norm():.4g})"

    def coerce_to_tensor(self,) -> "TensorSufficientStatistics":
        return self

    def get_index(self, name: str) -> int:
        return self._name_index[name]

    def get_value(self, name: str) -> float:
        return float(self.values[self._name_index[name]])

    def set_value(self, name: str, value: float):
        self.values[self._name_index[name]] = value

    def increment_entry(self, index: int, amount: float):
        self.values[index] += amount

    def _check_compatible(self, other: "TensorSufficientStatistics"):
        if other.names != self.names:
            raise ValueError(
                f"Can't combine statistics with names {self.names} and {other.names}"
            )

    def increment(self, other: SufficientStatistics, multiplier: float=1.0):
        other = other.coerce_to_tensor()
        self._check_compatible(other)
        self.values.add_(other.values, alpha=multiplier)

    def increment_all(self, amount: float):
        self.values.add_(amount)

    def multiply(self, amount: float):
        self.values.mul_(amount)

    def perturb(self, stddev: float, rng: Optional[np.random.Generator]=None):
        rng = rng if rng is not None else np.random.default_rng()
        noise = rng.normal(0.0, stddev, size=len(self.names))
        self.values.add_(torch.from_numpy(noise))

    def soft_threshold(self, threshold: float):
        self.values = torch.sign(self.values) * torch.clamp(self.values.abs() - threshold, min=0.0)

    def transfer_parameters(self, other: SufficientStatistics):
        other = other.coerce_to_tensor()
        for (i, name) in enumerate(self.names):
            if name in other._name_index:
                self.values[i] = other.values[other._name_index[name]]

    def duplicate(self,) -> "TensorSufficientStatistics":
        return TensorSufficientStatistics(self.names, self.values.clone())

    def inner_product(self, other: SufficientStatistics) -> float:
        other = other.coerce_to_tensor()
        self._check_compatible(other)
        return float(torch.dot(self.values, other.values))

    def get_l2_norm(self,) -> float:
        return float(torch.linalg.vector_norm(self.values, ord=2))

    def get_l1_norm(self,) -> float:
        return float(self.values.abs().sum())


class ListSufficientStatistics(SufficientStatistics):
    """
    A vector composed of independently named sub-vectors, for models with
    logically distinct parameter blocks. Operations apply block by block.
    """

    def __init__(
        self,
        names: Sequence[str],
        statistics: Sequence[SufficientStatistics],
    ):
        if len(names) != len(statistics):
            raise ValueError(f"Names {names} don't match {len(statistics)} statistics")
        self.statistics = collections.OrderedDict(zip(names, statistics))
        if len(self.statistics) != len(names):
            raise ValueError("Statistic names must be unique.")

    @property
    def names(self,) -> tuple[str,...]:
        return tuple(self.statistics.keys())

    def __len__(self,):
        return len(self.statistics)

    def __repr__(self,):
        return f"ListSufficientStatistics({list(self.statistics.items())})"

    def get(self, name: str) -> SufficientStatistics:
        return self.statistics[name]

    def coerce_to_list(self,) -> "ListSufficientStatistics":
        return self

    def _check_compatible(self, other: "ListSufficientStatistics"):
        if other.names != self.names:
            raise ValueError(f"Can't combine statistics with blocks {self.names} and {other.names}")

    def increment(self, other: SufficientStatistics, multiplier: float=1.0):
        other = other.coerce_to_list()
        self._check_compatible(other)
        for (mine, theirs) in zip(self.statistics.values(), other.statistics.values()):
            mine.increment(theirs, multiplier)

    def increment_all(self, amount: float):
        for s in self.statistics.values():
            s.increment_all(amount)

    def multiply(self, amount: float):
        for s in self.statistics.values():
            s.multiply(amount)

    def perturb(self, stddev: float, rng: Optional[np.random.Generator]=None):
        rng = rng if rng is not None else np.random.default_rng()
        for s in self.statistics.values():
            s.perturb(stddev, rng=rng)

    def soft_threshold(self, threshold: float):
        for s in self.statistics.values():
            s.soft_threshold(threshold)

    def transfer_parameters(self, other: SufficientStatistics):
        other = other.coerce_to_list()
        for (name, s) in self.statistics.items():
            if name in other.statistics:
                s.transfer_parameters(other.statistics[name])

    def duplicate(self,) -> "ListSufficientStatistics":
        return ListSufficientStatistics(
            self.names,
            [s.duplicate() for s in self.statistics.values()],
        )

    def inner_product(self, other: SufficientStatistics) -> float:
        other = other.coerce_to_list()
        self._check_compatible(other)
        return sum(
            mine.inner_product(theirs)
            for (mine, theirs) in zip(self.statistics.values(), other.statistics.values())
        )

    def get_l2_norm(self,) -> float:
        return math.sqrt(sum(s.get_l2_norm() ** 2 for s in self.statistics.values()))

    def get_l1_norm(self,) -> float:
        return sum(s.get_l1_norm() for s in self.statistics.values())


def _feature_name(assignment: Assignment) -> str:
    return ",".join(str(v) for v in assignment.values)


class ParametricFactor(abc.ABC):
    """
    Abstract base class for families of factors indexed by a parameter vector.
    Subclasses must implement:

    + `get_new_sufficient_statistics`: a zero vector of the right dimensionality
    + `get_factor_from_parameters`: the factor for a parameter vector. Must be pure.
    + `increment_sufficient_statistics_from_assignment`: adds `count` to the
        statistics of the features active at an assignment. `count` may be negative.
    + `get_parameter_description`: a human-readable summary of parameters
    """

    def __init__(self, variables: VariableNumMap):
        self.vars = variables

    @abc.abstractmethod
    def get_new_sufficient_statistics(self,) -> SufficientStatistics:
        ...

    @abc.abstractmethod
    def get_factor_from_parameters(self, parameters: SufficientStatistics) -> factor.Factor:
        ...

    @abc.abstractmethod
    def increment_sufficient_statistics_from_assignment(
        self,
        statistics: SufficientStatistics,
        assignment: Assignment,
        count: float,
    ):
        ...

    @abc.abstractmethod
    def get_parameter_description(self, parameters: SufficientStatistics) -> str:
        ...

    def increment_sufficient_statistics_from_marginal(
        self,
        statistics: SufficientStatistics,
        marginal: factor.Factor,
        count: float,
        partition_function: float,
    ):
        """
        Adds `count` times the expected statistics under `marginal` (normalized by
        `partition_function`) to `statistics`.
        """
        for a in marginal.outcomes():
            weight = marginal.get_unnormalized_probability(a)
            self.increment_sufficient_statistics_from_assignment(
                statistics,
                a,
                count * weight / partition_function,
            )


class IndicatorLogLinearFactor(ParametricFactor):
    """
    A log-linear family with one indicator feature (and parameter) per assignment
    in a fixed sparse support. The factor for parameters :math:`\\theta` assigns
    weight :math:`\\exp(\\theta_a)` to each supported assignment :math:`a` and 0
    to every other assignment.
    """

    def __init__(self, variables: VariableNumMap, support: factor.Factor):
        super().__init__(variables)
        if support.vars != variables:
            raise ValueError(f"Support over {support.vars} doesn't match {variables}")
        self.features = sorted(support.outcomes(), key=variables.assignment_to_int_array)
        self._feature_index = {a: i for (i, a) in enumerate(self.features)}
        self.feature_names = [_feature_name(a) for a in self.features]

    @classmethod
    def dense(cls, variables: VariableNumMap):
        """
        One feature for every assignment of `variables`.
        """
        return cls(variables, factor.TableFactor.unity(variables))

    def get_new_sufficient_statistics(self,) -> TensorSufficientStatistics:
        return TensorSufficientStatistics(self.feature_names)

    def get_factor_from_parameters(self, parameters: SufficientStatistics) -> factor.TableFactor:
        parameters = parameters.coerce_to_tensor()
        if len(parameters) != len(self.features):
            raise ValueError(
                f"Expected {len(self.features)} parameters, got {len(parameters)}"
            )
        weights = torch.exp(parameters.values).tolist()
        return factor.TableFactor(self.vars, zip(self.features, weights))

    def increment_sufficient_statistics_from_assignment(
        self,
        statistics: SufficientStatistics,
        assignment: Assignment,
        count: float,
    ):
        statistics = statistics.coerce_to_tensor()
        sub = assignment.sub_assignment(self.vars)
        if sub in self._feature_index:
            statistics.increment_entry(self._feature_index[sub], count)

    def get_parameter_description(self, parameters: SufficientStatistics) -> str:
        parameters = parameters.coerce_to_tensor()
        return "\n".join(
            f"{name}\t{value:.6g}"
            for (name, value) in zip(self.feature_names, parameters.values.tolist())
        )


class CptTableFactor(ParametricFactor):
    """
    A conditional probability table :math:`p(\\mathrm{children} | \\mathrm{parents})`.
    The parameters are event counts, one per joint assignment; the factor weight
    of an assignment is its count divided by the total count of its parent
    assignment.
    """

    def __init__(self, parent_vars: VariableNumMap, child_vars: VariableNumMap):
        if len(child_vars) == 0:
            raise ValueError("A CptTableFactor needs at least one child variable.")
        super().__init__(parent_vars.union(child_vars))
        self.parent_vars = parent_vars
        self.child_vars = child_vars
        self.outcomes = list(self.vars.assignment_iterator())
        self._outcome_index = {a: i for (i, a) in enumerate(self.outcomes)}
        self.outcome_names = [_feature_name(a) for a in self.outcomes]

    def get_new_sufficient_statistics(self,) -> TensorSufficientStatistics:
        return TensorSufficientStatistics(self.outcome_names)

    def get_factor_from_parameters(self, parameters: SufficientStatistics) -> factor.TableFactor:
        parameters = parameters.coerce_to_tensor()
        if len(parameters) != len(self.outcomes):
            raise ValueError(
                f"Expected {len(self.outcomes)} counts, got {len(parameters)}"
            )
        # counts can dip below 0 by rounding after many subtractions
        counts = torch.clamp(parameters.values, min=0.0).tolist()
        totals = collections.defaultdict(float)
        for (a, count) in zip(self.outcomes, counts):
            totals[a.sub_assignment(self.parent_vars)] += count
        result = factor.TableFactor(self.vars)
        for (a, count) in zip(self.outcomes, counts):
            total = totals[a.sub_assignment(self.parent_vars)]
            if count > 0.0:
                result.set_weight(a, count / total)
        return result

    def increment_sufficient_statistics_from_assignment(
        self,
        statistics: SufficientStatistics,
        assignment: Assignment,
        count: float,
    ):
        statistics = statistics.coerce_to_tensor()
        statistics.increment_entry(self._outcome_index[assignment.sub_assignment(self.vars)], count)

    def get_parameter_description(self, parameters: SufficientStatistics) -> str:
        cpt = self.get_factor_from_parameters(parameters)
        return "\n".join(
            f"{name}\t{cpt.get_unnormalized_probability(a):.6g}"
            for (name, a) in zip(self.outcome_names, self.outcomes)
        )


class ParametricFactorGraph:
    """
    A family of factor graphs: a base `FactorGraph` of fixed factors plus an
    ordered collection of named parametric factors. Parameters are a
    `ListSufficientStatistics` with one block per parametric factor, named
    after it.
    """

    def __init__(
        self,
        graph: FactorGraph,
        parametric_factors: Mapping[str, ParametricFactor],
    ):
        self.graph = graph
        self.parametric_factors = collections.OrderedDict(parametric_factors)
        for (name, f) in self.parametric_factors.items():
            if not graph.variables.contains_all(f.vars.var_nums):
                raise ValueError(f"Parametric factor {name} uses variables not in the graph.")

    def __repr__(self,):
        return f"ParametricFactorGraph(factors={list(self.parametric_factors.keys())})"

    def get_variables(self,) -> VariableNumMap:
        return self.graph.variables

    def get_new_sufficient_statistics(self,) -> ListSufficientStatistics:
        return ListSufficientStatistics(
            list(self.parametric_factors.keys()),
            [f.get_new_sufficient_statistics() for f in self.parametric_factors.values()],
        )

    def get_factor_graph_from_parameters(self, parameters: SufficientStatistics) -> FactorGraph:
        parameters = parameters.coerce_to_list()
        the_graph = self.graph
        for (name, f) in self.parametric_factors.items():
            the_graph = the_graph.add_factor(f.get_factor_from_parameters(parameters.get(name)))
        return the_graph

    def increment_sufficient_statistics(
        self,
        statistics: SufficientStatistics,
        marginals: MarginalSet,
        count: float,
    ):
        """
        Adds `count` times the expected statistics under `marginals` to `statistics`.
        """
        statistics = statistics.coerce_to_list()
        partition_function = marginals.get_partition_function()
        for (name, f) in self.parametric_factors.items():
            f.increment_sufficient_statistics_from_marginal(
                statistics.get(name),
                marginals.get_marginal(f.vars.var_nums),
                count,
                partition_function,
            )

    def increment_sufficient_statistics_from_assignment(
        self,
        statistics: SufficientStatistics,
        assignment: Assignment,
        count: float,
    ):
        statistics = statistics.coerce_to_list()
        for (name, f) in self.parametric_factors.items():
            f.increment_sufficient_statistics_from_assignment(statistics.get(name), assignment, count)

    def get_parameter_description(self, parameters: SufficientStatistics) -> str:
        parameters = parameters.coerce_to_list()
        s = ""
        for (name, f) in self.parametric_factors.items():
            s += f"{name}:\n{f.get_parameter_description(parameters.get(name))}\n"
        logging.debug(f"Described {len(self.parametric_factors)} parameter blocks")
        return s
