import abc
import functools
import logging
from typing import Iterable

import opt_einsum
import torch

from . import factor, tensor
from .graph import FactorGraph
from .variables import Assignment, VariableNumMap


class MarginalSet(abc.ABC):
    """
    (Unnormalized) marginal distributions of a factor graph.
    """

    @abc.abstractmethod
    def get_marginal(self, var_nums: Iterable[int]) -> factor.TableFactor:
        ...

    @abc.abstractmethod
    def get_partition_function(self,) -> float:
        ...

    @abc.abstractmethod
    def get_conditioned_values(self,) -> Assignment:
        ...


class MaxMarginalSet(abc.ABC):
    """
    Max marginals, i.e. the highest-weight assignments of a graphical model, in
    decreasing order of weight.
    """

    @abc.abstractmethod
    def beam_size(self,) -> int:
        ...

    @abc.abstractmethod
    def get_nth_best_assignment(self, n: int) -> Assignment:
        ...


class FactorMarginalSet(MarginalSet):
    """
    Marginals computed from the joint factor of a graph. Variables of the graph
    that appear in no factor are uniform (or fixed, if conditioned on).
    """

    def __init__(self, joint: factor.TableFactor, graph: FactorGraph):
        self.joint = joint
        self.variables = graph.variables
        self.conditioned_values = graph.get_conditioned_values()
        # graph variables outside the joint that nothing constrains
        self._free_vars = self.variables \
            .remove_all(joint.vars) \
            .remove_all(self.conditioned_values.var_nums)
        self._partition_function = joint.get_partition_function() * self._free_vars.num_assignments()

    def get_partition_function(self,) -> float:
        return self._partition_function

    def get_conditioned_values(self,) -> Assignment:
        return self.conditioned_values

    def get_marginal(self, var_nums: Iterable[int]) -> factor.TableFactor:
        var_nums = set(var_nums)
        if not self.variables.contains_all(var_nums):
            raise ValueError(f"Can't compute marginal of {sorted(var_nums)} not in {self.variables}")
        marginal = self.joint.marginalize(
            [v for v in self.joint.vars.var_nums if v not in var_nums]
        )
        multiplicity = self._free_vars.remove_all(var_nums).num_assignments()
        extra = []
        outside = self.variables.intersection(var_nums).remove_all(self.joint.vars)
        for var_num in outside.var_nums:
            single = outside.intersection([var_num])
            if self.conditioned_values.contains_var(var_num):
                extra.append(factor.TableFactor.point_distribution(single, self.conditioned_values))
            else:
                extra.append(factor.TableFactor.unity(single))
        if len(extra) > 0:
            marginal = factor.product_factor([marginal] + extra)
        if multiplicity != 1:
            marginal = factor.TableFactor(
                marginal.vars,
                ((a, w * multiplicity) for (a, w) in marginal.items()),
            )
        return marginal


class FactorMaxMarginalSet(MaxMarginalSet):
    """
    The `beam_size` best assignments of a joint factor, completed with the graph's
    conditioned values. Unconstrained variables outside the joint take their
    first value.
    """

    def __init__(self, joint: factor.TableFactor, graph: FactorGraph, beam_size: int):
        conditioned = graph.get_conditioned_values()
        completion = dict()
        for (var_num, variable) in zip(graph.variables.var_nums, graph.variables.variables):
            if var_num in joint.vars:
                continue
            if conditioned.contains_var(var_num):
                completion[var_num] = conditioned.get_value(var_num)
            else:
                completion[var_num] = variable.get_value(0)
        completion = Assignment.from_mapping(completion)
        self.joint = joint
        self.assignments = [
            a.union(completion) for a in joint.most_likely_assignments(beam_size)
        ]

    def beam_size(self,) -> int:
        return len(self.assignments)

    def get_nth_best_assignment(self, n: int) -> Assignment:
        if n >= len(self.assignments):
            raise IndexError(f"Only {len(self.assignments)} assignments available, requested {n}")
        return self.assignments[n]


class MarginalCalculator(abc.ABC):
    """
    Abstract base class for inference algorithms. Subclasses compute the joint
    factor of a graph; marginals and max marginals are derived from it.
    """

    @abc.abstractmethod
    def compute_joint(self, graph: FactorGraph) -> factor.TableFactor:
        ...

    def compute_marginals(self, graph: FactorGraph) -> FactorMarginalSet:
        return FactorMarginalSet(self.compute_joint(graph), graph)

    def compute_max_marginals(self, graph: FactorGraph, beam_size: int=1) -> FactorMaxMarginalSet:
        return FactorMaxMarginalSet(self.compute_joint(graph), graph, beam_size)


class ExactMarginalCalculator(MarginalCalculator):
    """
    Exact inference by sparse multiplication of every factor in the graph.
    Zero-weight assignments are never enumerated once any factor rules them out,
    so this is efficient when factors (especially conditioned ones) are sparse.
    """

    def compute_joint(self, graph: FactorGraph) -> factor.TableFactor:
        return factor.product_factor(graph.factors)


@functools.lru_cache(maxsize=128,)
def make_contract_expr(
    network_string: str,
    output: str,
    shapes,
    optimize="greedy",
):
    """
    Generates a contraction path computing the tensor over `output` from the
    factors denoted by `network_string` with shapes `shapes`.

    NOTE: this method uses an LRU cache to store contraction paths. Paths are mapped to by
    a (network_string, output, shapes) tuple.
    """
    return opt_einsum.contract_expression(
        network_string + f"->{output}",
        *shapes,
        optimize=optimize,
    )


def contraction_cache_info():
    """
    Returns the (hits, misses, maxsize, currsize) of the contraction path cache.
    """
    return make_contract_expr.cache_info()


class DenseMarginalCalculator(MarginalCalculator):
    """
    Exact inference by contracting dense `torch` tables with `opt_einsum`. Every
    factor is densified, so the cost is exponential in the number of variables of
    the joint; it is intended for small graphs and for checking sparse results.
    """

    def __init__(self, optimize="greedy", dtype=torch.float64):
        self.optimize = optimize
        self.dtype = dtype

    def compute_joint(self, graph: FactorGraph) -> factor.TableFactor:
        scale = 1.0
        tables = []
        joint_vars = VariableNumMap.EMPTY
        for f in graph.factors:
            if len(f.vars) == 0:
                scale *= f.get_unnormalized_probability(Assignment.EMPTY)
            else:
                tables.append(f)
                joint_vars = joint_vars.union(f.vars)
        if len(tables) == 0:
            return factor.TableFactor(joint_vars, ((Assignment.EMPTY, scale),))

        symbols = {v: opt_einsum.get_symbol(i) for (i, v) in enumerate(joint_vars.var_nums)}
        network_string = ",".join(
            "".join(symbols[v] for v in f.vars.var_nums) for f in tables
        )
        output = "".join(symbols[v] for v in joint_vars.var_nums)
        contract_expr = make_contract_expr(
            network_string,
            output,
            tuple(f.vars.get_sizes() for f in tables),
            optimize=self.optimize,
        )
        logging.debug(f"Contracting {network_string}->{output}: {contraction_cache_info()}")
        with torch.no_grad():
            result = contract_expr(
                *(f.to_tensor().to_dense(dtype=self.dtype) for f in tables),
                backend="torch",
            )
        if scale != 1.0:
            result = result * scale
        return factor.TableFactor.from_tensor(
            joint_vars,
            tensor.SparseTensor.from_dense(joint_vars.var_nums, result),
        )
