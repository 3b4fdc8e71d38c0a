import collections
import logging
import math
from typing import Hashable, Iterable, Mapping, Optional, Sequence

from . import factor
from .variables import Assignment, DiscreteVariable, VariableNumMap


class FactorGraph:
    """
    A `FactorGraph` is a collection of named discrete variables and the factors
    defined over them, together with a bipartite adjacency index linking each
    variable to the factors that contain it and vice versa.

    Factor graphs are treated as values: `add_variable`, `add_factor`,
    `conditional` and `marginalize` return new graphs and never modify `self`.
    The factors themselves are shared between graphs, so they must not be
    mutated once added.
    """

    def __init__(
        self,
        variables: VariableNumMap=VariableNumMap.EMPTY,
        variable_names: Optional[Mapping[str, int]]=None,
        factors: Iterable[factor.Factor]=(),
        conditioned_values: Assignment=Assignment.EMPTY,
    ):
        self.variables = variables
        self._variable_names = collections.OrderedDict(variable_names or dict())
        if set(self._variable_names.values()) != set(variables.var_nums):
            raise ValueError("Every variable must have exactly one name.")
        self._factors = tuple(factors)
        self._conditioned_values = conditioned_values

        self._variable_factor_map = {v: set() for v in variables.var_nums}
        self._factor_variable_map = dict()
        for (factor_num, f) in enumerate(self._factors):
            if not variables.contains_all(f.vars.var_nums):
                raise ValueError(
                    f"Factor over {f.vars.var_nums} uses variables not in the graph {variables.var_nums}"
                )
            self._factor_variable_map[factor_num] = set(f.vars.var_nums)
            for var_num in f.vars.var_nums:
                self._variable_factor_map[var_num].add(factor_num)

    def _copy(self, **kwargs) -> "FactorGraph":
        args = dict(
            variables=self.variables,
            variable_names=self._variable_names,
            factors=self._factors,
            conditioned_values=self._conditioned_values,
        )
        args.update(kwargs)
        return FactorGraph(**args)

    def __repr__(self,):
        s = "FactorGraph(\n"
        s += f"\tvariables={list(self._variable_names.keys())},\n"
        for f in self._factors:
            s += f"\t{f.vars.var_nums},\n"
        if len(self._conditioned_values) > 0:
            s += f"\tconditioned={self._conditioned_values}\n"
        s += ")"
        return s

    @property
    def factors(self,) -> tuple[factor.Factor,...]:
        return self._factors

    def num_factors(self,) -> int:
        return len(self._factors)

    def get_factor(self, factor_num: int) -> factor.Factor:
        return self._factors[factor_num]

    def get_variable_names(self,) -> list[str]:
        return list(self._variable_names.keys())

    def get_variable_index(self, variable_name: str) -> int:
        """
        Returns the number of the variable called `variable_name`. Raises
        `KeyError` if there is no such variable.
        """
        return self._variable_names[variable_name]

    def get_variable_name(self, var_num: int) -> str:
        for (name, num) in self._variable_names.items():
            if num == var_num:
                return name
        raise KeyError(f"No variable numbered {var_num}")

    def get_conditioned_values(self,) -> Assignment:
        return self._conditioned_values

    def add_variable(self, variable_name: str, variable: DiscreteVariable) -> "FactorGraph":
        """
        Returns a graph with a new variable, unconnected to any factors. Variable
        numbers are assigned in increasing order. Raises `ValueError` if a
        variable called `variable_name` already exists.
        """
        if variable_name in self._variable_names:
            raise ValueError(f"Variable {variable_name} already exists.")
        var_num = (max(self.variables.var_nums) + 1) if len(self.variables) > 0 else 0
        names = collections.OrderedDict(self._variable_names)
        names[variable_name] = var_num
        return self._copy(
            variables=self.variables.add_mapping(var_num, variable),
            variable_names=names,
        )

    def add_factor(self, new_factor: factor.Factor) -> "FactorGraph":
        return self._copy(factors=self._factors + (new_factor,))

    def add_table_factor(
        self,
        variable_names: Sequence[str],
        weights: Mapping[tuple, float],
    ) -> "FactorGraph":
        """
        Adds a `TableFactor` over the named variables. `weights` maps outcome tuples,
        listed in the order of `variable_names`, to weights.
        """
        the_vars = self.lookup_variables(variable_names)
        the_factor = factor.TableFactor(the_vars)
        for (outcome, weight) in weights.items():
            the_factor.set_weight(self.outcome_to_assignment(variable_names, outcome), weight)
        return self.add_factor(the_factor)

    def lookup_variables(self, variable_names: Iterable[str]) -> VariableNumMap:
        """
        Returns the variables with the given names. The order of the names is
        irrelevant. Raises `ValueError` on an unknown name.
        """
        var_nums = []
        for name in variable_names:
            if name not in self._variable_names:
                raise ValueError(f"Must use an already specified variable name, got {name}")
            var_nums.append(self._variable_names[name])
        return self.variables.intersection(var_nums)

    def outcome_to_assignment(
        self,
        variable_names: Sequence[str],
        outcome: Sequence[Hashable],
    ) -> Assignment:
        if len(variable_names) != len(outcome):
            raise ValueError(f"Names {variable_names} don't match outcome {outcome}")
        var_nums = [self.get_variable_index(name) for name in variable_names]
        for (var_num, value) in zip(var_nums, outcome):
            self.variables.get_variable(var_num).get_value_index(value)
        return Assignment(var_nums, outcome)

    def assignment_to_object(self, assignment: Assignment) -> dict[str, Hashable]:
        return {
            name: assignment.get_value(var_num)
            for (name, var_num) in self._variable_names.items()
            if assignment.contains_var(var_num)
        }

    def get_factors_with_variable(self, var_num: int) -> set[int]:
        return set(self._variable_factor_map[var_num])

    def get_factor_variables(self, factor_num: int) -> set[int]:
        return set(self._factor_variable_map[factor_num])

    def get_shared_variables(self, factor_1: int, factor_2: int) -> set[int]:
        return self._factor_variable_map[factor_1] & self._factor_variable_map[factor_2]

    def get_adjacent_factors(self, factor_num: int) -> set[int]:
        """
        Returns the factors which share at least one variable with `factor_num`,
        including `factor_num` itself.
        """
        adjacent = set()
        for var_num in self._factor_variable_map[factor_num]:
            adjacent |= self._variable_factor_map[var_num]
        return adjacent

    def conditional(self, assignment: Assignment) -> "FactorGraph":
        """
        Conditions every factor on `assignment`. Variables of `assignment` that are
        not in this graph are ignored. The conditioned values are recorded and
        accumulate across repeated calls.
        """
        relevant = assignment.intersection(self.variables)
        return self._copy(
            factors=tuple(f.conditional(relevant) for f in self._factors),
            conditioned_values=self._conditioned_values.union(relevant),
        )

    def marginalize(self, var_nums: Iterable[int]) -> "FactorGraph":
        """
        Sums `var_nums` out of the graph. Every factor touching an eliminated variable
        is replaced by the marginal of their product.
        """
        eliminate = set(var_nums)
        touching = [f for f in self._factors if set(f.vars.var_nums) & eliminate]
        untouched = [f for f in self._factors if not (set(f.vars.var_nums) & eliminate)]
        new_factors = untouched
        if len(touching) > 0:
            new_factors = untouched + [factor.product_factor(touching).marginalize(eliminate)]
        names = collections.OrderedDict(
            (name, num) for (name, num) in self._variable_names.items() if num not in eliminate
        )
        logging.debug(f"Marginalized {sorted(eliminate)}, {len(touching)} factors merged")
        return FactorGraph(
            variables=self.variables.remove_all(eliminate),
            variable_names=names,
            factors=new_factors,
            conditioned_values=self._conditioned_values.remove_all(eliminate),
        )

    def get_unnormalized_probability(self, assignment: Assignment) -> float:
        """
        The product of every factor's weight at `assignment`, which must assign
        every variable in the graph.
        """
        weight = 1.0
        for f in self._factors:
            weight *= f.get_unnormalized_probability(assignment.sub_assignment(f.vars))
        return weight

    def get_unnormalized_log_probability(self, assignment: Assignment) -> float:
        log_weight = 0.0
        for f in self._factors:
            log_weight += f.get_unnormalized_log_probability(assignment.sub_assignment(f.vars))
            if log_weight == -math.inf:
                break
        return log_weight
