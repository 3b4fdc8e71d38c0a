import abc
import collections
import logging
import math
from typing import (
    Hashable,
    Iterable,
    Iterator,
    Mapping,
    Optional,
    Sequence,
    Union
)

from . import tensor
from .variables import Assignment, VariableNumMap


class IndicatorFeature:
    """
    An indicator feature over a set of variables: its value is 1 on each of
    `assignments` and 0 everywhere else.
    """

    def __init__(self, variables: VariableNumMap, assignments: Iterable[Assignment]):
        self.vars = variables
        self.assignments = frozenset(assignments)
        for a in self.assignments:
            if not variables.is_valid_assignment(a):
                raise ValueError(f"{a} is not an assignment to {variables}")

    def get_value(self, assignment: Assignment) -> float:
        return 1.0 if assignment in self.assignments else 0.0

    def __repr__(self,):
        return f"IndicatorFeature(vars={self.vars.var_nums}, size={len(self.assignments)})"


class Factor(abc.ABC):
    """
    Abstract base class from which all factors must inherit. A factor is a
    non-negative weight function over assignments to a fixed set of discrete
    variables. Subclasses must implement:

    + `get_unnormalized_probability`: the weight of a full assignment to `vars`
    + `outcomes`: iterates over every assignment with non-zero weight
    + `get_assignments_with_entry`: the supported assignments that give one of
        a set of values to a variable

    Every operator returns a new `TableFactor` and never mutates its inputs.
    """

    def __init__(self, variables: VariableNumMap):
        self.vars = variables

    @abc.abstractmethod
    def get_unnormalized_probability(self, assignment: Union[Assignment, Sequence[Hashable]]) -> float:
        ...

    @abc.abstractmethod
    def outcomes(self,) -> Iterator[Assignment]:
        ...

    @abc.abstractmethod
    def get_assignments_with_entry(self, var_num: int, values: Iterable[Hashable]) -> set[Assignment]:
        ...

    def _coerce_assignment(self, assignment: Union[Assignment, Sequence[Hashable]]) -> Assignment:
        if isinstance(assignment, Assignment):
            if assignment.var_nums != self.vars.var_nums:
                raise ValueError(
                    f"{assignment} doesn't assign exactly the variables {self.vars.var_nums}"
                )
            return assignment
        return self.vars.outcome_to_assignment(assignment)

    def get_unnormalized_log_probability(self, assignment: Union[Assignment, Sequence[Hashable]]) -> float:
        weight = self.get_unnormalized_probability(assignment)
        return math.log(weight) if weight > 0.0 else -math.inf

    def get_partition_function(self,) -> float:
        return sum(self.get_unnormalized_probability(a) for a in self.outcomes())

    def size(self,) -> int:
        """
        Number of assignments with non-zero weight.
        """
        return sum(1 for _ in self.outcomes())

    def _eliminate(self, var_nums: Iterable[int], combine) -> "TableFactor":
        var_nums = set(var_nums)
        remaining = self.vars.remove_all(var_nums)
        out = collections.OrderedDict()
        for a in self.outcomes():
            key = a.remove_all(var_nums)
            weight = self.get_unnormalized_probability(a)
            out[key] = combine(out[key], weight) if key in out else weight
        return TableFactor(remaining, out)

    def marginalize(self, var_nums: Iterable[int]) -> "TableFactor":
        """
        Sums out `var_nums`. The weight of each assignment to the remaining
        variables is the sum of the weights of all of its extensions. Marginalizing
        every variable returns a factor over no variables whose single weight is
        the partition function.
        """
        return self._eliminate(var_nums, lambda x, y: x + y)

    def max_marginalize(self, var_nums: Iterable[int]) -> "TableFactor":
        """
        Identical to `marginalize`, but takes the maximum weight over extensions.
        """
        return self._eliminate(var_nums, max)

    def conditional(self, assignment: Assignment) -> "TableFactor":
        """
        Restricts this factor's support to assignments consistent with
        `assignment`. The variables of the factor are unchanged, weights of
        consistent assignments are unchanged, and variables of `assignment`
        outside this factor are ignored.
        """
        relevant = assignment.intersection(self.vars)
        if len(relevant) == 0:
            return TableFactor(self.vars, ((a, self.get_unnormalized_probability(a)) for a in self.outcomes()))
        candidates = None
        for (var_num, value) in zip(relevant.var_nums, relevant.values):
            matching = self.get_assignments_with_entry(var_num, (value,))
            candidates = matching if candidates is None else (candidates & matching)
        return TableFactor(
            self.vars,
            ((a, self.get_unnormalized_probability(a)) for a in self.outcomes() if a in candidates),
        )

    def compute_expectation(self, feature: IndicatorFeature) -> float:
        """
        Computes the expected value of `feature` under the normalized distribution
        this factor represents. A factor with no support yields nan.
        """
        if feature.vars.var_nums != self.vars.var_nums:
            raise ValueError(
                f"Feature over {feature.vars.var_nums} doesn't match factor over {self.vars.var_nums}"
            )
        numerator = sum(self.get_unnormalized_probability(a) for a in feature.assignments)
        partition = self.get_partition_function()
        return numerator / partition if partition != 0.0 else math.nan

    def most_likely_assignments(self, k: int) -> list[Assignment]:
        """
        Returns up to `k` assignments in decreasing order of weight. Ties are broken
        by lexicographic order of value indices.
        """
        if k < 0:
            raise ValueError(f"k must be non-negative, got {k}")
        ranked = sorted(
            self.outcomes(),
            key=lambda a: (-self.get_unnormalized_probability(a), self.vars.assignment_to_int_array(a))
        )
        return ranked[:k]

    def product(self, *others: "Factor") -> "TableFactor":
        return product_factor((self,) + others)

    def to_tensor(self,) -> tensor.SparseTensor:
        """
        Converts this factor into a `SparseTensor` keyed by value indices, with one
        dimension per variable number.
        """
        return tensor.SparseTensor(
            self.vars.var_nums,
            self.vars.get_sizes(),
            {
                self.vars.assignment_to_int_array(a): self.get_unnormalized_probability(a)
                for a in self.outcomes()
            },
        )


class TableFactor(Factor):
    """
    A `TableFactor` stores its weights in a sparse table, so it is appropriate for
    factors where most weights are 0. Assignments with weight 0 are never stored.

    Besides the weight table, each `TableFactor` maintains a secondary index from
    (variable, value) to the set of stored assignments containing that value, which
    is kept up to date as weights are set.
    """

    def __init__(
        self,
        variables: VariableNumMap,
        weights: Optional[Union[Mapping[Assignment, float], Iterable[tuple[Assignment, float]]]]=None,
    ):
        super().__init__(variables)
        self._weights = collections.OrderedDict()
        self._index = {v: collections.defaultdict(set) for v in variables.var_nums}
        self._cached_tensor = None
        if weights is not None:
            items = weights.items() if isinstance(weights, Mapping) else weights
            for (a, w) in items:
                self.set_weight(a, w)

    @classmethod
    def from_tensor(cls, variables: VariableNumMap, sparse_tensor: tensor.SparseTensor):
        if sparse_tensor.dimension_nums != variables.var_nums:
            raise ValueError(
                f"Tensor dimensions {sparse_tensor.dimension_nums} don't match variables {variables.var_nums}"
            )
        if sparse_tensor.dimension_sizes != variables.get_sizes():
            raise ValueError(
                f"Tensor sizes {sparse_tensor.dimension_sizes} don't match variables {variables}"
            )
        return cls(
            variables,
            ((variables.int_array_to_assignment(key), value) for (key, value) in sparse_tensor.items()),
        )

    @classmethod
    def unity(cls, variables: VariableNumMap):
        """
        A factor assigning weight 1 to every assignment of `variables`.
        """
        return cls(variables, ((a, 1.0) for a in variables.assignment_iterator()))

    @classmethod
    def point_distribution(cls, variables: VariableNumMap, assignment: Assignment):
        """
        A factor assigning weight 1 to `assignment` and 0 everywhere else.
        """
        return cls(variables, ((assignment.sub_assignment(variables), 1.0),))

    def outcomes(self,) -> Iterator[Assignment]:
        return iter(list(self._weights.keys()))

    def items(self,):
        return self._weights.items()

    def size(self,) -> int:
        return len(self._weights)

    def get_unnormalized_probability(self, assignment: Union[Assignment, Sequence[Hashable]]) -> float:
        assignment = self._coerce_assignment(assignment)
        return self._weights.get(assignment, 0.0)

    def get_partition_function(self,) -> float:
        return math.fsum(self._weights.values())

    def get_assignments_with_entry(self, var_num: int, values: Iterable[Hashable]) -> set[Assignment]:
        if var_num not in self._index:
            raise ValueError(f"Variable {var_num} is not in {self.vars}")
        index = self._index[var_num]
        possible = set()
        for value in values:
            if value in index:
                possible |= index[value]
        return possible

    def set_weight(self, assignment: Assignment, weight: float):
        """
        Sets the weight of `assignment`, which must assign exactly this factor's
        variables. Raises `ValueError` on a negative weight. Setting a weight of 0
        removes the assignment from the table.
        """
        if not self.vars.is_valid_assignment(assignment):
            raise ValueError(f"{assignment} is not a valid assignment to {self.vars}")
        if weight < 0.0:
            raise ValueError(f"Can't set negative weight {weight} for {assignment}")
        self._cached_tensor = None
        if weight == 0.0:
            if assignment in self._weights:
                del self._weights[assignment]
                for (var_num, value) in zip(assignment.var_nums, assignment.values):
                    self._index[var_num][value].discard(assignment)
            return
        self._weights[assignment] = float(weight)
        for (var_num, value) in zip(assignment.var_nums, assignment.values):
            self._index[var_num][value].add(assignment)

    def set_weight_list(self, values: Sequence[Hashable], weight: float):
        """
        Sets the weight of the outcome given by `values`, listed in sorted
        variable order.
        """
        self.set_weight(self.vars.outcome_to_assignment(values), weight)

    def increment_weight(self, assignment: Assignment, amount: float):
        self.set_weight(assignment, self._weights.get(assignment, 0.0) + amount)

    def normalize(self,) -> "TableFactor":
        """
        Returns a copy of this factor whose weights sum to 1.
        """
        partition = self.get_partition_function()
        return TableFactor(self.vars, ((a, w / partition) for (a, w) in self._weights.items()))

    def cache_permutations(self, eager: bool=True) -> "TableFactor":
        """
        Caches permutations of this factor's tensor so that repeated calls to
        `relabel_variables` don't re-sort every stored assignment.
        """
        self._cached_tensor = tensor.CachedSparseTensor.cache_all_permutations(
            self.to_tensor(),
            eager=eager,
        )
        return self

    def relabel_variables(self, relabeling: Mapping[int, int]) -> "TableFactor":
        """
        Returns a copy of this factor with each variable number `v` replaced by
        `relabeling[v]`.
        """
        new_vars = self.vars.relabel(relabeling)
        the_tensor = self._cached_tensor if self._cached_tensor is not None else self.to_tensor()
        relabeled = the_tensor.relabel_dimensions([relabeling[v] for v in self.vars.var_nums])
        return TableFactor.from_tensor(new_vars, relabeled)

    def __eq__(self, other):
        if not isinstance(other, TableFactor):
            return NotImplemented
        return (self.vars == other.vars) and (dict(self._weights) == dict(other._weights))

    __hash__ = None

    def __repr__(self,):
        entries = ", ".join(f"{a.values}: {w}" for (a, w) in self._weights.items())
        return f"TableFactor(vars={self.vars.var_nums}, {{{entries}}})"


def _possible_variable_values(factors: Iterable[Factor]) -> dict[int, set]:
    """
    For each variable, the values that appear in the support of every factor
    containing that variable. Any other value gives a product weight of 0.
    """
    value_map = dict()
    for f in factors:
        factor_values = collections.defaultdict(set)
        for a in f.outcomes():
            for (var_num, value) in zip(a.var_nums, a.values):
                factor_values[var_num].add(value)
        for var_num in f.vars.var_nums:
            if var_num not in value_map:
                value_map[var_num] = set(factor_values[var_num])
            else:
                value_map[var_num] &= factor_values[var_num]
    return value_map


def _subset_product_factor(whole: Factor, subsets: Sequence[Factor]) -> TableFactor:
    value_map = _possible_variable_values(subsets)
    possible = None
    for (var_num, values) in value_map.items():
        matching = whole.get_assignments_with_entry(var_num, values)
        possible = matching if possible is None else (possible & matching)

    if possible is None:
        candidates = whole.outcomes()
    else:
        candidates = sorted(possible, key=whole.vars.assignment_to_int_array)
    result = TableFactor(whole.vars)
    for a in candidates:
        weight = whole.get_unnormalized_probability(a)
        for subset in subsets:
            weight *= subset.get_unnormalized_probability(a.sub_assignment(subset.vars))
        if weight > 0.0:
            result.set_weight(a, weight)
    return result


def product_factor(factors: Iterable[Factor]) -> TableFactor:
    """
    Multiplies `factors`. The result is defined over the union of their variables,
    and its weight at an assignment is the product of each factor's weight at
    that assignment restricted to its own variables.

    If one factor is defined over every variable, only that factor's supported
    assignments which agree with the surviving values of the other factors are
    visited. Otherwise the product enumerates the Cartesian product of the
    variables' surviving values.
    """
    factors = list(factors)
    all_vars = VariableNumMap.EMPTY
    for f in factors:
        all_vars = all_vars.union(f.vars)

    whole = None
    others = []
    for f in factors:
        if whole is None and f.vars == all_vars:
            whole = f
        else:
            others.append(f)
    if whole is not None:
        return _subset_product_factor(whole, others)

    logging.debug(f"Enumerating product over {all_vars.var_nums} for {len(factors)} factors")
    value_map = _possible_variable_values(factors)
    result = TableFactor(all_vars)
    for a in all_vars.assignment_iterator(allowed_values=value_map):
        weight = 1.0
        for f in factors:
            weight *= f.get_unnormalized_probability(a.sub_assignment(f.vars))
            if weight == 0.0:
                break
        if weight > 0.0:
            result.set_weight(a, weight)
    return result


def sum_product(factors: Iterable[Factor], var_nums_to_retain: Iterable[int]) -> TableFactor:
    """
    Multiplies `factors`, then sums out every variable not in `var_nums_to_retain`.
    """
    p = product_factor(factors)
    retain = set(var_nums_to_retain)
    return p.marginalize([v for v in p.vars.var_nums if v not in retain])


def max_product(factors: Iterable[Factor], var_nums_to_retain: Iterable[int]) -> TableFactor:
    """
    Multiplies `factors`, then maxes out every variable not in `var_nums_to_retain`.
    """
    p = product_factor(factors)
    retain = set(var_nums_to_retain)
    return p.max_marginalize([v for v in p.vars.var_nums if v not in retain])
