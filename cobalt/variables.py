import itertools
from typing import Hashable, Iterable, Iterator, Mapping, Optional, Sequence, Union


class DiscreteVariable:
    """
    A `DiscreteVariable` is an immutable enumeration of the values a discrete random
    variable can take. Values may be any hashable object; each value is assigned
    the integer index of its position in `values`.
    """

    def __init__(self, name: str, values: Iterable[Hashable]):
        self.name = name
        self.values = tuple(values)
        self._value_to_index = {v: i for (i, v) in enumerate(self.values)}
        if len(self._value_to_index) != len(self.values):
            raise ValueError(f"Values of DiscreteVariable {name} must be unique.")

    def num_values(self,) -> int:
        return len(self.values)

    def get_value(self, index: int) -> Hashable:
        return self.values[index]

    def get_value_index(self, value: Hashable) -> int:
        """
        Returns the index of `value`. Raises `ValueError` if `value` is not in this
        variable's domain.
        """
        if value not in self._value_to_index:
            raise ValueError(f"{value} is not a value of {self}")
        return self._value_to_index[value]

    def can_take_value(self, value: Hashable) -> bool:
        return value in self._value_to_index

    def __eq__(self, other):
        if not isinstance(other, DiscreteVariable):
            return NotImplemented
        return (self.name == other.name) and (self.values == other.values)

    def __hash__(self,):
        return hash((self.name, self.values))

    def __repr__(self,):
        return f"DiscreteVariable(name={self.name}, values={self.values})"


class Assignment:
    """
    An immutable, partial mapping from variable numbers to values. Variable numbers
    are kept in sorted order, and each variable number is bound to exactly one value.
    """

    def __init__(
        self,
        var_nums: Iterable[int]=(),
        values: Iterable[Hashable]=(),
    ):
        var_nums = tuple(var_nums)
        values = tuple(values)
        if len(var_nums) != len(values):
            raise ValueError(
                f"Variable numbers {var_nums} don't match values {values}"
            )
        if len(set(var_nums)) != len(var_nums):
            raise ValueError(f"Duplicate variable numbers in {var_nums}")
        order = sorted(range(len(var_nums)), key=lambda i: var_nums[i])
        self._var_nums = tuple(var_nums[i] for i in order)
        self._values = tuple(values[i] for i in order)
        self._hash = hash((self._var_nums, self._values))

    @classmethod
    def from_mapping(cls, mapping: Mapping[int, Hashable]):
        return cls(mapping.keys(), mapping.values())

    @property
    def var_nums(self,) -> tuple[int,...]:
        return self._var_nums

    @property
    def values(self,) -> tuple[Hashable,...]:
        return self._values

    def __len__(self,):
        return len(self._var_nums)

    def contains_var(self, var_num: int) -> bool:
        return var_num in self._var_nums

    def contains_all(self, var_nums: Iterable[int]) -> bool:
        return all(self.contains_var(v) for v in var_nums)

    def get_value(self, var_num: int) -> Hashable:
        """
        Returns the value bound to `var_num`. Raises `KeyError` if `var_num` is unassigned.
        """
        try:
            return self._values[self._var_nums.index(var_num)]
        except ValueError:
            raise KeyError(f"Variable {var_num} is not assigned in {self}")

    def as_dict(self,) -> dict[int, Hashable]:
        return dict(zip(self._var_nums, self._values))

    def sub_assignment(self, var_nums: Union[Iterable[int], "VariableNumMap"]) -> "Assignment":
        """
        Restricts this assignment to `var_nums`, each of which must be assigned.
        """
        var_nums = _as_var_nums(var_nums)
        return Assignment(var_nums, (self.get_value(v) for v in var_nums))

    def intersection(self, var_nums: Union[Iterable[int], "VariableNumMap"]) -> "Assignment":
        """
        Restricts this assignment to the members of `var_nums` that it assigns.
        """
        wanted = set(_as_var_nums(var_nums))
        kept = [i for (i, v) in enumerate(self._var_nums) if v in wanted]
        return Assignment(
            (self._var_nums[i] for i in kept),
            (self._values[i] for i in kept),
        )

    def remove_all(self, var_nums: Union[Iterable[int], "VariableNumMap"]) -> "Assignment":
        unwanted = set(_as_var_nums(var_nums))
        kept = [i for (i, v) in enumerate(self._var_nums) if v not in unwanted]
        return Assignment(
            (self._var_nums[i] for i in kept),
            (self._values[i] for i in kept),
        )

    def is_consistent_with(self, other: "Assignment") -> bool:
        """
        True if `self` and `other` agree on the value of every variable they share.
        """
        mine = self.as_dict()
        for (var_num, value) in zip(other.var_nums, other.values):
            if var_num in mine and mine[var_num] != value:
                return False
        return True

    def union(self, other: "Assignment") -> "Assignment":
        """
        Merges two assignments. Raises `ValueError` if they bind a shared variable
        to different values.
        """
        merged = self.as_dict()
        for (var_num, value) in zip(other.var_nums, other.values):
            if var_num in merged and merged[var_num] != value:
                raise ValueError(
                    f"Can't take union of {self} and {other}: conflicting values for variable {var_num}"
                )
            merged[var_num] = value
        return Assignment.from_mapping(merged)

    def __eq__(self, other):
        if not isinstance(other, Assignment):
            return NotImplemented
        return (self._var_nums == other._var_nums) and (self._values == other._values)

    def __hash__(self,):
        return self._hash

    def __repr__(self,):
        return f"Assignment({self.as_dict()})"


Assignment.EMPTY = Assignment()


class VariableNumMap:
    """
    An immutable mapping from integer variable numbers to `DiscreteVariable`s. Variable
    numbers are unique and are always kept in sorted order; union and intersection
    are set operations over the variable numbers.
    """

    def __init__(
        self,
        var_nums: Iterable[int]=(),
        variables: Iterable[DiscreteVariable]=(),
    ):
        var_nums = tuple(var_nums)
        variables = tuple(variables)
        if len(var_nums) != len(variables):
            raise ValueError(
                f"Variable numbers {var_nums} don't match variables {variables}"
            )
        mapping = dict()
        for (var_num, variable) in zip(var_nums, variables):
            if var_num in mapping:
                raise ValueError(f"Duplicate variable number {var_num} in {var_nums}")
            mapping[var_num] = variable
        self._var_nums = tuple(sorted(mapping.keys()))
        self._variables = tuple(mapping[v] for v in self._var_nums)
        self._index = {v: i for (i, v) in enumerate(self._var_nums)}

    @classmethod
    def from_mapping(cls, mapping: Mapping[int, DiscreteVariable]):
        return cls(mapping.keys(), mapping.values())

    @property
    def var_nums(self,) -> tuple[int,...]:
        return self._var_nums

    @property
    def variables(self,) -> tuple[DiscreteVariable,...]:
        return self._variables

    def __len__(self,):
        return len(self._var_nums)

    def __iter__(self,) -> Iterator[int]:
        return iter(self._var_nums)

    def __contains__(self, var_num) -> bool:
        return var_num in self._index

    def contains_all(self, var_nums: Iterable[int]) -> bool:
        return all(v in self._index for v in var_nums)

    def get_variable(self, var_num: int) -> DiscreteVariable:
        if var_num not in self._index:
            raise KeyError(f"Variable {var_num} is not in {self}")
        return self._variables[self._index[var_num]]

    def index_of(self, var_num: int) -> int:
        """
        Returns the position of `var_num` in the sorted variable ordering.
        """
        return self._index[var_num]

    def as_dict(self,) -> dict[int, DiscreteVariable]:
        return dict(zip(self._var_nums, self._variables))

    def add_mapping(self, var_num: int, variable: DiscreteVariable) -> "VariableNumMap":
        mapping = self.as_dict()
        mapping[var_num] = variable
        return VariableNumMap.from_mapping(mapping)

    def union(self, other: "VariableNumMap") -> "VariableNumMap":
        mapping = self.as_dict()
        for (var_num, variable) in zip(other.var_nums, other.variables):
            if var_num in mapping and mapping[var_num] != variable:
                raise ValueError(
                    f"Can't take union: variable {var_num} differs between maps."
                )
            mapping[var_num] = variable
        return VariableNumMap.from_mapping(mapping)

    def intersection(self, var_nums: Union[Iterable[int], "VariableNumMap"]) -> "VariableNumMap":
        wanted = set(_as_var_nums(var_nums))
        return VariableNumMap.from_mapping({
            v: var for (v, var) in zip(self._var_nums, self._variables) if v in wanted
        })

    def remove_all(self, var_nums: Union[Iterable[int], "VariableNumMap"]) -> "VariableNumMap":
        unwanted = set(_as_var_nums(var_nums))
        return VariableNumMap.from_mapping({
            v: var for (v, var) in zip(self._var_nums, self._variables) if v not in unwanted
        })

    def relabel(self, relabeling: Mapping[int, int]) -> "VariableNumMap":
        return VariableNumMap(
            (relabeling[v] for v in self._var_nums),
            self._variables,
        )

    def get_sizes(self,) -> tuple[int,...]:
        return tuple(v.num_values() for v in self._variables)

    def num_assignments(self,) -> int:
        n = 1
        for size in self.get_sizes():
            n *= size
        return n

    def outcome_to_assignment(self, values: Sequence[Hashable]) -> Assignment:
        """
        Converts a list of values, one per variable in sorted variable order, into
        an `Assignment`. Raises `ValueError` if the list has the wrong length or a
        value is outside its variable's domain.
        """
        values = tuple(values)
        if len(values) != len(self._var_nums):
            raise ValueError(
                f"Outcome {values} doesn't match variables {self._var_nums}"
            )
        for (variable, value) in zip(self._variables, values):
            variable.get_value_index(value)
        return Assignment(self._var_nums, values)

    def int_array_to_assignment(self, indices: Sequence[int]) -> Assignment:
        if len(indices) != len(self._var_nums):
            raise ValueError(
                f"Index array {tuple(indices)} doesn't match variables {self._var_nums}"
            )
        return Assignment(
            self._var_nums,
            (var.get_value(i) for (var, i) in zip(self._variables, indices)),
        )

    def assignment_to_int_array(self, assignment: Assignment) -> tuple[int,...]:
        return tuple(
            var.get_value_index(assignment.get_value(v))
            for (v, var) in zip(self._var_nums, self._variables)
        )

    def is_valid_assignment(self, assignment: Assignment) -> bool:
        """
        True if `assignment` assigns exactly these variables, with in-domain values.
        """
        if assignment.var_nums != self._var_nums:
            return False
        return all(
            var.can_take_value(value)
            for (var, value) in zip(self._variables, assignment.values)
        )

    def assignment_iterator(
        self,
        allowed_values: Optional[Mapping[int, Iterable[Hashable]]]=None,
    ) -> Iterator[Assignment]:
        """
        Iterates over every assignment to these variables, in lexicographic order of
        value indices. If `allowed_values` is given, each listed variable ranges only
        over its allowed values.
        """
        domains = []
        for (var_num, variable) in zip(self._var_nums, self._variables):
            if allowed_values is not None and var_num in allowed_values:
                allowed = set(allowed_values[var_num])
                domains.append([v for v in variable.values if v in allowed])
            else:
                domains.append(variable.values)
        for values in itertools.product(*domains):
            yield Assignment(self._var_nums, values)

    def __eq__(self, other):
        if not isinstance(other, VariableNumMap):
            return NotImplemented
        return (self._var_nums == other._var_nums) and (self._variables == other._variables)

    def __hash__(self,):
        return hash((self._var_nums, self._variables))

    def __repr__(self,):
        names = ", ".join(f"{v}: {var.name}" for (v, var) in zip(self._var_nums, self._variables))
        return f"VariableNumMap({names})"


VariableNumMap.EMPTY = VariableNumMap()


def _as_var_nums(var_nums: Union[Iterable[int], VariableNumMap]) -> tuple[int,...]:
    if isinstance(var_nums, VariableNumMap):
        return var_nums.var_nums
    return tuple(var_nums)
