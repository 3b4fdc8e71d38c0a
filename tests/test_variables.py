
import logging

import cobalt
import pytest

from cobalt.variables import Assignment, DiscreteVariable, VariableNumMap


TFU = DiscreteVariable("Three", ["T", "F", "U"])
FOOBAR = DiscreteVariable("FooBar", ["foo", "bar"])


@pytest.mark.variables
def test_discrete_variable():
    assert TFU.num_values() == 3
    assert TFU.get_value(1) == "F"
    assert TFU.get_value_index("U") == 2
    assert TFU.can_take_value("T")
    assert not TFU.can_take_value("X")
    with pytest.raises(ValueError):
        TFU.get_value_index("X")
    with pytest.raises(ValueError):
        DiscreteVariable("dup", ["a", "a"])
    assert TFU == DiscreteVariable("Three", ("T", "F", "U"))
    assert hash(TFU) == hash(DiscreteVariable("Three", ("T", "F", "U")))


@pytest.mark.variables
def test_assignment_sorted_and_immutable_ops():
    a = Assignment([3, 1], ["F", "T"])
    assert a.var_nums == (1, 3)
    assert a.values == ("T", "F")
    assert a.get_value(3) == "F"
    with pytest.raises(KeyError):
        a.get_value(2)
    with pytest.raises(ValueError):
        Assignment([1, 1], ["T", "F"])
    with pytest.raises(ValueError):
        Assignment([1], ["T", "F"])

    assert a.sub_assignment([3]) == Assignment([3], ["F"])
    with pytest.raises(KeyError):
        a.sub_assignment([2, 3])
    assert a.intersection([2, 3]) == Assignment([3], ["F"])
    assert a.remove_all([1]) == Assignment([3], ["F"])
    assert a == Assignment.from_mapping({1: "T", 3: "F"})
    assert len(Assignment.EMPTY) == 0


@pytest.mark.variables
def test_assignment_union():
    a = Assignment([1, 3], ["T", "F"])
    b = Assignment([2, 3], ["U", "F"])
    union = a.union(b)
    assert union == Assignment([1, 2, 3], ["T", "U", "F"])
    assert a.is_consistent_with(b)

    conflicting = Assignment([3], ["T"])
    assert not a.is_consistent_with(conflicting)
    with pytest.raises(ValueError):
        a.union(conflicting)


@pytest.mark.variables
def test_variable_num_map():
    vars_ = VariableNumMap([5, 0, 2], [TFU, FOOBAR, TFU])
    assert vars_.var_nums == (0, 2, 5)
    assert vars_.variables == (FOOBAR, TFU, TFU)
    assert vars_.get_sizes() == (2, 3, 3)
    assert vars_.num_assignments() == 18
    assert 2 in vars_
    assert vars_.index_of(5) == 2
    with pytest.raises(KeyError):
        vars_.get_variable(1)
    with pytest.raises(ValueError):
        VariableNumMap([0, 0], [TFU, TFU])
    with pytest.raises(ValueError):
        VariableNumMap([0, 0], [TFU, FOOBAR])

    other = VariableNumMap([2, 7], [TFU, FOOBAR])
    assert vars_.union(other).var_nums == (0, 2, 5, 7)
    assert vars_.intersection(other).var_nums == (2,)
    assert vars_.remove_all(other).var_nums == (0, 5)
    assert vars_.intersection([0, 5]) == VariableNumMap([0, 5], [FOOBAR, TFU])
    with pytest.raises(ValueError):
        vars_.union(VariableNumMap([0], [TFU]))

    relabeled = vars_.relabel({0: 10, 2: 1, 5: 4})
    assert relabeled.var_nums == (1, 4, 10)
    assert relabeled.get_variable(10) == FOOBAR


@pytest.mark.variables
def test_variable_num_map_assignments():
    vars_ = VariableNumMap([0, 1], [FOOBAR, TFU])
    a = vars_.outcome_to_assignment(["bar", "U"])
    assert a == Assignment([0, 1], ["bar", "U"])
    assert vars_.assignment_to_int_array(a) == (1, 2)
    assert vars_.int_array_to_assignment((1, 2)) == a
    assert vars_.is_valid_assignment(a)
    assert not vars_.is_valid_assignment(Assignment([0], ["bar"]))
    with pytest.raises(ValueError):
        vars_.outcome_to_assignment(["bar", "X"])
    with pytest.raises(ValueError):
        vars_.outcome_to_assignment(["bar"])

    every = list(vars_.assignment_iterator())
    assert len(every) == 6
    assert every[0] == Assignment([0, 1], ["foo", "T"])
    assert every[1] == Assignment([0, 1], ["foo", "F"])
    assert every[-1] == Assignment([0, 1], ["bar", "U"])

    restricted = list(vars_.assignment_iterator(allowed_values={1: {"U", "T"}}))
    assert [x.values for x in restricted] == [
        ("foo", "T"), ("foo", "U"), ("bar", "T"), ("bar", "U")
    ]
    logging.info(f"Restricted assignments: {restricted}")
    assert list(VariableNumMap.EMPTY.assignment_iterator()) == [Assignment.EMPTY]
    assert isinstance(cobalt.variables.VariableNumMap.EMPTY, VariableNumMap)
