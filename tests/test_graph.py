
import logging
import math

import pytest

from cobalt.factor import TableFactor
from cobalt.graph import FactorGraph
from cobalt.variables import Assignment, DiscreteVariable


TFU = DiscreteVariable("Three", ["T", "F", "U"])
FOOBAR = DiscreteVariable("Two", ["foo", "bar"])


def _graph():
    fg = FactorGraph()
    fg = fg.add_variable("Var0", TFU)
    fg = fg.add_variable("Var1", FOOBAR)
    fg = fg.add_variable("Var2", TFU)
    fg = fg.add_variable("Var3", TFU)

    f0_vars = fg.lookup_variables(["Var0", "Var2", "Var3"])
    f0 = TableFactor(f0_vars)
    f0.set_weight(f0_vars.int_array_to_assignment([0, 0, 0]), 1.0)
    fg = fg.add_factor(f0)

    f1_vars = fg.lookup_variables(["Var2", "Var1"])
    f1 = TableFactor(f1_vars)
    f1.set_weight(f1_vars.int_array_to_assignment([0, 0]), 1.0)
    f1.set_weight(f1_vars.int_array_to_assignment([1, 1]), 1.0)
    return fg.add_factor(f1)


@pytest.mark.graph
def test_add_variable():
    fg = _graph()
    assert fg.get_variable_names() == ["Var0", "Var1", "Var2", "Var3"]
    assert fg.get_variable_index("Var2") == 2
    assert fg.get_variable_name(3) == "Var3"
    with pytest.raises(ValueError):
        fg.add_variable("Var0", TFU)
    with pytest.raises(KeyError):
        fg.get_variable_index("Var9")


@pytest.mark.graph
def test_lookup_variables():
    fg = _graph()
    the_vars = fg.lookup_variables(["Var2", "Var1"])
    assert the_vars.var_nums == (1, 2)
    with pytest.raises(ValueError):
        fg.lookup_variables(["Var2", "Nope"])


@pytest.mark.graph
def test_adjacency():
    fg = _graph()
    assert fg.num_factors() == 2
    assert fg.get_factors_with_variable(2) == {0, 1}
    assert fg.get_factors_with_variable(3) == {0}
    assert fg.get_factor_variables(1) == {1, 2}
    assert fg.get_shared_variables(0, 1) == {2}
    assert fg.get_adjacent_factors(0) == {0, 1}
    # the two maps are inverses
    for factor_num in range(fg.num_factors()):
        for var_num in fg.get_factor_variables(factor_num):
            assert factor_num in fg.get_factors_with_variable(var_num)


@pytest.mark.graph
def test_factor_with_unknown_variable():
    fg = _graph()
    outside = TableFactor(fg.variables.intersection([0]).relabel({0: 10}))
    with pytest.raises(ValueError):
        fg.add_factor(outside)


@pytest.mark.graph
def test_outcome_to_assignment():
    fg = _graph()
    a = fg.outcome_to_assignment(["Var3", "Var1"], ["U", "bar"])
    assert a == Assignment([1, 3], ["bar", "U"])
    assert fg.assignment_to_object(a) == {"Var1": "bar", "Var3": "U"}
    with pytest.raises(ValueError):
        fg.outcome_to_assignment(["Var3"], ["bar"])
    with pytest.raises(ValueError):
        fg.outcome_to_assignment(["Var3", "Var1"], ["U"])


@pytest.mark.graph
def test_marginalize():
    fg = _graph()
    m = fg.marginalize([0, 3, 2])
    assert m.get_variable_names() == ["Var1"]
    assert m.num_factors() == 1
    f = m.get_factor(0)
    assert f.get_unnormalized_probability(["foo"]) == 1.0
    assert f.get_unnormalized_probability(["bar"]) == 0.0
    # the original graph is unchanged
    assert fg.num_factors() == 2
    logging.info(f"Marginalized graph: {m}")


@pytest.mark.graph
def test_conditional_and_probability():
    fg = _graph()
    a = fg.outcome_to_assignment(["Var0", "Var1", "Var2", "Var3"], ["T", "foo", "T", "T"])
    assert fg.get_unnormalized_probability(a) == 1.0
    assert fg.get_unnormalized_log_probability(a) == 0.0

    b = fg.outcome_to_assignment(["Var0", "Var1", "Var2", "Var3"], ["T", "bar", "T", "T"])
    assert fg.get_unnormalized_probability(b) == 0.0
    assert fg.get_unnormalized_log_probability(b) == -math.inf

    c = fg.conditional(fg.outcome_to_assignment(["Var1"], ["bar"]))
    assert c.get_conditioned_values() == Assignment([1], ["bar"])
    assert c.get_factor(1).size() == 1
    assert c.get_factor(0).size() == 1
    cc = c.conditional(Assignment([3, 42], ["T", "ignored"]))
    assert cc.get_conditioned_values() == Assignment([1, 3], ["bar", "T"])
    with pytest.raises(ValueError):
        c.conditional(Assignment([1], ["foo"]))


@pytest.mark.graph
def test_add_table_factor():
    fg = FactorGraph().add_variable("a", TFU).add_variable("b", FOOBAR)
    fg = fg.add_table_factor(["b", "a"], {("foo", "T"): 2.0, ("bar", "U"): 3.0})
    f = fg.get_factor(0)
    assert f.get_unnormalized_probability(["T", "foo"]) == 2.0
    assert f.get_unnormalized_probability(["U", "bar"]) == 3.0
    assert f.get_partition_function() == 5.0
