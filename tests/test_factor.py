
import logging
import math
import pickle

import numpy as np
import pytest

import cobalt
from cobalt.factor import IndicatorFeature, TableFactor, max_product, product_factor, sum_product
from cobalt.tensor import random_sparse_tensor
from cobalt.variables import Assignment, DiscreteVariable, VariableNumMap


TFU = DiscreteVariable("Three", ["T", "F", "U"])


def _vars(*var_nums):
    return VariableNumMap(var_nums, [TFU] * len(var_nums))


def _f():
    f = TableFactor(_vars(0, 2, 3, 5))
    f.set_weight_list(["T", "T", "T", "T"], 1.0)
    f.set_weight_list(["T", "T", "F", "T"], 3.0)
    f.set_weight_list(["T", "T", "F", "U"], 2.0)
    return f


def _g():
    g = TableFactor(_vars(0, 1, 3))
    g.set_weight_list(["T", "U", "F"], 7.0)
    g.set_weight_list(["T", "F", "F"], 11.0)
    g.set_weight_list(["F", "T", "T"], 9.0)
    g.set_weight_list(["T", "U", "T"], 13.0)
    return g


def _brute_force_product(factors):
    all_vars = VariableNumMap.EMPTY
    for f in factors:
        all_vars = all_vars.union(f.vars)
    weights = dict()
    for a in all_vars.assignment_iterator():
        w = 1.0
        for f in factors:
            w *= f.get_unnormalized_probability(a.sub_assignment(f.vars))
        if w > 0.0:
            weights[a] = w
    return TableFactor(all_vars, weights)


@pytest.mark.factor
def test_set_weight_preconditions():
    f = _f()
    assert f.size() == 3
    with pytest.raises(ValueError):
        f.set_weight(Assignment([0, 2], ["T", "T"]), 1.0)
    with pytest.raises(ValueError):
        f.set_weight_list(["T", "T", "T", "T"], -1.0)
    with pytest.raises(ValueError):
        f.get_unnormalized_probability(Assignment([0], ["T"]))

    f.set_weight_list(["T", "T", "T", "T"], 0.0)
    assert f.size() == 2
    assert f.get_assignments_with_entry(3, ["T"]) == set()
    assert f.get_assignments_with_entry(5, ["T"]) == {_vars(0, 2, 3, 5).outcome_to_assignment(["T", "T", "F", "T"])}


@pytest.mark.factor
def test_weights_and_log_weights():
    f = _f()
    assert f.get_unnormalized_probability(["T", "T", "F", "T"]) == 3.0
    assert f.get_unnormalized_probability(["F", "T", "F", "T"]) == 0.0
    assert f.get_unnormalized_log_probability(["T", "T", "F", "T"]) == pytest.approx(math.log(3.0))
    assert f.get_unnormalized_log_probability(["F", "F", "F", "F"]) == -math.inf
    assert f.get_partition_function() == 6.0


@pytest.mark.factor
def test_marginalize():
    m = _f().marginalize([5, 2])
    assert m.vars.var_nums == (0, 3)
    assert m.get_unnormalized_probability(["T", "T"]) == 1.0
    assert m.get_unnormalized_probability(["T", "F"]) == 5.0
    assert m.get_unnormalized_probability(["F", "F"]) == 0.0
    assert m.size() == 2


@pytest.mark.factor
def test_max_marginalize():
    m = _f().max_marginalize([5, 2])
    assert m.get_unnormalized_probability(["T", "T"]) == 1.0
    assert m.get_unnormalized_probability(["T", "F"]) == 3.0


@pytest.mark.factor
def test_marginalize_all():
    f = _f()
    everything = f.marginalize([0, 2, 3, 5])
    assert len(everything.vars) == 0
    assert everything.get_unnormalized_probability(Assignment.EMPTY) == 6.0
    assert f.max_marginalize([0, 2, 3, 5]).get_unnormalized_probability([]) == 3.0


@pytest.mark.factor
def test_conditional():
    f = _f()
    c = f.conditional(Assignment([3, 9], ["F", "T"]))
    assert c.vars == f.vars
    assert c.size() == 2
    assert c.get_unnormalized_probability(["T", "T", "F", "U"]) == 2.0
    assert c.get_unnormalized_probability(["T", "T", "T", "T"]) == 0.0

    empty = f.conditional(Assignment([0], ["U"]))
    assert empty.size() == 0
    assert empty.get_partition_function() == 0.0
    # the original is unchanged
    assert f.size() == 3


@pytest.mark.factor
def test_sum_and_max_product():
    s = sum_product([_f(), _g()], [0, 3])
    assert s.get_unnormalized_probability(["T", "F"]) == 90.0
    assert s.get_unnormalized_probability(["T", "T"]) == 13.0
    assert s.size() == 2

    m = max_product([_f(), _g()], [0, 3])
    assert m.get_unnormalized_probability(["T", "F"]) == 33.0
    assert m.get_unnormalized_probability(["T", "T"]) == 13.0


@pytest.mark.factor
def test_product():
    p = _f().product(_g())
    assert p.vars.var_nums == (0, 1, 2, 3, 5)
    assert p.get_unnormalized_probability(["T", "U", "T", "F", "U"]) == 14.0
    assert p == _brute_force_product([_f(), _g()])

    scalar = TableFactor(VariableNumMap.EMPTY, [(Assignment.EMPTY, 6.0)])
    scaled = product_factor([scalar, _f()])
    assert scaled.get_unnormalized_probability(["T", "T", "F", "T"]) == 18.0
    assert scaled.size() == 3


@pytest.mark.factor
def test_subset_product_matches_enumeration():
    rng = np.random.default_rng(7)
    whole_vars = _vars(0, 1, 2, 3)
    for _ in range(5):
        whole = TableFactor.from_tensor(
            whole_vars,
            random_sparse_tensor(whole_vars.var_nums, whole_vars.get_sizes(), 0.4, rng),
        )
        subsets = [
            TableFactor.from_tensor(
                _vars(*nums),
                random_sparse_tensor(nums, (3,) * len(nums), 0.6, rng),
            )
            for nums in ((1,), (0, 3), (2, 3))
        ]
        fast = product_factor([whole] + subsets)
        assert fast == _brute_force_product([whole] + subsets)
        # commutative
        reordered = product_factor(subsets[::-1] + [whole])
        assert set(reordered.outcomes()) == set(fast.outcomes())
        for a in fast.outcomes():
            assert reordered.get_unnormalized_probability(a) == pytest.approx(fast.get_unnormalized_probability(a))


@pytest.mark.factor
def test_product_associative():
    rng = np.random.default_rng(11)
    factors = [
        TableFactor.from_tensor(_vars(*nums), random_sparse_tensor(nums, (3,) * len(nums), 0.5, rng))
        for nums in ((0, 1), (1, 2), (0, 2))
    ]
    left = product_factor([product_factor(factors[:2]), factors[2]])
    right = product_factor([factors[0], product_factor(factors[1:])])
    for a in left.vars.assignment_iterator():
        assert left.get_unnormalized_probability(a) == pytest.approx(right.get_unnormalized_probability(a))


@pytest.mark.factor
def test_compute_expectation():
    f = _f()
    feature = IndicatorFeature(
        f.vars,
        [
            f.vars.outcome_to_assignment(["T", "T", "T", "T"]),
            f.vars.outcome_to_assignment(["T", "F", "F", "F"]),
            f.vars.outcome_to_assignment(["T", "T", "F", "U"]),
        ],
    )
    assert f.compute_expectation(feature) == pytest.approx(0.5)
    assert math.isnan(TableFactor(f.vars).compute_expectation(feature))
    with pytest.raises(ValueError):
        _g().compute_expectation(feature)


@pytest.mark.factor
def test_most_likely_assignments():
    g = _g()
    top = g.most_likely_assignments(2)
    assert [g.get_unnormalized_probability(a) for a in top] == [13.0, 11.0]
    assert len(g.most_likely_assignments(10)) == 4

    tied = TableFactor(_vars(0))
    tied.set_weight_list(["U"], 1.0)
    tied.set_weight_list(["T"], 1.0)
    assert [a.values for a in tied.most_likely_assignments(2)] == [("T",), ("U",)]
    assert tied.most_likely_assignments(0) == []
    with pytest.raises(ValueError):
        tied.most_likely_assignments(-1)


@pytest.mark.factor
def test_relabel_variables():
    f = _f()
    relabeling = {0: 9, 2: 1, 3: 4, 5: 0}
    expected = f.relabel_variables(relabeling)
    assert expected.vars.var_nums == (0, 1, 4, 9)
    # old (0, 2, 3, 5) = (T, T, F, U) becomes new (0, 1, 4, 9) = (U, T, F, T)
    assert expected.get_unnormalized_probability(["U", "T", "F", "T"]) == 2.0

    cached = _f().cache_permutations()
    assert cached.relabel_variables(relabeling) == expected
    lazy = _f().cache_permutations(eager=False)
    assert lazy.relabel_variables(relabeling) == expected


@pytest.mark.factor
def test_tensor_round_trip_and_pickle():
    f = _f()
    assert TableFactor.from_tensor(f.vars, f.to_tensor()) == f
    restored = pickle.loads(pickle.dumps(f))
    assert restored == f
    assert restored.get_assignments_with_entry(5, ["U"]) == f.get_assignments_with_entry(5, ["U"])
    logging.info(f"Restored {restored}")


@pytest.mark.factor
def test_normalize_and_unity():
    n = _f().normalize()
    assert n.get_partition_function() == pytest.approx(1.0)
    u = TableFactor.unity(_vars(0, 1))
    assert u.size() == 9
    point = TableFactor.point_distribution(_vars(0), Assignment([0, 1], ["F", "T"]))
    assert point.size() == 1
    assert point.get_unnormalized_probability(["F"]) == 1.0
    assert isinstance(u, cobalt.factor.Factor)
