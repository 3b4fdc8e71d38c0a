
import collections
import logging

import numpy as np
import pytest

from cobalt.em import IncrementalEMTrainer
from cobalt.graph import FactorGraph
from cobalt.log import DataFrameLogFunction
from cobalt.oracle import ZeroProbabilityError
from cobalt.parametric import CptTableFactor, ParametricFactorGraph
from cobalt.variables import Assignment, DiscreteVariable, VariableNumMap


BOOL = DiscreteVariable("bool", ["T", "F"])


def _bayes_net():
    fg = FactorGraph().add_variable("a", BOOL).add_variable("b", BOOL)
    a = fg.lookup_variables(["a"])
    b = fg.lookup_variables(["b"])
    return ParametricFactorGraph(
        fg,
        collections.OrderedDict([
            ("a", CptTableFactor(VariableNumMap.EMPTY, a)),
            ("b", CptTableFactor(a, b)),
        ]),
    )


def _observed():
    rows = [("T", "T"), ("T", "T"), ("T", "F"), ("F", "F")]
    return [Assignment([0, 1], row) for row in rows]


@pytest.mark.training
def test_fully_observed_counts():
    family = _bayes_net()
    counts = IncrementalEMTrainer(1, 0.5).train(family, _observed())
    assert counts.get("a").values.tolist() == pytest.approx([3.5, 1.5])
    # (a, b) outcomes in order TT, TF, FT, FF
    assert counts.get("b").values.tolist() == pytest.approx([2.5, 1.5, 0.5, 1.5])


@pytest.mark.training
def test_repeated_passes_replace_contributions():
    family = _bayes_net()
    once = IncrementalEMTrainer(1, 1.0).train(family, _observed())
    many = IncrementalEMTrainer(5, 1.0).train(family, _observed())
    for name in ("a", "b"):
        assert many.get(name).values.tolist() == pytest.approx(once.get(name).values.tolist())


@pytest.mark.training
def test_hidden_variable_count_mass():
    family = _bayes_net()
    examples = [Assignment([1], [v]) for v in ("T", "T", "F", "T", "F")]
    log = DataFrameLogFunction()
    trainer = IncrementalEMTrainer(
        10, 1.0, log=log, rng=np.random.default_rng(4), shuffle=True,
    )
    counts = trainer.train(family, examples)
    # each example always contributes exactly one unit of mass per table
    assert counts.get("a").get_l1_norm() == pytest.approx(5.0 + 2 * 1.0)
    assert counts.get("b").get_l1_norm() == pytest.approx(5.0 + 4 * 1.0)

    log_likelihood = log.get_statistic("log likelihood")
    assert len(log_likelihood) == 10
    assert (log_likelihood < 0.0).all()
    logging.info(family.get_parameter_description(counts))


@pytest.mark.training
def test_initial_parameters_and_validation():
    family = _bayes_net()
    initial = family.get_new_sufficient_statistics()
    initial.get("a").set_value("T", 10.0)
    counts = IncrementalEMTrainer(0, 1.0).train(family, _observed(), initial_parameters=initial)
    assert counts.get("a").values.tolist() == [11.0, 1.0]
    assert initial.get("a").values.tolist() == [10.0, 0.0]

    with pytest.raises(ValueError):
        IncrementalEMTrainer(1, -1.0)
    with pytest.raises(ZeroProbabilityError):
        IncrementalEMTrainer(1, 0.0).train(family, _observed())
