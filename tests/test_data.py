
import logging

import numpy as np
import pandas as pd
import pytest

from cobalt.data import Example, assignments_from_dataframe, examples_from_dataframe
from cobalt.graph import FactorGraph
from cobalt.variables import Assignment, DiscreteVariable


def _graph():
    return FactorGraph() \
        .add_variable("weather", DiscreteVariable("weather", ["sun", "rain"])) \
        .add_variable("count", DiscreteVariable("count", [0, 1, 2])) \
        .add_variable("wet", DiscreteVariable("wet", [True, False]))


@pytest.mark.data
def test_assignments_from_dataframe():
    df = pd.DataFrame({
        "weather": ["sun", "rain", np.nan],
        "wet": [False, True, True],
    })
    assignments = assignments_from_dataframe(_graph(), df)
    assert assignments[0] == Assignment([0, 2], ["sun", False])
    assert assignments[1] == Assignment([0, 2], ["rain", True])
    # missing cells are unobserved
    assert assignments[2] == Assignment([2], [True])


@pytest.mark.data
def test_numpy_values_converted():
    df = pd.DataFrame({"count": np.array([2, 0], dtype=np.int64)})
    assignments = assignments_from_dataframe(_graph(), df)
    assert assignments == [Assignment([1], [2]), Assignment([1], [0])]
    assert type(assignments[0].get_value(1)) is int


@pytest.mark.data
def test_examples_from_dataframe():
    df = pd.DataFrame({
        "weather": ["sun", "rain"],
        "count": [1, 2],
        "wet": [False, True],
    })
    examples = examples_from_dataframe(_graph(), df, ["weather"], ["wet"])
    assert examples[1] == Example(Assignment([0], ["rain"]), Assignment([2], [True]))
    assert examples[0].input == Assignment([0], ["sun"])
    logging.info(f"Examples: {examples}")

    with pytest.raises(ValueError):
        examples_from_dataframe(_graph(), df, ["weather"], ["weather"])
    with pytest.raises(ValueError):
        examples_from_dataframe(_graph(), df, ["weather"], ["humidity"])


@pytest.mark.data
def test_unknown_values_rejected():
    df = pd.DataFrame({"weather": ["snow"]})
    with pytest.raises(ValueError):
        assignments_from_dataframe(_graph(), df)
