import logging
from typing import Hashable, NamedTuple, Sequence

import numpy as np
import pandas as pd

from .graph import FactorGraph
from .variables import Assignment


class Example(NamedTuple):
    """
    A labeled training example: the observed `input` and the `output` the model
    should predict. Variables in neither are hidden.
    """
    input: Assignment
    output: Assignment


def _to_python(value) -> Hashable:
    # numpy scalars compare equal to Python values but don't always hash alike
    if isinstance(value, np.generic):
        return value.item()
    return value


def row_to_assignment(graph: FactorGraph, row: pd.Series, columns: Sequence[str]) -> Assignment:
    """
    Converts the cells of `row` in `columns` into an assignment to the graph
    variables of the same names. Missing (NaN) cells are left unassigned.
    """
    names = []
    values = []
    for name in columns:
        value = row[name]
        if pd.isna(value):
            continue
        names.append(name)
        values.append(_to_python(value))
    return graph.outcome_to_assignment(names, values)


def assignments_from_dataframe(graph: FactorGraph, df: pd.DataFrame) -> list[Assignment]:
    """
    One (possibly partial) assignment per row of `df`, whose columns name
    variables of `graph`.
    """
    graph.lookup_variables(df.columns)
    assignments = [row_to_assignment(graph, row, df.columns) for (_, row) in df.iterrows()]
    logging.info(f"Read {len(assignments)} assignments over {list(df.columns)}")
    return assignments


def examples_from_dataframe(
    graph: FactorGraph,
    df: pd.DataFrame,
    input_columns: Sequence[str],
    output_columns: Sequence[str],
) -> list[Example]:
    """
    One `Example` per row of `df`, reading inputs from `input_columns` and
    labels from `output_columns`.
    """
    overlap = set(input_columns) & set(output_columns)
    if len(overlap) > 0:
        raise ValueError(f"Columns {sorted(overlap)} can't be both input and output")
    graph.lookup_variables(list(input_columns) + list(output_columns))
    examples = [
        Example(
            row_to_assignment(graph, row, input_columns),
            row_to_assignment(graph, row, output_columns),
        )
        for (_, row) in df.iterrows()
    ]
    logging.info(f"Read {len(examples)} examples with inputs {list(input_columns)} and outputs {list(output_columns)}")
    return examples
