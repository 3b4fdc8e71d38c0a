from . import (
    variables,
    tensor,
    factor,
    graph,
    inference,
    parametric,
    oracle,
    reduce,
    log,
    sgd,
    svm,
    em,
    data,
    config,
    visualization,
)
