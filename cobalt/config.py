import logging
import os
from typing import Optional, Union

import numpy as np
import toml

from . import em, inference, log, reduce, sgd, svm

DEFAULT_TRAIN_OPTIONS = dict(
    trainer="sgd",
    num_iterations=100,
    batch_size=1,
    step_size=1.0,
    decay_step_size=True,
    return_average_parameters=False,
    regularizer="l2",
    l2_penalty=0.0,
    l2_frequency=1.0,
    l1_penalty=0.0,
    num_workers=1,
    regularization_constant=0.1,
    hamming_cost=1.0,
    smoothing=1.0,
    shuffle=False,
    inference="exact",
    optimize="greedy",
    seed=None,
    verbosity=100,
)

TRAINERS = ("sgd", "svm", "em")


def load_train_options(path: Union[str, os.PathLike]) -> dict:
    """
    Reads training options from a TOML file. Options may be top-level keys or
    live in a `[train]` table. Missing options take their default values.
    """
    parsed = toml.load(path)
    options = parsed.get("train", parsed)
    logging.info(f"Loaded train options {options} from {path}")
    return with_defaults(options)


def with_defaults(train_options: Optional[dict]=None) -> dict:
    """
    Fills in missing options with `DEFAULT_TRAIN_OPTIONS`. Raises `ValueError` on
    unknown options.
    """
    train_options = train_options or dict()
    unknown = set(train_options) - set(DEFAULT_TRAIN_OPTIONS)
    if len(unknown) > 0:
        raise ValueError(f"Unknown train options {sorted(unknown)}")
    options = dict(DEFAULT_TRAIN_OPTIONS)
    options.update(train_options)
    return options


def make_regularizer(train_options: dict) -> sgd.Regularizer:
    options = with_defaults(train_options)
    kind = options["regularizer"]
    if kind == "l2":
        return sgd.StochasticL2Regularizer(options["l2_penalty"], options["l2_frequency"])
    elif kind == "l1":
        return sgd.L1Regularizer(options["l1_penalty"])
    elif kind == "none":
        return sgd.StochasticL2Regularizer(0.0)
    raise ValueError(f"Unknown regularizer {kind}, must be one of l2, l1, none")


def make_marginal_calculator(train_options: dict) -> inference.MarginalCalculator:
    options = with_defaults(train_options)
    kind = options["inference"]
    if kind == "exact":
        return inference.ExactMarginalCalculator()
    elif kind == "dense":
        return inference.DenseMarginalCalculator(optimize=options["optimize"])
    raise ValueError(f"Unknown inference {kind}, must be one of exact, dense")


def make_log_function(train_options: dict) -> log.LogFunction:
    options = with_defaults(train_options)
    if options["verbosity"] > 0:
        return log.DefaultLogFunction(log_interval=options["verbosity"])
    return log.NullLogFunction()


def make_trainer(
    train_options: dict,
    log_function: Optional[log.LogFunction]=None,
    rng: Optional[np.random.Generator]=None,
):
    """
    Builds the trainer named by `train_options["trainer"]`:

    + `sgd`: `StochasticGradientTrainer`, trained with a `GradientOracle`
    + `svm`: `SubgradientSvmTrainer`, trained with a `ParametricFactorGraph`
    + `em`: `IncrementalEMTrainer`, trained with a `ParametricFactorGraph`

    `rng` defaults to a generator seeded with `train_options["seed"]`.
    The `sgd` trainer's worker pool is shut down when each `train` call returns.
    """
    options = with_defaults(train_options)
    log_function = log_function if log_function is not None else make_log_function(options)
    rng = rng if rng is not None else np.random.default_rng(options["seed"])
    kind = options["trainer"]
    if kind == "sgd":
        return sgd.StochasticGradientTrainer(
            options["num_iterations"],
            options["batch_size"],
            options["step_size"],
            decay_step_size=options["decay_step_size"],
            return_average_parameters=options["return_average_parameters"],
            regularizer=make_regularizer(options),
            log=log_function,
            rng=rng,
            executor=reduce.MapReduceExecutor(options["num_workers"]),
        )
    elif kind == "svm":
        return svm.SubgradientSvmTrainer(
            options["num_iterations"],
            options["batch_size"],
            options["regularization_constant"],
            cost_function=svm.HammingCost(options["hamming_cost"]),
            marginal_calculator=make_marginal_calculator(options),
            log=log_function,
        )
    elif kind == "em":
        return em.IncrementalEMTrainer(
            options["num_iterations"],
            options["smoothing"],
            marginal_calculator=make_marginal_calculator(options),
            log=log_function,
            rng=rng,
            shuffle=options["shuffle"],
        )
    raise ValueError(f"Unknown trainer {kind}, must be one of {', '.join(TRAINERS)}")
