import collections
import logging
import pathlib

import cobalt
import numpy as np
import pandas as pd


logging.basicConfig(level=logging.INFO)
DEFAULT_OUTPATH = pathlib.Path("sprinkler")
BOOL = cobalt.variables.DiscreteVariable("bool", [True, False])


def mock_weather_dataframe(n: int, rng: np.random.Generator):
    rain = rng.random(n) < 0.3
    sprinkler = np.where(rain, rng.random(n) < 0.1, rng.random(n) < 0.5)
    wet = np.where(rain | sprinkler, rng.random(n) < 0.9, rng.random(n) < 0.05)
    return pd.DataFrame({"rain": rain, "sprinkler": sprinkler, "wet": wet})


def make_graph():
    fg = cobalt.graph.FactorGraph()
    for name in ("rain", "sprinkler", "wet"):
        fg = fg.add_variable(name, BOOL)
    return fg


def make_bayes_net(fg):
    rain = fg.lookup_variables(["rain"])
    sprinkler = fg.lookup_variables(["sprinkler"])
    return cobalt.parametric.ParametricFactorGraph(
        fg,
        collections.OrderedDict([
            ("rain", cobalt.parametric.CptTableFactor(cobalt.variables.VariableNumMap.EMPTY, rain)),
            ("sprinkler", cobalt.parametric.CptTableFactor(rain, sprinkler)),
            ("wet", cobalt.parametric.CptTableFactor(
                rain.union(sprinkler),
                fg.lookup_variables(["wet"]),
            )),
        ]),
    )


def make_log_linear(fg):
    return cobalt.parametric.ParametricFactorGraph(
        fg,
        collections.OrderedDict([
            ("rain_wet", cobalt.parametric.IndicatorLogLinearFactor.dense(fg.lookup_variables(["rain", "wet"]))),
            ("sprinkler_wet", cobalt.parametric.IndicatorLogLinearFactor.dense(fg.lookup_variables(["sprinkler", "wet"]))),
        ]),
    )


def main():
    rng = np.random.default_rng(2022)
    df = mock_weather_dataframe(200, rng)
    # hide the rain on half the days
    df["rain"] = df["rain"].astype(object)
    df.loc[df.index % 2 == 0, "rain"] = np.nan
    fg = make_graph()

    # Step 1: incremental EM on a Bayes net with a partially observed variable
    counts = cobalt.em.IncrementalEMTrainer(5, 1.0, rng=rng, shuffle=True).train(
        make_bayes_net(fg),
        cobalt.data.assignments_from_dataframe(fg, df),
    )
    logging.info(f"EM counts:\n{make_bayes_net(fg).get_parameter_description(counts)}")

    # Step 2: conditional log-likelihood training of P(wet | rain, sprinkler)
    observed = df.dropna()
    examples = cobalt.data.examples_from_dataframe(fg, observed, ["rain", "sprinkler"], ["wet"])
    family = make_log_linear(fg)
    log = cobalt.log.DataFrameLogFunction()
    trainer = cobalt.config.make_trainer(
        dict(num_iterations=200, batch_size=10, num_workers=4, l2_penalty=0.01, verbosity=50),
        log_function=log,
        rng=rng,
    )
    params = trainer.train(
        cobalt.oracle.LoglikelihoodOracle(family),
        family.get_new_sufficient_statistics(),
        examples,
    )
    logging.info(f"Log-linear parameters:\n{family.get_parameter_description(params)}")
    cobalt.visualization.plot_statistic(
        log,
        ["objective value", "objective value moving average"],
        outpath=DEFAULT_OUTPATH,
    )

    # Step 3: query the trained model
    model = family.get_factor_graph_from_parameters(params)
    evidence = model.outcome_to_assignment(["rain", "sprinkler"], [False, True])
    marginals = cobalt.inference.ExactMarginalCalculator().compute_marginals(model.conditional(evidence))
    wet = marginals.get_marginal(model.lookup_variables(["wet"]).var_nums)
    logging.info(f"p(wet | no rain, sprinkler) = {wet.normalize()}")
    cobalt.visualization.plot_marginal(wet, outpath=DEFAULT_OUTPATH)


if __name__ == "__main__":
    main()
