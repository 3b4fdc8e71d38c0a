import logging
import pathlib
import time

import cobalt
import numpy as np
import pandas as pd


logging.getLogger().setLevel(logging.INFO)
PATH = pathlib.Path("./benchmark_results")
PATH.mkdir(exist_ok=True, parents=True,)


def er_graph(n: int, d: int, p: float, density: float, rng: np.random.Generator) -> cobalt.graph.FactorGraph:
    """
    An Erdos-Renyi graph of `n` variables with `d` values each, with a sparse
    pairwise factor on each edge.
    """
    if (n < 2) or (d < 2) or not (0 < p < 1):
        raise ValueError(f"Invalid graph parameters n={n}, d={d}, p={p}")
    variable = cobalt.variables.DiscreteVariable("var", range(d))
    graph = cobalt.graph.FactorGraph()
    for i in range(n):
        graph = graph.add_variable(f"var_{i}", variable)
    for i in range(n - 1):
        for j in range(i + 1, n):
            if rng.random() < p:
                the_vars = graph.lookup_variables([f"var_{i}", f"var_{j}"])
                graph = graph.add_factor(
                    cobalt.factor.TableFactor.from_tensor(
                        the_vars,
                        cobalt.tensor.random_sparse_tensor(the_vars.var_nums, the_vars.get_sizes(), density, rng),
                    )
                )
    return graph


def to_ms(t0, t1):
    return round(1000 * (t1 - t0), 4)


def er_graph_numnodes_results(rng: np.random.Generator):
    ns = list(range(4, 8 + 1))
    d = 4
    p = 0.4
    calculators = {
        "sparse": cobalt.inference.ExactMarginalCalculator(),
        "dense": cobalt.inference.DenseMarginalCalculator(),
    }
    results = pd.DataFrame(columns=ns, index=list(calculators.keys()), dtype=float)

    for n in ns:
        logging.info(f"Num nodes: on n = {n}")
        graph = er_graph(n, d, p, 0.3, rng)
        for (name, calculator) in calculators.items():
            runs = []
            for rerun in range(3):
                t0 = time.perf_counter()
                marginals = calculator.compute_marginals(graph)
                t1 = time.perf_counter()
                runs.append(to_ms(t0, t1))
            logging.info(f"{name}: Z = {marginals.get_partition_function()}, took {runs}ms")
            results.loc[name, n] = np.median(runs)
    logging.info(f"Contraction cache: {cobalt.inference.contraction_cache_info()}")
    return results


def relabel_results(rng: np.random.Generator):
    """
    Times repeated relabeling of one factor with and without a permutation cache.
    """
    the_vars = cobalt.variables.VariableNumMap(
        range(5),
        [cobalt.variables.DiscreteVariable("var", range(6))] * 5,
    )
    f = cobalt.factor.TableFactor.from_tensor(
        the_vars,
        cobalt.tensor.random_sparse_tensor(the_vars.var_nums, the_vars.get_sizes(), 0.2, rng),
    )
    relabelings = [dict(zip(range(5), rng.permutation(5).tolist())) for _ in range(200)]
    results = dict()
    for (name, the_factor) in (("uncached", f), ("cached", f.cache_permutations())):
        t0 = time.perf_counter()
        for relabeling in relabelings:
            the_factor.relabel_variables(relabeling)
        t1 = time.perf_counter()
        results[name] = to_ms(t0, t1)
    return pd.Series(results)


def main():
    rng = np.random.default_rng(0)
    inference_results = er_graph_numnodes_results(rng)
    logging.info(f"\n{inference_results}")
    inference_results.to_csv(PATH / "inference.csv")

    relabel = relabel_results(rng)
    logging.info(f"\n{relabel}")
    relabel.to_csv(PATH / "relabel.csv")


if __name__ == "__main__":
    main()
