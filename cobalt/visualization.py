import pathlib
from typing import Iterable, Union

import matplotlib
import matplotlib.pyplot as plt
import numpy as np

from . import factor
from .log import DataFrameLogFunction

DEFAULT_OUTPATH = pathlib.Path("figures")
SINGLE_FIGSIZE = (8, 5)
FONTSIZE = 15


def _save_or_return(fig, ax, outpath, filename: str):
    if outpath is False:
        return (fig, ax)
    outpath = pathlib.Path(outpath)
    outpath.mkdir(parents=True, exist_ok=True)
    fig.savefig(outpath / filename)
    plt.close(fig)


def plot_statistic(
    log: DataFrameLogFunction,
    names: Union[str, Iterable[str]],
    outpath: Union[str, pathlib.Path, bool]=DEFAULT_OUTPATH,
    log_scale: bool=False,
):
    """
    Plots statistics recorded by a `DataFrameLogFunction` against iteration.

    + `names`: one statistic name or several, drawn on the same axes
    + `outpath`: directory to save the figure in, or `False` to return
        `(fig, ax)` instead
    + `log_scale`: use a logarithmic y axis
    """
    if isinstance(names, str):
        names = [names]
    fig, ax = plt.subplots(figsize=SINGLE_FIGSIZE)
    ax.grid("on")
    for name in names:
        series = log.get_statistic(name)
        if len(series) == 0:
            raise ValueError(f"No statistic called {name} was logged.")
        ax.plot(series.index.to_numpy(), series.to_numpy(), label=name)
    if log_scale:
        ax.set_yscale("log")
    ax.set_xlabel("Iteration", fontsize=FONTSIZE)
    ax.set_ylabel("Value", fontsize=FONTSIZE)
    ax.legend()
    fig.tight_layout()
    return _save_or_return(fig, ax, outpath, f"{'-'.join(names).replace(' ', '_')}.png")


def plot_marginal(
    marginal: factor.Factor,
    outpath: Union[str, pathlib.Path, bool]=DEFAULT_OUTPATH,
    log_scale: bool=False,
):
    """
    Plots a normalized factor over one variable as a bar chart, or over two
    variables as a heatmap.
    """
    if len(marginal.vars) not in (1, 2):
        raise ValueError("Only plotting univariate and bivariate marginals is supported.")
    table = marginal.to_tensor().to_dense().numpy()
    partition_function = table.sum()
    if partition_function > 0.0:
        table = table / partition_function
    names = [v.name for v in marginal.vars.variables]

    fig, ax = plt.subplots(figsize=SINGLE_FIGSIZE)
    if len(names) == 1:
        variable = marginal.vars.variables[0]
        labels = np.arange(variable.num_values())
        bars = ax.bar(labels, table, edgecolor="black", hatch="//")
        ax.bar_label(bars, padding=3, fmt="%.3f")
        ax.set_xticks(labels, [str(v) for v in variable.values])
        ax.set_xlabel(f"Value of {names[0]}", fontsize=FONTSIZE)
        ax.set_ylabel(f"p({names[0]})", fontsize=FONTSIZE)
        if log_scale:
            ax.set_yscale("log")
    else:
        norm = matplotlib.colors.LogNorm() if log_scale else None
        display = ax.imshow(table, interpolation="none", cmap="autumn", aspect="auto", norm=norm)
        (first, second) = marginal.vars.variables
        ax.set_yticks(range(first.num_values()), [str(v) for v in first.values])
        ax.set_xticks(range(second.num_values()), [str(v) for v in second.values])
        ax.set_ylabel(f"Value of {names[0]}", fontsize=FONTSIZE)
        ax.set_xlabel(f"Value of {names[1]}", fontsize=FONTSIZE)
        cbar = fig.colorbar(display, ax=ax)
        cbar.ax.set_ylabel(f"p({','.join(names)})", fontsize=FONTSIZE)
        for ((j, i), value) in np.ndenumerate(table):
            ax.text(i, j, round(float(value), 3), ha="center", va="center")
    fig.tight_layout()
    return _save_or_return(fig, ax, outpath, f"{'-'.join(names)}-marginal.png")
