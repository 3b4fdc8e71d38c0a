
import logging

import pytest

from cobalt import visualization
from cobalt.factor import TableFactor
from cobalt.log import DataFrameLogFunction, DefaultLogFunction, NullLogFunction
from cobalt.parametric import TensorSufficientStatistics
from cobalt.variables import DiscreteVariable, VariableNumMap


def _log_with_statistics():
    log = DataFrameLogFunction()
    for i in range(5):
        log.notify_iteration_start(i)
        log.log_statistic(i, "objective value", -1.0 / (i + 1))
        log.log_statistic(i, "gradient l2 norm", 1.0 / (i + 1))
        log.notify_iteration_end(i)
    return log


@pytest.mark.visualization
def test_null_log_function():
    log = NullLogFunction()
    log.start_timer("anything")
    assert log.stop_timer("anything") == 0.0
    log.log_statistic(0, "x", 1.0)


@pytest.mark.visualization
def test_default_log_function(caplog):
    log = DefaultLogFunction(log_interval=2)
    with caplog.at_level(logging.INFO):
        log.notify_iteration_start(2)
        log.log_statistic(2, "objective value", 3.5)
        log.log_statistic(3, "objective value", 4.5)
        log.start_timer("step")
        assert log.stop_timer("step") >= 0.0
        log.notify_iteration_end(2)
    assert "2 objective value: 3.5" in caplog.text
    assert "4.5" not in caplog.text
    assert "step: 1 calls" in caplog.text
    with pytest.raises(ValueError):
        log.stop_timer("never started")


@pytest.mark.visualization
def test_data_frame_log_function():
    log = _log_with_statistics()
    log.log_parameters(4, TensorSufficientStatistics(["a", "b"]))
    frame = log.to_frame()
    assert list(frame.columns) == ["iteration", "statistic", "value"]
    assert len(frame) == 11
    objective = log.get_statistic("objective value")
    assert objective.loc[3] == pytest.approx(-0.25)
    log.start_timer("step")
    log.stop_timer("step")
    assert log.timers_frame().loc["step", "count"] == 1


@pytest.mark.visualization
def test_plot_statistic(tmp_path):
    log = _log_with_statistics()
    (fig, ax) = visualization.plot_statistic(log, ["objective value", "gradient l2 norm"], outpath=False)
    assert len(ax.get_lines()) == 2
    visualization.plot_statistic(log, "objective value", outpath=tmp_path)
    assert (tmp_path / "objective_value.png").exists()
    with pytest.raises(ValueError):
        visualization.plot_statistic(log, "missing", outpath=False)


@pytest.mark.visualization
def test_plot_marginal(tmp_path):
    the_vars = VariableNumMap(
        [0, 1],
        [DiscreteVariable("x", ["a", "b"]), DiscreteVariable("y", ["c", "d", "e"])],
    )
    joint = TableFactor.unity(the_vars)
    visualization.plot_marginal(joint.marginalize([1]), outpath=tmp_path)
    assert (tmp_path / "x-marginal.png").exists()
    (fig, ax) = visualization.plot_marginal(joint, outpath=False)
    assert ax.get_xlabel() == "Value of y"
    with pytest.raises(ValueError):
        visualization.plot_marginal(joint.marginalize([0, 1]), outpath=False)
