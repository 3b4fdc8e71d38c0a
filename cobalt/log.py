import abc
import collections
import logging
import threading
import time
from typing import Optional

import pandas as pd


class LogFunction(abc.ABC):
    """
    Abstract base class for training observers. Trainers report progress through
    these callbacks and never depend on their side effects.

    `log` may be called from worker threads; every other callback is called
    from the thread running the training loop.
    """

    @abc.abstractmethod
    def notify_iteration_start(self, iteration: int):
        ...

    @abc.abstractmethod
    def notify_iteration_end(self, iteration: int):
        ...

    @abc.abstractmethod
    def log(self, example, graph, iteration: Optional[int]=None, example_num: Optional[int]=None):
        ...

    @abc.abstractmethod
    def log_message(self, message: str):
        ...

    @abc.abstractmethod
    def log_parameters(self, iteration: int, parameters):
        ...

    @abc.abstractmethod
    def log_statistic(self, iteration: int, name: str, value: float):
        ...

    @abc.abstractmethod
    def start_timer(self, name: str):
        ...

    @abc.abstractmethod
    def stop_timer(self, name: str) -> float:
        ...


class NullLogFunction(LogFunction):
    """
    Ignores everything.
    """

    def notify_iteration_start(self, iteration: int):
        pass

    def notify_iteration_end(self, iteration: int):
        pass

    def log(self, example, graph, iteration: Optional[int]=None, example_num: Optional[int]=None):
        pass

    def log_message(self, message: str):
        pass

    def log_parameters(self, iteration: int, parameters):
        pass

    def log_statistic(self, iteration: int, name: str, value: float):
        pass

    def start_timer(self, name: str):
        pass

    def stop_timer(self, name: str) -> float:
        return 0.0


class _TimerMixin:

    def _init_timers(self,):
        self._started = dict()
        self.timer_totals = collections.defaultdict(float)
        self.timer_counts = collections.defaultdict(int)

    def start_timer(self, name: str):
        self._started[name] = time.perf_counter()

    def stop_timer(self, name: str) -> float:
        if name not in self._started:
            raise ValueError(f"Timer {name} was never started.")
        elapsed = time.perf_counter() - self._started.pop(name)
        self.timer_totals[name] += elapsed
        self.timer_counts[name] += 1
        return elapsed


class DefaultLogFunction(_TimerMixin, LogFunction):
    """
    Sends statistics and timer summaries to the standard `logging` module.
    Statistics are logged every `log_interval` iterations. Examples are only
    logged at DEBUG level.
    """

    def __init__(self, log_interval: int=1, log_parameters_interval: Optional[int]=None):
        self.log_interval = log_interval
        self.log_parameters_interval = log_parameters_interval
        self._init_timers()

    def _should_log(self, iteration: int) -> bool:
        return (self.log_interval > 0) and (iteration % self.log_interval == 0)

    def notify_iteration_start(self, iteration: int):
        if self._should_log(iteration):
            logging.info(f"*** ITERATION {iteration} ***")

    def notify_iteration_end(self, iteration: int):
        if self._should_log(iteration):
            for (name, total) in self.timer_totals.items():
                count = self.timer_counts[name]
                logging.info(f"{name}: {count} calls, {total:.4f}s total, {total / count:.6f}s average")

    def log(self, example, graph, iteration: Optional[int]=None, example_num: Optional[int]=None):
        logging.debug(f"iteration {iteration} example {example_num}: {example}")

    def log_message(self, message: str):
        logging.info(message)

    def log_parameters(self, iteration: int, parameters):
        if self.log_parameters_interval and (iteration % self.log_parameters_interval == 0):
            logging.info(f"{iteration} parameters: {parameters}")

    def log_statistic(self, iteration: int, name: str, value: float):
        if self._should_log(iteration):
            logging.info(f"{iteration} {name}: {value}")


class DataFrameLogFunction(_TimerMixin, LogFunction):
    """
    Records every statistic as an `(iteration, statistic, value)` row, for
    analysis with `pandas` or plotting with `cobalt.visualization`.
    """

    def __init__(self,):
        self._rows = []
        self.messages = []
        self.num_examples_logged = 0
        self._lock = threading.Lock()
        self._init_timers()

    def notify_iteration_start(self, iteration: int):
        pass

    def notify_iteration_end(self, iteration: int):
        pass

    def log(self, example, graph, iteration: Optional[int]=None, example_num: Optional[int]=None):
        with self._lock:
            self.num_examples_logged += 1

    def log_message(self, message: str):
        self.messages.append(message)

    def log_parameters(self, iteration: int, parameters):
        self._rows.append((iteration, "parameter_l2_norm", parameters.get_l2_norm()))

    def log_statistic(self, iteration: int, name: str, value: float):
        self._rows.append((iteration, name, float(value)))

    def to_frame(self,) -> pd.DataFrame:
        return pd.DataFrame(self._rows, columns=["iteration", "statistic", "value"])

    def get_statistic(self, name: str) -> pd.Series:
        """
        Returns the values of statistic `name` indexed by iteration.
        """
        frame = self.to_frame()
        frame = frame[frame["statistic"] == name]
        return frame.set_index("iteration")["value"]

    def timers_frame(self,) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "total": pd.Series(self.timer_totals, dtype=float),
                "count": pd.Series(self.timer_counts, dtype=int),
            }
        )
