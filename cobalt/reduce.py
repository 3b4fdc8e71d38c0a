import concurrent.futures
import logging
from typing import Sequence

from .oracle import GradientOracle, ZeroProbabilityError
from .parametric import SufficientStatistics


class GradientEvaluation:
    """
    The (gradient, objective, search error count) triple accumulated over a
    batch. Reused across iterations via `zero_out`.
    """

    def __init__(
        self,
        gradient: SufficientStatistics,
        objective_value: float=0.0,
        search_errors: int=0,
    ):
        self.gradient = gradient
        self.objective_value = objective_value
        self.search_errors = search_errors

    def __repr__(self,):
        return f"GradientEvaluation(objective={self.objective_value}, search_errors={self.search_errors})"

    def increment(self, other: "GradientEvaluation"):
        self.gradient.increment(other.gradient, 1.0)
        self.objective_value += other.objective_value
        self.search_errors += other.search_errors

    def zero_out(self,):
        self.gradient.zero_out()
        self.objective_value = 0.0
        self.search_errors = 0


class GradientReducer:
    """
    Computes the gradient of one example and folds it into an accumulator.
    Examples whose output has zero probability contribute nothing but a
    search error.
    """

    def __init__(self, oracle: GradientOracle, model, parameters: SufficientStatistics, log):
        self.oracle = oracle
        self.model = model
        self.parameters = parameters
        self.log = log

    def get_initial_value(self,) -> GradientEvaluation:
        return GradientEvaluation(self.oracle.initialize_gradient())

    def reduce(self, example, accumulated: GradientEvaluation) -> GradientEvaluation:
        try:
            accumulated.objective_value += self.oracle.accumulate_gradient(
                accumulated.gradient,
                self.model,
                self.parameters,
                example,
                self.log,
            )
        except ZeroProbabilityError as e:
            logging.debug(f"Search error: {e}")
            accumulated.search_errors += 1
        return accumulated

    def combine(self, left: GradientEvaluation, right: GradientEvaluation) -> GradientEvaluation:
        left.increment(right)
        return left


def partition_items(items: Sequence, num_parts: int) -> list[list]:
    """
    Splits `items` into at most `num_parts` contiguous, non-empty chunks whose
    sizes differ by at most one.
    """
    num_parts = max(1, min(num_parts, len(items)))
    size, extra = divmod(len(items), num_parts)
    chunks = []
    start = 0
    for i in range(num_parts):
        end = start + size + (1 if i < extra else 0)
        chunks.append(list(items[start:end]))
        start = end
    return [c for c in chunks if len(c) > 0]


class MapReduceExecutor:
    """
    Maps a reducer over a batch with a pool of `num_workers` threads. Each worker
    folds a contiguous chunk of the batch into its own accumulator; accumulators
    are combined on the calling thread as workers finish, in completion order.
    Since combining is associative and commutative, the result does not depend
    on how the batch was split.

    With `num_workers=1` the batch is reduced inline on the calling thread.
    """

    def __init__(self, num_workers: int=1):
        if num_workers < 1:
            raise ValueError(f"num_workers must be positive, got {num_workers}")
        self.num_workers = num_workers
        self._pool = None

    def __repr__(self,):
        return f"MapReduceExecutor(num_workers={self.num_workers})"

    def _reduce_chunk(self, chunk, reducer):
        accumulated = reducer.get_initial_value()
        for item in chunk:
            accumulated = reducer.reduce(item, accumulated)
        return accumulated

    def map_reduce(self, items: Sequence, reducer, initial_value=None):
        """
        Reduces `items` with `reducer`, combining into `initial_value` if given
        (or a fresh initial value otherwise).
        """
        result = initial_value if initial_value is not None else reducer.get_initial_value()
        if self.num_workers == 1 or len(items) <= 1:
            for item in items:
                result = reducer.reduce(item, result)
            return result

        if self._pool is None:
            self._pool = concurrent.futures.ThreadPoolExecutor(max_workers=self.num_workers)
        futures = [
            self._pool.submit(self._reduce_chunk, chunk, reducer)
            for chunk in partition_items(items, self.num_workers)
        ]
        for future in concurrent.futures.as_completed(futures):
            result = reducer.combine(result, future.result())
        return result

    def shutdown(self,):
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None

    def __enter__(self,):
        return self

    def __exit__(self, *exc):
        self.shutdown()
