import itertools
import logging
from typing import Iterable, Mapping, Optional, Sequence

import numpy as np
import torch


def _check_dimensions(dimension_nums: Sequence[int], dimension_sizes: Sequence[int]):
    if len(dimension_nums) != len(dimension_sizes):
        raise ValueError(
            f"Dimensions {tuple(dimension_nums)} don't match sizes {tuple(dimension_sizes)}"
        )
    if list(dimension_nums) != sorted(set(dimension_nums)):
        raise ValueError(
            f"Dimension numbers {tuple(dimension_nums)} must be unique and sorted."
        )


class SparseTensor:
    """
    A `SparseTensor` is a sparse table of non-zero values keyed by tuples of
    integer indices, one index per dimension. Dimensions are identified by
    integer dimension numbers which are always kept in ascending order; every
    key lists its indices in that order.

    Because keys are ordered by dimension number, renumbering dimensions may
    reorder every key. This is what `relabel_dimensions` does, and it is the
    step that must happen before two tables can be aligned.
    """

    def __init__(
        self,
        dimension_nums: Sequence[int],
        dimension_sizes: Sequence[int],
        values: Optional[Mapping[tuple[int,...], float]]=None,
    ):
        _check_dimensions(dimension_nums, dimension_sizes)
        self.dimension_nums = tuple(dimension_nums)
        self.dimension_sizes = tuple(dimension_sizes)
        values = values or dict()
        for (key, value) in values.items():
            if len(key) != len(self.dimension_nums):
                raise ValueError(f"Key {key} doesn't match dimensions {self.dimension_nums}")
            if any((i < 0) or (i >= size) for (i, size) in zip(key, self.dimension_sizes)):
                raise ValueError(f"Key {key} is out of range for sizes {self.dimension_sizes}")
        # keys are stored in sorted order so that iteration is deterministic
        self._values = {
            key: float(values[key]) for key in sorted(values) if values[key] != 0.0
        }

    @classmethod
    def from_dense(cls, dimension_nums: Sequence[int], table: torch.Tensor):
        """
        Builds a `SparseTensor` from the non-zero entries of a dense `torch.Tensor`.
        """
        values = {
            tuple(int(i) for i in key): float(table[tuple(key)])
            for key in torch.nonzero(table).tolist()
        }
        if table.dim() == 0 and float(table) != 0.0:
            values[()] = float(table)
        return cls(dimension_nums, tuple(table.shape), values)

    def num_dimensions(self,) -> int:
        return len(self.dimension_nums)

    def size(self,) -> int:
        """
        Number of non-zero entries.
        """
        return len(self._values)

    def keys(self,):
        return self._values.keys()

    def items(self,):
        return self._values.items()

    def get(self, key: tuple[int,...]) -> float:
        return self._values.get(tuple(key), 0.0)

    def sum(self,) -> float:
        return float(sum(self._values.values()))

    def to_dense(self, dtype=torch.float64) -> torch.Tensor:
        table = torch.zeros(self.dimension_sizes, dtype=dtype)
        for (key, value) in self._values.items():
            table[key] = value
        return table

    def relabel_dimensions(self, new_dimensions: Sequence[int]) -> "SparseTensor":
        """
        Returns a tensor where dimension `self.dimension_nums[i]` is renamed to
        `new_dimensions[i]`. The result's dimensions are re-sorted, so keys are
        permuted whenever the renaming is not order-preserving.
        """
        if len(new_dimensions) != self.num_dimensions():
            raise ValueError(
                f"Can't relabel {self.dimension_nums} with {tuple(new_dimensions)}"
            )
        order = sorted(range(len(new_dimensions)), key=lambda i: new_dimensions[i])
        new_nums = tuple(new_dimensions[i] for i in order)
        new_sizes = tuple(self.dimension_sizes[i] for i in order)
        if order == list(range(len(order))):
            return SparseTensor(new_nums, new_sizes, self._values)
        new_values = {
            tuple(key[i] for i in order): value for (key, value) in self._values.items()
        }
        return SparseTensor(new_nums, new_sizes, new_values)

    def _reduce_dimensions(self, dimensions_to_eliminate: Iterable[int], combine) -> "SparseTensor":
        eliminate = set(dimensions_to_eliminate)
        kept = [i for (i, d) in enumerate(self.dimension_nums) if d not in eliminate]
        out = dict()
        for (key, value) in self._values.items():
            new_key = tuple(key[i] for i in kept)
            out[new_key] = combine(out[new_key], value) if new_key in out else value
        return SparseTensor(
            tuple(self.dimension_nums[i] for i in kept),
            tuple(self.dimension_sizes[i] for i in kept),
            out,
        )

    def sum_out_dimensions(self, dimensions_to_eliminate: Iterable[int]) -> "SparseTensor":
        return self._reduce_dimensions(dimensions_to_eliminate, lambda x, y: x + y)

    def max_out_dimensions(self, dimensions_to_eliminate: Iterable[int]) -> "SparseTensor":
        return self._reduce_dimensions(dimensions_to_eliminate, max)

    def elementwise_product(self, other: "SparseTensor") -> "SparseTensor":
        """
        Multiplies `self` by `other`, whose dimensions must be a subset of this
        tensor's dimensions. `other` is broadcast along the missing dimensions.
        """
        positions = []
        for d in other.dimension_nums:
            if d not in self.dimension_nums:
                raise ValueError(
                    f"Dimensions {other.dimension_nums} are not a subset of {self.dimension_nums}"
                )
            positions.append(self.dimension_nums.index(d))
        out = dict()
        for (key, value) in self._values.items():
            other_value = other.get(tuple(key[p] for p in positions))
            if other_value != 0.0:
                out[key] = value * other_value
        return SparseTensor(self.dimension_nums, self.dimension_sizes, out)

    def __eq__(self, other):
        if not isinstance(other, SparseTensor):
            return NotImplemented
        return (
            (self.dimension_nums == other.dimension_nums)
            and (self.dimension_sizes == other.dimension_sizes)
            and (list(self._values.items()) == list(other._values.items()))
        )

    def __repr__(self,):
        return f"SparseTensor(dims={self.dimension_nums}, sizes={self.dimension_sizes}, nnz={self.size()})"


def _permutation_of(new_dimensions: Sequence[int]) -> tuple[int,...]:
    """
    Computes how `new_dimensions` permutes the indexes of a tensor, i.e. the rank of
    each new dimension number among all of them.
    """
    ranks = {d: i for (i, d) in enumerate(sorted(new_dimensions))}
    return tuple(ranks[d] for d in new_dimensions)


class CachedSparseTensor(SparseTensor):
    """
    A `SparseTensor` which caches the results of `relabel_dimensions`. Relabeling
    re-sorts every stored key, so tensors that are aligned repeatedly (for
    example, factors instantiated many times under different variable numberings)
    are faster when each permutation is computed once.

    By default every permutation of the dimensions is computed up front, which
    costs space factorial in the number of dimensions. Pass
    `eager=False` to fill the cache lazily, one permutation at a time.
    Cached and freshly computed relabelings are identical.
    """

    def __init__(
        self,
        dimension_nums: Sequence[int],
        dimension_sizes: Sequence[int],
        values: Optional[Mapping[tuple[int,...], float]]=None,
        eager: bool=True,
    ):
        super().__init__(dimension_nums, dimension_sizes, values)
        self._cache = dict()
        self.hits = 0
        self.misses = 0
        if eager:
            for permutation in itertools.permutations(range(self.num_dimensions())):
                self._cache[permutation] = SparseTensor.relabel_dimensions(self, permutation)
            logging.debug(f"Cached {len(self._cache)} permutations of {self}")

    @classmethod
    def cache_all_permutations(cls, tensor: SparseTensor, eager: bool=True):
        """
        Returns a `CachedSparseTensor` functionally identical to `tensor`.
        """
        return cls(tensor.dimension_nums, tensor.dimension_sizes, dict(tensor.items()), eager=eager)

    def cache_info(self,) -> tuple[int, int, int]:
        """
        Returns the (hits, misses, currsize) of the permutation cache.
        """
        return (self.hits, self.misses, len(self._cache))

    def relabel_dimensions(self, new_dimensions: Sequence[int]) -> SparseTensor:
        if len(new_dimensions) != self.num_dimensions():
            raise ValueError(
                f"Can't relabel {self.dimension_nums} with {tuple(new_dimensions)}"
            )
        permutation = _permutation_of(new_dimensions)
        if permutation in self._cache:
            self.hits += 1
        else:
            self.misses += 1
            self._cache[permutation] = SparseTensor.relabel_dimensions(self, permutation)
        # the cached tensor is already in the right key order; renaming its
        # dimensions to the sorted target numbers is order-preserving.
        return self._cache[permutation].relabel_dimensions(sorted(new_dimensions))


def random_sparse_tensor(
    dimension_nums: Sequence[int],
    dimension_sizes: Sequence[int],
    density: float,
    rng: np.random.Generator,
) -> SparseTensor:
    """
    Draws a tensor whose entries are non-zero with probability `density`, with
    non-zero values uniform on (0, 1].
    """
    values = dict()
    for key in itertools.product(*(range(s) for s in dimension_sizes)):
        if rng.random() < density:
            values[key] = 1.0 - rng.random()
    return SparseTensor(dimension_nums, dimension_sizes, values)
