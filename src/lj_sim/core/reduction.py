"""
Parallel tree reduction of per-particle (KE, PE) pairs.

The input is padded with zeros to the next power of two. Each step halves
the active length:

    dst[j] = src[j] + src[j + half]    for j < half

alternating between two ping-pong buffers until one element remains. That
element is copied into ``final`` and divided by the unit conversion factor,
so callers see energies in eV.
"""

import numpy as np
from numba import njit, prange

from lj_sim.core.interfaces import Reducer, NDArrayFloat


def next_power_of_two(n: int) -> int:
    """Smallest power of two >= n (1 for n <= 1)."""
    if n <= 1:
        return 1
    return 1 << (int(n) - 1).bit_length()


@njit(parallel=True, fastmath=True)
def _reduce_step(src, dst, half):
    for j in prange(half):
        for c in range(src.shape[1]):
            dst[j, c] = src[j, c] + src[j + half, c]


class ReductionEngine(Reducer):
    """
    Ping-pong reduction buffers sized for a fixed particle count.

    Attributes
    ----------
    n_items : int
        Number of live entries in ``input``.
    padded_size : int
        Power-of-two length of each ping-pong buffer.
    unit_conversion : float
        Divisor applied to the reduced values.
    buffers : tuple of NDArrayFloat, each shape (padded_size, 2)
        ``buffers[0]`` is the input written by the kick kernel.
    final : NDArrayFloat, shape (2,)
        Converted (KE, PE) after the last ``reduce()``.
    """

    def __init__(self, n_items: int, unit_conversion: float = 1.0, width: int = 2):
        if n_items <= 0:
            raise ValueError(f"n_items must be positive, got {n_items}")
        if unit_conversion <= 0:
            raise ValueError(f"unit_conversion must be positive, got {unit_conversion}")

        self.n_items = int(n_items)
        self.padded_size = next_power_of_two(n_items)
        self.unit_conversion = float(unit_conversion)
        self.buffers = (
            np.zeros((self.padded_size, width), dtype=np.float64),
            np.zeros((self.padded_size, width), dtype=np.float64),
        )
        self.final = np.zeros(width, dtype=np.float64)

    @property
    def input(self) -> NDArrayFloat:
        """Buffer the kick pass writes per-particle values into."""
        return self.buffers[0]

    @property
    def n_steps(self) -> int:
        return self.padded_size.bit_length() - 1

    def load(self, values: NDArrayFloat) -> None:
        """Copy per-particle values into the input, zeroing the padding."""
        values = np.asarray(values, dtype=np.float64)
        if values.shape[0] != self.n_items:
            raise ValueError(f"Expected {self.n_items} rows, got {values.shape[0]}")
        self.buffers[0][: self.n_items] = values.reshape(self.n_items, -1)
        self.buffers[0][self.n_items:] = 0.0

    def reduce(self) -> NDArrayFloat:
        """
        Reduce ``input`` and return the converted totals.

        Intermediate steps overwrite the low rows of the input; the kick pass
        rewrites every live row before the next reduction. Padding rows are
        never written and stay zero.
        """
        src, dst = self.buffers[0], self.buffers[1]
        half = self.padded_size // 2
        result = src
        while half >= 1:
            _reduce_step(src, dst, half)
            result = dst
            src, dst = dst, src
            half //= 2

        self.final[:] = result[0] / self.unit_conversion
        return self.final.copy()


def tree_reduce(values: NDArrayFloat, unit_conversion: float = 1.0) -> NDArrayFloat:
    """
    Reduce an (N, k) array with the ping-pong tree scheme.

    Parameters
    ----------
    values : NDArrayFloat, shape (N,) or (N, k)
    unit_conversion : float
        Divisor applied to the totals.

    Returns
    -------
    totals : NDArrayFloat, shape (k,)
    """
    values = np.asarray(values, dtype=np.float64)
    if values.ndim == 1:
        values = values[:, None]
    engine = ReductionEngine(values.shape[0], unit_conversion=unit_conversion, width=values.shape[1])
    engine.load(values)
    return engine.reduce()
