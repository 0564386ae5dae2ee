"""
Uniform spatial binning for short-range neighbour search.

The domain [0, box_size)^2 is covered by bin_count x bin_count square bins of
edge bin_size >= interaction radius, so every neighbour of a particle lies in
its own bin or one of the 8 surrounding bins (3x3 stencil).

Each bin stores up to ``capacity`` particle indices plus a raw occupancy
counter. Inserting into a full bin still increments the counter but the index
is dropped, so the particle is invisible to neighbour queries through that bin
for the current iteration. The raw counter maximum is exposed as
``max_occupancy`` so capacity can be re-tuned.

Boundary policies:
- "clamp": bin coordinates are clamped to [0, bin_count); edge bins have
  fewer than 9 stencil neighbours.
- "wrap": bin coordinates wrap modulo bin_count and separations use the
  minimum-image convention.

Kernels are numba-compiled; the per-bin clear runs as a parallel loop while
insertion is a serial loop (the counter increment is the slot claim). A
brute-force O(N^2) search is kept as a reference for testing.
"""

from typing import Iterator, List
import numpy as np
import numpy.typing as npt
from numba import njit, prange

from lj_sim.core.interfaces import SpatialIndex, BinCoords, NDArrayFloat

VALID_BOUNDARIES = ("clamp", "wrap")


@njit(fastmath=True)
def bin_coordinate(x, bin_size, bin_count, wrap):
    """Bin index along one axis for coordinate x."""
    b = int(np.floor(x / bin_size))
    if wrap:
        b = b % bin_count
    elif b < 0:
        b = 0
    elif b >= bin_count:
        b = bin_count - 1
    return b


@njit(fastmath=True)
def minimum_image(d, box_size, wrap):
    """Shortest periodic separation along one axis."""
    if wrap:
        return d - box_size * np.floor(d / box_size + 0.5)
    return d


@njit(parallel=True)
def _clear_kernel(bin_load):
    """Reset every occupancy counter, one operation per bin."""
    for b in prange(bin_load.shape[0]):
        bin_load[b] = 0


@njit
def _insert_one(index, x, y, bin_load, bin_slots, bin_size, bin_count, capacity, wrap):
    bx = bin_coordinate(x, bin_size, bin_count, wrap)
    by = bin_coordinate(y, bin_size, bin_count, wrap)
    b = bx + by * bin_count

    slot = bin_load[b]
    bin_load[b] = slot + 1
    if slot < capacity:
        bin_slots[b, slot] = index
        return slot
    return -1


@njit
def _insert_kernel(positions, bin_load, bin_slots, bin_size, bin_count, capacity, wrap):
    """Place every particle into its bin."""
    for i in range(positions.shape[0]):
        _insert_one(
            i, positions[i, 0], positions[i, 1],
            bin_load, bin_slots, bin_size, bin_count, capacity, wrap
        )


@njit(parallel=True, fastmath=True)
def _count_grid_neighbours_numba(positions, bin_load, bin_slots, bin_size, bin_count,
                                 capacity, wrap, box_size, radius):
    """Count neighbours for each particle through the 3x3 stencil."""
    N = positions.shape[0]
    counts = np.zeros(N, dtype=np.int32)
    r2_max = radius * radius

    for i in prange(N):
        pos_i_x = positions[i, 0]
        pos_i_y = positions[i, 1]
        bx = bin_coordinate(pos_i_x, bin_size, bin_count, wrap)
        by = bin_coordinate(pos_i_y, bin_size, bin_count, wrap)

        count = 0
        for oy in range(-1, 2):
            ny = by + oy
            if wrap:
                ny = ny % bin_count
            elif ny < 0 or ny >= bin_count:
                continue
            for ox in range(-1, 2):
                nx = bx + ox
                if wrap:
                    nx = nx % bin_count
                elif nx < 0 or nx >= bin_count:
                    continue
                b = nx + ny * bin_count
                occupancy = min(bin_load[b], capacity)
                for s in range(occupancy):
                    j = bin_slots[b, s]
                    if j == i:
                        continue
                    dx = minimum_image(pos_i_x - positions[j, 0], box_size, wrap)
                    dy = minimum_image(pos_i_y - positions[j, 1], box_size, wrap)
                    if dx * dx + dy * dy < r2_max:
                        count += 1
        counts[i] = count
    return counts


@njit(parallel=True, fastmath=True)
def _fill_grid_neighbours_numba(positions, bin_load, bin_slots, bin_size, bin_count,
                                capacity, wrap, box_size, radius, offsets, indices):
    """Fill neighbour indices array through the 3x3 stencil."""
    N = positions.shape[0]
    r2_max = radius * radius

    for i in prange(N):
        pos_i_x = positions[i, 0]
        pos_i_y = positions[i, 1]
        bx = bin_coordinate(pos_i_x, bin_size, bin_count, wrap)
        by = bin_coordinate(pos_i_y, bin_size, bin_count, wrap)

        offset = offsets[i]
        current = 0
        for oy in range(-1, 2):
            ny = by + oy
            if wrap:
                ny = ny % bin_count
            elif ny < 0 or ny >= bin_count:
                continue
            for ox in range(-1, 2):
                nx = bx + ox
                if wrap:
                    nx = nx % bin_count
                elif nx < 0 or nx >= bin_count:
                    continue
                b = nx + ny * bin_count
                occupancy = min(bin_load[b], capacity)
                for s in range(occupancy):
                    j = bin_slots[b, s]
                    if j == i:
                        continue
                    dx = minimum_image(pos_i_x - positions[j, 0], box_size, wrap)
                    dy = minimum_image(pos_i_y - positions[j, 1], box_size, wrap)
                    if dx * dx + dy * dy < r2_max:
                        indices[offset + current] = j
                        current += 1


@njit(parallel=True, fastmath=True)
def _count_bruteforce_numba(positions, radius, box_size, wrap):
    """Count neighbours for each particle against all others."""
    N = positions.shape[0]
    counts = np.zeros(N, dtype=np.int32)
    r2_max = radius * radius

    for i in prange(N):
        count = 0
        for j in range(N):
            if i == j:
                continue
            dx = minimum_image(positions[i, 0] - positions[j, 0], box_size, wrap)
            dy = minimum_image(positions[i, 1] - positions[j, 1], box_size, wrap)
            if dx * dx + dy * dy < r2_max:
                count += 1
        counts[i] = count
    return counts


@njit(parallel=True, fastmath=True)
def _fill_bruteforce_numba(positions, radius, box_size, wrap, offsets, indices):
    """Fill neighbour indices array against all others."""
    N = positions.shape[0]
    r2_max = radius * radius

    for i in prange(N):
        offset = offsets[i]
        current = 0
        for j in range(N):
            if i == j:
                continue
            dx = minimum_image(positions[i, 0] - positions[j, 0], box_size, wrap)
            dy = minimum_image(positions[i, 1] - positions[j, 1], box_size, wrap)
            if dx * dx + dy * dy < r2_max:
                indices[offset + current] = j
                current += 1


def _csr_to_lists(offsets: np.ndarray, indices: np.ndarray) -> List[npt.NDArray[np.int32]]:
    return [indices[offsets[i]:offsets[i + 1]] for i in range(len(offsets) - 1)]


def _offsets_from_counts(counts: np.ndarray) -> np.ndarray:
    offsets = np.zeros(len(counts) + 1, dtype=np.int64)
    offsets[1:] = np.cumsum(counts)
    return offsets


class SpatialGrid(SpatialIndex):
    """
    Fixed-capacity uniform bin grid rebuilt every iteration.

    Attributes
    ----------
    bin_count : int
        Bins per axis.
    bin_size : float
        Bin edge length (nm).
    capacity : int
        Index slots per bin.
    boundary : str
        "clamp" or "wrap".
    bin_load : ndarray of int32, shape (bin_count**2,)
        Raw occupancy counters; may exceed ``capacity``.
    bin_slots : ndarray of int32, shape (bin_count**2, capacity)
        Particle indices per bin; only the first min(load, capacity) are valid.
    """

    def __init__(
        self,
        bin_count: int,
        bin_size: float,
        capacity: int,
        boundary: str = "clamp",
    ):
        if bin_count < 1:
            raise ValueError(f"bin_count must be >= 1, got {bin_count}")
        if bin_size <= 0.0:
            raise ValueError(f"bin_size must be positive, got {bin_size}")
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        if boundary not in VALID_BOUNDARIES:
            raise ValueError(f"boundary must be one of {VALID_BOUNDARIES}, got '{boundary}'")
        if boundary == "wrap" and bin_count < 3:
            raise ValueError(
                f"wrap boundary needs at least 3 bins per axis, got {bin_count}"
            )

        self.bin_count = int(bin_count)
        self.bin_size = float(bin_size)
        self.capacity = int(capacity)
        self.boundary = boundary

        n_bins = self.bin_count * self.bin_count
        self.bin_load = np.zeros(n_bins, dtype=np.int32)
        self.bin_slots = np.full((n_bins, self.capacity), -1, dtype=np.int32)

    @classmethod
    def from_config(cls, config) -> "SpatialGrid":
        return cls(
            bin_count=config.bin_count,
            bin_size=config.bin_size,
            capacity=config.bin_capacity,
            boundary=config.boundary,
        )

    @property
    def wrap(self) -> bool:
        return self.boundary == "wrap"

    @property
    def box_size(self) -> float:
        return self.bin_size * self.bin_count

    @property
    def n_bins(self) -> int:
        return self.bin_load.shape[0]

    @property
    def max_occupancy(self) -> int:
        """Largest raw (uncapped) bin counter from the last rebuild."""
        return int(self.bin_load.max())

    @property
    def overflow_count(self) -> int:
        """Number of particles dropped from neighbour queries in the last rebuild."""
        return int(np.maximum(self.bin_load - self.capacity, 0).sum())

    def bin_of(self, position: NDArrayFloat) -> BinCoords:
        """Bin coordinates of a position under the boundary policy."""
        wrap = self.wrap
        return (
            bin_coordinate(float(position[0]), self.bin_size, self.bin_count, wrap),
            bin_coordinate(float(position[1]), self.bin_size, self.bin_count, wrap),
        )

    def bin_index(self, bin_coords: BinCoords) -> int:
        bx, by = bin_coords
        if not (0 <= bx < self.bin_count and 0 <= by < self.bin_count):
            raise IndexError(f"bin {bin_coords} outside {self.bin_count}x{self.bin_count} grid")
        return bx + by * self.bin_count

    def clear(self) -> None:
        _clear_kernel(self.bin_load)

    def insert(self, particle_index: int, position: NDArrayFloat) -> int:
        return int(_insert_one(
            int(particle_index), float(position[0]), float(position[1]),
            self.bin_load, self.bin_slots,
            self.bin_size, self.bin_count, self.capacity, self.wrap
        ))

    def insert_all(self, positions: NDArrayFloat) -> None:
        _insert_kernel(
            positions, self.bin_load, self.bin_slots,
            self.bin_size, self.bin_count, self.capacity, self.wrap
        )

    def rebuild(self, positions: NDArrayFloat) -> None:
        self.clear()
        self.insert_all(positions)

    def neighbours_of(self, bin_coords: BinCoords) -> Iterator[BinCoords]:
        bx, by = bin_coords
        for oy in (-1, 0, 1):
            ny = by + oy
            if self.wrap:
                ny %= self.bin_count
            elif ny < 0 or ny >= self.bin_count:
                continue
            for ox in (-1, 0, 1):
                nx = bx + ox
                if self.wrap:
                    nx %= self.bin_count
                elif nx < 0 or nx >= self.bin_count:
                    continue
                yield (nx, ny)

    def occupancy(self, bin_coords: BinCoords) -> int:
        """Raw counter of a bin (may exceed capacity)."""
        return int(self.bin_load[self.bin_index(bin_coords)])

    def particles_in(self, bin_coords: BinCoords) -> npt.NDArray[np.int32]:
        """Indices stored in a bin (at most ``capacity``)."""
        b = self.bin_index(bin_coords)
        n = min(int(self.bin_load[b]), self.capacity)
        return self.bin_slots[b, :n].copy()


def find_neighbours_grid(
    positions: NDArrayFloat,
    grid: SpatialGrid,
    radius: float,
) -> List[npt.NDArray[np.int32]]:
    """
    Find neighbours within ``radius`` through a rebuilt grid.

    The grid must have been rebuilt from the same ``positions``. Particles
    dropped by bin overflow are missing from the results.

    Parameters
    ----------
    positions : NDArrayFloat, shape (N, 2)
        Particle positions.
    grid : SpatialGrid
        Grid rebuilt from ``positions``.
    radius : float
        Interaction radius; must not exceed ``grid.bin_size``.

    Returns
    -------
    neighbour_lists : List[NDArray[int32]]
        neighbour_lists[i] holds the indices j != i with |r_i - r_j| < radius.
    """
    if radius > grid.bin_size:
        raise ValueError(
            f"radius {radius} exceeds bin_size {grid.bin_size}; 3x3 stencil would miss neighbours"
        )

    counts = _count_grid_neighbours_numba(
        positions, grid.bin_load, grid.bin_slots, grid.bin_size, grid.bin_count,
        grid.capacity, grid.wrap, grid.box_size, radius
    )
    offsets = _offsets_from_counts(counts)
    indices = np.empty(offsets[-1], dtype=np.int32)
    _fill_grid_neighbours_numba(
        positions, grid.bin_load, grid.bin_slots, grid.bin_size, grid.bin_count,
        grid.capacity, grid.wrap, grid.box_size, radius, offsets, indices
    )
    return _csr_to_lists(offsets, indices)


def find_neighbours_bruteforce(
    positions: NDArrayFloat,
    radius: float,
    box_size: float = 0.0,
    wrap: bool = False,
) -> List[npt.NDArray[np.int32]]:
    """
    Find neighbours within ``radius`` using brute-force pairwise search.

    This is an O(N^2) reference for validating the grid on small systems.
    When ``wrap`` is True separations use the minimum image in a box of
    edge ``box_size``.
    """
    if wrap and box_size <= 0.0:
        raise ValueError("wrap=True requires a positive box_size")

    counts = _count_bruteforce_numba(positions, radius, box_size, wrap)
    offsets = _offsets_from_counts(counts)
    indices = np.empty(offsets[-1], dtype=np.int32)
    _fill_bruteforce_numba(positions, radius, box_size, wrap, offsets, indices)
    return _csr_to_lists(offsets, indices)
