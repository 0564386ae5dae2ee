"""
Double-buffered particle state for LJ-SIM.

This module implements ParticleBuffer (struct-of-arrays storage for one copy
of the particle state) and ParticleStore, which owns two buffers and a single
parity bit selecting the authoritative one.

The integrator reads the source buffer and writes the destination buffer;
``swap()`` then flips the parity so the freshly written buffer becomes current.
Buffers are allocated once and never reallocated, so references handed out to
collaborators (renderer, in-flight readbacks) keep pointing at the same slot.
"""

from typing import Optional
import numpy as np
import numpy.typing as npt

# Type alias for clarity
NDArrayFloat = npt.NDArray[np.floating]


class ParticleBuffer:
    """
    Container for one copy of the particle state.

    Attributes
    ----------
    n_particles : int
        Number of particles in the buffer.
    positions : NDArrayFloat, shape (N, 2)
        Positions in nm.
    velocities : NDArrayFloat, shape (N, 2)
        Velocities in nm/ps.
    last_accelerations : NDArrayFloat, shape (N, 2)
        Acceleration from the previous kick, nm/ps^2.
    colors : NDArrayFloat, shape (N, 3)
        RGB colour for rendering; derived from species, not physical.
    species : NDArrayFloat, shape (N,)
        Species index stored as an integer-valued float.
    """

    def __init__(
        self,
        n_particles: int,
        positions: Optional[NDArrayFloat] = None,
        velocities: Optional[NDArrayFloat] = None,
        last_accelerations: Optional[NDArrayFloat] = None,
        colors: Optional[NDArrayFloat] = None,
        species: Optional[NDArrayFloat] = None,
        dtype=np.float32,
    ):
        if n_particles <= 0:
            raise ValueError(f"n_particles must be positive, got {n_particles}")

        self.n_particles = int(n_particles)
        self.dtype = np.dtype(dtype)

        self.positions = self._field(positions, (n_particles, 2))
        self.velocities = self._field(velocities, (n_particles, 2))
        self.last_accelerations = self._field(last_accelerations, (n_particles, 2))
        self.colors = self._field(colors, (n_particles, 3))
        self.species = self._field(species, (n_particles,))

        self._validate_shapes()

    def _field(self, values: Optional[NDArrayFloat], shape) -> NDArrayFloat:
        if values is None:
            return np.zeros(shape, dtype=self.dtype)
        return np.ascontiguousarray(values, dtype=self.dtype).copy()

    def _validate_shapes(self) -> None:
        """Validate that all arrays have consistent shapes."""
        n = self.n_particles
        assert self.positions.shape == (n, 2), f"positions shape mismatch: {self.positions.shape}"
        assert self.velocities.shape == (n, 2), f"velocities shape mismatch: {self.velocities.shape}"
        assert self.last_accelerations.shape == (n, 2), \
            f"last_accelerations shape mismatch: {self.last_accelerations.shape}"
        assert self.colors.shape == (n, 3), f"colors shape mismatch: {self.colors.shape}"
        assert self.species.shape == (n,), f"species shape mismatch: {self.species.shape}"

    def copy_from(self, other: "ParticleBuffer") -> None:
        """Overwrite this buffer in place with the contents of another."""
        if other.n_particles != self.n_particles:
            raise ValueError(
                f"Cannot copy {other.n_particles} particles into a buffer of {self.n_particles}"
            )
        self.positions[...] = other.positions
        self.velocities[...] = other.velocities
        self.last_accelerations[...] = other.last_accelerations
        self.colors[...] = other.colors
        self.species[...] = other.species

    def copy(self) -> "ParticleBuffer":
        """Return an independent copy."""
        return ParticleBuffer(
            self.n_particles,
            positions=self.positions,
            velocities=self.velocities,
            last_accelerations=self.last_accelerations,
            colors=self.colors,
            species=self.species,
            dtype=self.dtype,
        )

    def read_only(self) -> "ParticleBuffer":
        """
        Return a view of this buffer whose arrays cannot be written.

        The view shares memory with the buffer, so it reflects later writes
        into the same slot.
        """
        view = ParticleBuffer.__new__(ParticleBuffer)
        view.n_particles = self.n_particles
        view.dtype = self.dtype
        for name in ("positions", "velocities", "last_accelerations", "colors", "species"):
            arr = getattr(self, name).view()
            arr.flags.writeable = False
            setattr(view, name, arr)
        return view

    def kinetic_energy(self, masses: NDArrayFloat) -> float:
        """Total kinetic energy in code units given per-species masses."""
        m = np.asarray(masses)[self.species.astype(np.int64)]
        v2 = np.sum(self.velocities.astype(np.float64) ** 2, axis=1)
        return float(0.5 * np.sum(m * v2))


class ParticleStore:
    """
    Two particle buffers plus a parity bit.

    ``buffers[parity]`` is current (source), ``buffers[1 - parity]`` is the
    destination being written by the kick pass.

    Attributes
    ----------
    buffers : tuple of ParticleBuffer
        The two named slots; never replaced after construction.
    parity : int
        Index of the current slot (0 or 1).
    swap_count : int
        Number of swaps since construction or the last reset.
    """

    def __init__(self, initial: ParticleBuffer):
        self.buffers = (initial.copy(), initial.copy())
        self.parity = 0
        self.swap_count = 0

    @property
    def n_particles(self) -> int:
        return self.buffers[0].n_particles

    @property
    def dtype(self):
        return self.buffers[0].dtype

    @property
    def source(self) -> ParticleBuffer:
        """Writable current buffer (drift updates it in place)."""
        return self.buffers[self.parity]

    @property
    def destination(self) -> ParticleBuffer:
        """Writable buffer that the kick pass fills."""
        return self.buffers[1 - self.parity]

    def swap(self) -> None:
        """Make the destination buffer authoritative."""
        self.parity = 1 - self.parity
        self.swap_count += 1

    def current(self) -> ParticleBuffer:
        """Read-only view of the authoritative buffer."""
        return self.buffers[self.parity].read_only()

    def reset_from(self, initial: ParticleBuffer) -> None:
        """Load an initial state into both slots and clear parity."""
        for buffer in self.buffers:
            buffer.copy_from(initial)
        self.parity = 0
        self.swap_count = 0
