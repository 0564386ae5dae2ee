"""
Abstract base classes defining interfaces for pluggable LJ-SIM stages.

Each stage of the per-iteration pipeline (grid rebuild, drift/kick integration,
energy reduction) and the initial-conditions generator are specified here so
alternative implementations (e.g. a different boundary policy or a GPU
backend) can be swapped in without touching the orchestrator.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, Tuple
import numpy as np
import numpy.typing as npt


# Type aliases for clarity
NDArrayFloat = npt.NDArray[np.floating]
NDArrayInt = npt.NDArray[np.int32]
BinCoords = Tuple[int, int]


class SpatialIndex(ABC):
    """
    Abstract base class for per-iteration spatial indices.

    Implementations: SpatialGrid (uniform bins with fixed per-bin capacity).
    """

    @abstractmethod
    def clear(self) -> None:
        """Reset all occupancy counters to zero."""
        pass

    @abstractmethod
    def insert(self, particle_index: int, position: NDArrayFloat) -> int:
        """
        Place one particle into its bin.

        Parameters
        ----------
        particle_index : int
            Index of the particle in the current buffer.
        position : NDArrayFloat, shape (2,)
            Particle position.

        Returns
        -------
        slot : int
            Claimed slot inside the bin, or -1 if the bin was already full.
        """
        pass

    @abstractmethod
    def rebuild(self, positions: NDArrayFloat) -> None:
        """Clear the index and insert every particle from scratch."""
        pass

    @abstractmethod
    def neighbours_of(self, bin_coords: BinCoords) -> Iterator[BinCoords]:
        """Iterate over the bins that may hold neighbours of a bin (itself included)."""
        pass


class TimeIntegrator(ABC):
    """
    Abstract base class for time integrators.

    Implementations: LeapfrogIntegrator (drift + kick velocity Verlet).
    """

    @abstractmethod
    def prime(self, store: Any, grid: SpatialIndex, reducer: Any, config: Any) -> None:
        """Compute initial accelerations so the first step starts consistent."""
        pass

    @abstractmethod
    def step(
        self,
        store: Any,
        grid: SpatialIndex,
        reducer: Any,
        config: Any,
    ) -> Dict[str, float]:
        """
        Advance the particle store by one iteration.

        Parameters
        ----------
        store : ParticleStore
            Double-buffered particle state; the destination becomes current.
        grid : SpatialIndex
            Spatial index rebuilt inside the step.
        reducer : ReductionEngine
            Receives per-particle energy contributions.
        config : SimulationConfig
            Configuration frozen for the duration of the step.

        Returns
        -------
        timings : Dict[str, float]
            Wall-clock seconds spent in each stage.
        """
        pass


class Reducer(ABC):
    """
    Abstract base class for domain-wide reductions of per-particle quantities.

    Implementations: ReductionEngine (ping-pong tree reduction).
    """

    @abstractmethod
    def reduce(self) -> NDArrayFloat:
        """Reduce the input buffer and return the converted final values."""
        pass


class ICGenerator(ABC):
    """
    Abstract base class for initial conditions generators.

    Implementations: LatticeGenerator.
    """

    @abstractmethod
    def generate(self, n_particles: int, config: Any) -> Any:
        """
        Generate the initial particle buffer.

        Parameters
        ----------
        n_particles : int
            Number of particles to generate.
        config : SimulationConfig
            Box geometry, species table and initial temperature.

        Returns
        -------
        buffer : ParticleBuffer
            Fully populated particle state.
        """
        pass
