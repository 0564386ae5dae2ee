"""
Square-lattice initial conditions with Maxwell-Boltzmann velocities.

Particles are placed at the centres of a ``side x side`` grid of cells that
exactly tiles the box, where ``side = ceil(sqrt(N))``. The last row is only
partially filled when N is not a perfect square. Species are assigned
cyclically (particle k gets species ``k mod n_species``) so every species is
spread uniformly over the box.

Velocities are drawn from a 2-D Maxwell-Boltzmann distribution at the
configured temperature: the speed is ``|N(0, 1)| * v_rms`` with
``v_rms = sqrt(2 k_B T / m)`` and the direction is uniform on the circle.
"""

import colorsys
import numpy as np
from typing import Optional, Tuple

from lj_sim.core.interfaces import ICGenerator, NDArrayFloat
from lj_sim.core.units import thermal_rms_speed
from lj_sim.md.particles import ParticleBuffer, ParticleStore

# Number of hues the colour wheel is divided into
MAX_TYPES = 4


def hsb_to_rgb(hue: float, saturation: float = 1.0, brightness: float = 1.0) -> Tuple[float, float, float]:
    """Convert hue/saturation/brightness in [0, 1] to an RGB triple in [0, 1]."""
    return colorsys.hsv_to_rgb(hue % 1.0, saturation, brightness)


def species_color(species_index: int, n_species: int) -> Tuple[float, float, float]:
    """Display colour for a species: evenly spaced hues, at least MAX_TYPES apart."""
    return hsb_to_rgb(species_index / max(n_species, MAX_TYPES))


def maxwell_boltzmann_sampler(
    rng: np.random.Generator,
    temperature: float,
    mass: float,
) -> NDArrayFloat:
    """
    Draw one 2-D velocity (nm/ps) from a Maxwell-Boltzmann distribution.

    Returns
    -------
    velocity : NDArrayFloat, shape (2,)
    """
    v_rms = thermal_rms_speed(temperature, mass)
    speed = abs(rng.standard_normal()) * v_rms
    angle = rng.uniform(0.0, 2.0 * np.pi)
    return np.array([speed * np.cos(angle), speed * np.sin(angle)])


class LatticeGenerator(ICGenerator):
    """
    Generate lattice initial conditions.

    Attributes
    ----------
    random_seed : Optional[int]
        Seed for the velocity sampler; None gives non-reproducible velocities.
    """

    def __init__(self, random_seed: Optional[int] = 42):
        self.random_seed = random_seed
        self.rng = np.random.default_rng(random_seed)

    @staticmethod
    def lattice_positions(n_particles: int, box_size: float) -> NDArrayFloat:
        """Cell-centre lattice sites filling the box row by row."""
        side = int(np.ceil(np.sqrt(n_particles)))
        spacing = box_size / side
        k = np.arange(n_particles)
        positions = np.empty((n_particles, 2), dtype=np.float64)
        positions[:, 0] = ((k % side) + 0.5) * spacing
        positions[:, 1] = ((k // side) + 0.5) * spacing
        return positions

    def generate(self, n_particles: int, config) -> ParticleBuffer:
        """
        Build the initial particle buffer.

        Parameters
        ----------
        n_particles : int
            Number of particles; must be positive.
        config : SimulationConfig
            Supplies box_size, species, init_temperature and precision.

        Returns
        -------
        buffer : ParticleBuffer
        """
        if n_particles <= 0:
            raise ValueError(f"n_particles must be positive, got {n_particles}")
        if config.box_size <= 0:
            raise ValueError(f"box_size must be positive, got {config.box_size}")

        species_table = config.species
        n_species = len(species_table)

        positions = self.lattice_positions(n_particles, config.box_size)
        species = np.arange(n_particles) % n_species

        velocities = np.zeros((n_particles, 2), dtype=np.float64)
        for k in range(n_particles):
            mass = species_table[species[k]].mass
            velocities[k] = maxwell_boltzmann_sampler(self.rng, config.init_temperature, mass)

        palette = np.array([species_color(s, n_species) for s in range(n_species)])
        colors = palette[species]

        return ParticleBuffer(
            n_particles,
            positions=positions,
            velocities=velocities,
            colors=colors,
            species=species.astype(np.float64),
            dtype=config.precision,
        )


def initialize(count: int, config, random_seed: Optional[int] = None) -> ParticleStore:
    """
    Create the double-buffered particle store for a run.

    Parameters
    ----------
    count : int
        Number of particles.
    config : SimulationConfig
        Run configuration.
    random_seed : Optional[int]
        Overrides ``config.random_seed`` when given.

    Returns
    -------
    store : ParticleStore
        Both slots hold the lattice state; parity is 0.
    """
    seed = config.random_seed if random_seed is None else random_seed
    buffer = LatticeGenerator(random_seed=seed).generate(count, config)
    return ParticleStore(buffer)
