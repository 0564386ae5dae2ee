"""
Molecular dynamics kernels: particle storage, spatial grid and LJ forces.
"""

from lj_sim.md.particles import ParticleBuffer, ParticleStore
from lj_sim.md.grid import (
    SpatialGrid,
    find_neighbours_grid,
    find_neighbours_bruteforce,
)
from lj_sim.md.forces import (
    lennard_jones_pair,
    drift_kernel,
    kick_kernel,
    species_arrays,
)

__all__ = [
    'ParticleBuffer',
    'ParticleStore',
    'SpatialGrid',
    'find_neighbours_grid',
    'find_neighbours_bruteforce',
    'lennard_jones_pair',
    'drift_kernel',
    'kick_kernel',
    'species_arrays',
]
