"""
Initial conditions generators.
"""

from lj_sim.ICs.lattice import (
    LatticeGenerator,
    initialize,
    maxwell_boltzmann_sampler,
    hsb_to_rgb,
)

__all__ = [
    'LatticeGenerator',
    'initialize',
    'maxwell_boltzmann_sampler',
    'hsb_to_rgb',
]
