"""
LJ-SIM: 2-D Lennard-Jones molecular dynamics on a uniform spatial grid.

A numba-accelerated particle engine with a double-buffered particle store,
per-iteration spatial binning, a leapfrog drift/kick integrator and a
parallel tree reduction feeding an asynchronous energy statistics history.
"""

__version__ = "0.1.0"
__author__ = "LJ-SIM Dev Team"

# Core imports for convenience
from lj_sim.core.interfaces import (
    SpatialIndex,
    TimeIntegrator,
    Reducer,
    ICGenerator,
)
from lj_sim.core.simulation import (
    Simulation,
    SimulationConfig,
    SpeciesParams,
)

__all__ = [
    "SpatialIndex",
    "TimeIntegrator",
    "Reducer",
    "ICGenerator",
    "Simulation",
    "SimulationConfig",
    "SpeciesParams",
]
