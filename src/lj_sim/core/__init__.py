"""
Core module: interfaces, units, reduction, statistics and the simulation orchestrator.
"""

from lj_sim.core.interfaces import (
    SpatialIndex,
    TimeIntegrator,
    Reducer,
    ICGenerator,
)
from lj_sim.core.reduction import (
    ReductionEngine,
    tree_reduce,
    next_power_of_two,
)
from lj_sim.core.energy_diagnostics import EnergySnapshot, StatsHistory
from lj_sim.core.simulation import (
    Simulation,
    SimulationConfig,
    SimulationState,
    SpeciesParams,
)

__all__ = [
    "SpatialIndex",
    "TimeIntegrator",
    "Reducer",
    "ICGenerator",
    "ReductionEngine",
    "tree_reduce",
    "next_power_of_two",
    "EnergySnapshot",
    "StatsHistory",
    "Simulation",
    "SimulationConfig",
    "SimulationState",
    "SpeciesParams",
]
