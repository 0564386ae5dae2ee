"""
Unit system and physical constants for LJ-SIM.

Code units:
    time        ps
    distance    nm
    mass        amu (Dalton)
    charge      e
    temperature K
    energy      mU = amu * nm^2 / ps^2

Forces are therefore in mU / nm = amu * nm / ps^2 (1.660539040 pN).
Energies reported to the outside world are converted to eV.
"""

import numpy as np

# 1 eV expressed in code energy units, and the inverse
EV_OVER_MU = 96.48533216
MU_OVER_EV = 1.0 / EV_OVER_MU

BOLTZMANN_CONSTANT_J = 1.38064852e-23  # J / K
BOLTZMANN_CONSTANT_EV = 8.617333262145e-5  # eV / K
BOLTZMANN_CONSTANT = BOLTZMANN_CONSTANT_EV * EV_OVER_MU  # mU / K

AMU_KG = 1.66053906660e-27

# Planar simulation: equipartition over two translational degrees of freedom
DEGREES_OF_FREEDOM = 2


def thermal_rms_speed(temperature: float, mass: float) -> float:
    """
    RMS speed of a 2-D Maxwell-Boltzmann gas in code units (nm/ps).

    <v^2> = 2 k_B T / m for two degrees of freedom.
    """
    if temperature <= 0.0:
        return 0.0
    return float(np.sqrt(DEGREES_OF_FREEDOM * BOLTZMANN_CONSTANT * temperature / mass))


def temperature_from_kinetic_energy(
    kinetic_energy: float,
    n_particles: int,
    unit_conversion: float = EV_OVER_MU,
) -> float:
    """
    Equipartition temperature (K) from a reported total kinetic energy.

    ``unit_conversion`` is the number of code energy units per reported unit
    (``SimulationConfig.energy_unit_conversion``; eV by default).
    """
    if n_particles <= 0:
        return 0.0
    ke_per_particle = kinetic_energy * unit_conversion / n_particles
    return float(ke_per_particle * 2.0 / DEGREES_OF_FREEDOM / BOLTZMANN_CONSTANT)
