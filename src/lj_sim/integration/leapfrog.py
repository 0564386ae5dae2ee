"""
Leapfrog (velocity-Verlet) time integrator for LJ-SIM.

One iteration is four barrier-separated stages:
    1. drift   x^(n+1) = x^n + v^n dt + 1/2 a^n dt^2         (in place, source buffer)
    2. clear   reset every bin counter
    3. insert  place every particle into its bin from the drifted positions
    4. kick    a^(n+1) = F(x^(n+1)) / m
               v^(n+1) = v^n + 1/2 (a^n + a^(n+1)) dt        (source -> destination)

after which the destination buffer becomes current. Rebuilding the grid after
the drift means the kick always searches bins computed from the positions it
evaluates forces at.

The scheme is second order and time reversible; without friction and force
capping, total energy is conserved up to O(dt^2) fluctuations.

References
----------
- Verlet, L. (1967), Phys. Rev., 159, 98
- Allen, M. P. & Tildesley, D. J. (2017), "Computer Simulation of Liquids", 2nd ed., Ch. 3
"""

import time
from typing import Any, Dict

from lj_sim.core.interfaces import TimeIntegrator
from lj_sim.md.forces import drift_kernel, kick_kernel, species_arrays


class LeapfrogIntegrator(TimeIntegrator):
    """
    Drift/kick velocity-Verlet integrator over a double-buffered store.

    Attributes
    ----------
    primed : bool
        Whether initial accelerations have been computed.
    """

    def __init__(self):
        self.primed = False
        self._species_key = None
        self._species = None

    def _species_table(self, config):
        # Species are fixed for a run; rebuild the arrays only if the table changes
        key = tuple((s.mass, s.sigma, s.epsilon) for s in config.species)
        if key != self._species_key:
            self._species_key = key
            self._species = species_arrays(config.species)
        return self._species

    def kick(self, store: Any, grid: Any, reducer: Any, config: Any, dt: float) -> None:
        """
        Run the kick pass: forces from ``store.source`` into ``store.destination``.

        Per-particle (KE, PE) in code units are written into ``reducer.input``.
        Does not swap the store.
        """
        masses, sigmas, epsilons = self._species_table(config)
        src = store.source
        dst = store.destination
        kick_kernel(
            src.positions, src.velocities, src.last_accelerations, src.colors, src.species,
            dst.positions, dst.velocities, dst.last_accelerations, dst.colors, dst.species,
            reducer.input, grid.bin_load, grid.bin_slots,
            grid.bin_size, grid.bin_count, grid.capacity, grid.wrap, grid.box_size,
            masses, sigmas, epsilons,
            float(dt), float(config.neighbourhood_size),
            float(config.max_force), float(config.friction),
        )

    def prime(self, store: Any, grid: Any, reducer: Any, config: Any) -> None:
        """
        Compute accelerations for the initial positions.

        Runs a zero-length kick so the first drift uses real forces; velocities
        are untouched (friction acts through dt). Also fills ``reducer.input``
        so the initial energies can be reduced.
        """
        grid.rebuild(store.source.positions)
        self.kick(store, grid, reducer, config, 0.0)
        store.swap()
        self.primed = True

    def step(
        self,
        store: Any,
        grid: Any,
        reducer: Any,
        config: Any,
    ) -> Dict[str, float]:
        """
        Advance by one iteration of ``config.dt``.

        Returns
        -------
        timings : Dict[str, float]
            Seconds spent in 'drift', 'clear', 'insert' and 'kick'.
        """
        if not self.primed:
            self.prime(store, grid, reducer, config)

        dt = float(config.dt)
        src = store.source
        timings = {}

        t0 = time.perf_counter()
        drift_kernel(
            src.positions, src.velocities, src.last_accelerations,
            dt, grid.box_size, grid.wrap
        )
        t1 = time.perf_counter()
        grid.clear()
        t2 = time.perf_counter()
        grid.insert_all(src.positions)
        t3 = time.perf_counter()
        self.kick(store, grid, reducer, config, dt)
        store.swap()
        t4 = time.perf_counter()

        timings['drift'] = t1 - t0
        timings['clear'] = t2 - t1
        timings['insert'] = t3 - t2
        timings['kick'] = t4 - t3
        return timings
