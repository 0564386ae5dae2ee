"""
Simulation orchestrator for LJ-SIM.

This module implements the configuration model and the Simulation class that
owns the particle store, spatial grid, integrator and reduction engine and
drives them frame by frame.

Design:
- A frame is ``iterations_per_frame`` leapfrog iterations followed by one
  energy reduction.
- Every ``readback_interval`` frames the reduced energies are copied and
  handed to a single background worker that appends them to the history, so
  the simulation loop never waits for statistics.
- Parameter changes (``perturb``) are validated when requested and applied at
  the next iteration boundary.
"""

from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import threading
import time as time_module
import warnings

import numpy as np
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict

from lj_sim.core.energy_diagnostics import EnergySnapshot, StatsHistory
from lj_sim.core.interfaces import TimeIntegrator
from lj_sim.core.reduction import ReductionEngine
from lj_sim.core.units import EV_OVER_MU
from lj_sim.ICs.lattice import initialize
from lj_sim.integration.leapfrog import LeapfrogIntegrator
from lj_sim.io.diagnostics import StatsExportError
from lj_sim.md.grid import SpatialGrid
from lj_sim.md.particles import ParticleBuffer


# Relative tolerance for an explicit box_size against bin_size * bin_count
BOX_SIZE_RTOL = 1e-9

# Parameters that may change while a run is in progress
PERTURBABLE_FIELDS = frozenset({
    'dt',
    'friction',
    'max_force',
    'neighbourhood_size',
    'energy_unit_conversion',
    'iterations_per_frame',
    'readback_interval',
    'verbose',
})

STAGES = ('drift', 'clear', 'insert', 'kick', 'reduce')


class SpeciesParams(BaseModel):
    """
    Physical parameters of one particle species.

    Attributes
    ----------
    name : str
        Label used in logs and exports.
    size : float
        Display radius (nm).
    mass : float
        Mass (amu).
    charge : int
        Charge (e); carried for completeness, not used by the force model.
    sigma : float
        LJ length parameter (nm).
    epsilon : float
        LJ well depth in code energy units (amu nm^2 / ps^2).
    """

    name: str = Field(default="argon", description="Species label")
    size: float = Field(default=0.3405, gt=0.0, description="Display radius (nm)")
    mass: float = Field(default=39.948, gt=0.0, description="Mass (amu)")
    charge: int = Field(default=0, description="Charge (e)")
    sigma: float = Field(default=0.3405, gt=0.0, description="LJ sigma (nm)")
    epsilon: float = Field(default=0.996, ge=0.0, description="LJ epsilon (amu nm^2/ps^2)")

    model_config = ConfigDict(extra="forbid")


class SimulationConfig(BaseModel):
    """
    Configuration for an LJ-SIM run with Pydantic validation.

    The box is tiled exactly by the grid: ``box_size == bin_size * bin_count``.
    ``box_size`` may be omitted (it is derived) or given explicitly, in which
    case it must agree with the grid and is snapped to the exact product.

    Attributes
    ----------
    n_particles : int
        Population size, fixed for the run.
    dt : float
        Time step (ps).
    iterations_per_frame : int
        Leapfrog iterations between two energy reductions.
    neighbourhood_size : float
        LJ cutoff radius (nm); must not exceed bin_size.
    max_force : float
        Cap on the scalar pair force (amu nm / ps^2).
    friction : float
        Linear damping coefficient (amu / ps).
    bin_size, bin_count, bin_capacity
        Spatial grid geometry and per-bin slot count.
    box_size : float
        Edge of the square domain (nm).
    boundary : str
        "clamp" (reflecting walls) or "wrap" (periodic).
    species : List[SpeciesParams]
        Species table; particles are assigned cyclically.
    init_temperature : float
        Temperature (K) of the initial Maxwell-Boltzmann velocities.
    readback_interval : int
        Frames between asynchronous statistics readbacks.
    energy_unit_conversion : float
        Divisor from code energy units to reported units (eV by default).
    precision : str
        "float32" or "float64" particle storage.
    """

    # Population and time stepping
    n_particles: int = Field(default=1024, gt=0, description="Number of particles")
    dt: float = Field(default=1.0e-3, gt=0.0, description="Timestep (ps)")
    iterations_per_frame: int = Field(default=31, ge=1, description="Iterations per frame")

    # Physics
    neighbourhood_size: float = Field(default=0.85, gt=0.0, description="Interaction cutoff (nm)")
    max_force: float = Field(default=1.0e4, gt=0.0, description="Pair force cap (amu nm/ps^2)")
    friction: float = Field(default=0.0, ge=0.0, description="Linear damping (amu/ps)")
    species: List[SpeciesParams] = Field(
        default_factory=lambda: [SpeciesParams()],
        description="Species table"
    )

    # Domain
    bin_size: float = Field(default=0.85, gt=0.0, description="Bin edge (nm)")
    bin_count: int = Field(default=32, ge=1, description="Bins per axis")
    bin_capacity: int = Field(default=100, ge=1, description="Index slots per bin")
    box_size: Optional[float] = Field(default=None, gt=0.0, description="Box edge (nm)")
    boundary: str = Field(default="clamp", description="Boundary policy: 'clamp' or 'wrap'")

    # Initial conditions
    init_temperature: float = Field(default=10.0, ge=0.0, description="Initial temperature (K)")
    random_seed: Optional[int] = Field(default=42, description="Random seed for reproducibility")

    # Statistics
    readback_interval: int = Field(default=1, ge=1, description="Frames between readbacks")
    energy_unit_conversion: float = Field(
        default=EV_OVER_MU,
        gt=0.0,
        description="Code energy units per reported energy unit"
    )

    # Misc
    precision: str = Field(default="float32", description="Particle storage precision")
    verbose: bool = Field(default=True, description="Enable verbose logging")

    model_config = ConfigDict(
        validate_assignment=True,
        extra="forbid",  # Raise error on unknown fields
    )

    @field_validator('boundary')
    @classmethod
    def validate_boundary(cls, v: str) -> str:
        """Validate boundary policy."""
        valid = ["clamp", "wrap"]
        if v not in valid:
            raise ValueError(f"boundary must be one of {valid}, got '{v}'")
        return v

    @field_validator('precision')
    @classmethod
    def validate_precision(cls, v: str) -> str:
        """Validate storage precision."""
        valid = ["float32", "float64"]
        if v not in valid:
            raise ValueError(f"precision must be one of {valid}, got '{v}'")
        return v

    @field_validator('species')
    @classmethod
    def validate_species(cls, v: List[SpeciesParams]) -> List[SpeciesParams]:
        if len(v) == 0:
            raise ValueError("species table must contain at least one species")
        return v

    @model_validator(mode='after')
    def validate_configuration_consistency(self):
        """
        Cross-field validation.

        1. The 3x3 stencil only covers the cutoff if bin_size >= neighbourhood_size
        2. box_size must equal bin_size * bin_count
        3. Periodic wrapping needs at least 3 bins per axis
        4. Soft checks: force cap reached before sigma, friction at 0 K
        """
        # Rule 1: stencil coverage
        if self.bin_size < self.neighbourhood_size:
            raise ValueError(
                f"bin_size ({self.bin_size}) must be >= neighbourhood_size "
                f"({self.neighbourhood_size}); the 3x3 stencil would miss neighbours"
            )

        # Rule 2: box tiled exactly by the grid
        derived = self.bin_size * self.bin_count
        if self.box_size is not None and abs(self.box_size - derived) > BOX_SIZE_RTOL * derived:
            raise ValueError(
                f"box_size ({self.box_size}) must equal bin_size * bin_count ({derived})"
            )
        object.__setattr__(self, 'box_size', derived)

        # Rule 3: wrapped stencil must not alias a bin
        if self.boundary == "wrap" and self.bin_count < 3:
            raise ValueError(
                f"boundary='wrap' needs bin_count >= 3, got {self.bin_count}"
            )

        # Rule 4: soft warnings
        if self.species:
            strongest = max(
                24.0 * np.sqrt(a.epsilon * b.epsilon) / (0.5 * (a.sigma + b.sigma))
                for a in self.species for b in self.species
            )
            if self.max_force < strongest:
                warnings.warn(
                    f"max_force ({self.max_force:.3g}) is below the LJ force at r = sigma "
                    f"({strongest:.3g}); repulsion will be capped before particles touch."
                )
        if self.friction > 0.0 and self.init_temperature == 0.0:
            warnings.warn(
                "friction > 0 with init_temperature = 0: the system can only lose energy."
            )

        return self


@dataclass
class SimulationState:
    """
    Current state of the simulation.
    """
    iteration: int = 0
    frame: int = 0
    time: float = 0.0
    paused: bool = False

    # Energies (reported units) from the most recent reduction
    kinetic_energy: float = 0.0
    potential_energy: float = 0.0
    total_energy: float = 0.0
    initial_energy: Optional[float] = None

    # Grid diagnostics over every rebuild of the last frame: highest raw bin
    # counter, and particles dropped summed over the rebuilds
    max_bin_occupancy: int = 0
    overflow_count: int = 0

    # Timing diagnostics, seconds per frame
    timing_drift: float = 0.0
    timing_clear: float = 0.0
    timing_insert: float = 0.0
    timing_kick: float = 0.0
    timing_reduce: float = 0.0
    timing_total: float = 0.0

    # Timing
    wall_time_start: float = field(default_factory=time_module.time)
    wall_time_elapsed: float = 0.0


class Simulation:
    """
    Main simulation orchestrator for LJ-SIM.

    Architecture:
        Simulation owns:
        - ParticleStore (double-buffered particle state)
        - SpatialGrid (rebuilt every iteration)
        - TimeIntegrator (leapfrog drift/kick)
        - ReductionEngine (per-frame energy totals)
        - StatsHistory (filled by the readback worker)

    Commands (pause, reset, perturb, export) are issued from the thread that
    calls ``advance()``, between frames.

    Usage:
        >>> config = SimulationConfig(n_particles=100, bin_count=8)
        >>> with Simulation(config) as sim:
        ...     sim.run(n_frames=100)
        ...     sim.export_stats("energy.csv")
    """

    def __init__(
        self,
        config: Optional[SimulationConfig] = None,
        integrator: Optional[TimeIntegrator] = None,
    ):
        """
        Initialize simulation.

        Parameters
        ----------
        config : Optional[SimulationConfig]
            Simulation configuration. If None, uses defaults.
        integrator : Optional[TimeIntegrator]
            Time integration scheme. Defaults to LeapfrogIntegrator.
        """
        self.config = config or SimulationConfig()
        self.state = SimulationState()

        self.store = initialize(self.config.n_particles, self.config)
        self._initial: ParticleBuffer = self.store.source.copy()

        self.grid = SpatialGrid.from_config(self.config)
        self.reducer = ReductionEngine(
            self.config.n_particles,
            unit_conversion=self.config.energy_unit_conversion,
        )
        self.integrator = integrator or LeapfrogIntegrator()
        self.history = StatsHistory(self.config)

        self._pending: Dict[str, Any] = {}
        self._overflow_reported = False

        # Readback worker; futures are tracked so they can be flushed
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="stats-readback")
        self._futures = set()
        self._futures_lock = threading.Lock()
        self._generation = 0
        self._closed = False

        self._log("Initialized LJ-SIM simulation")
        self._log(f"  Particles: {self.config.n_particles}")
        self._log(f"  Species: {[s.name for s in self.config.species]}")
        self._log(f"  Box: {self.config.box_size:.4f} nm ({self.config.bin_count}^2 bins, {self.config.boundary})")
        self._log(f"  dt: {self.config.dt} ps x {self.config.iterations_per_frame} per frame")

        self._prime()

    def _log(self, message: str):
        """Log message if verbose."""
        if self.config.verbose:
            print(f"[{self.state.iteration}] {message}")

    def _prime(self) -> None:
        """Compute initial accelerations and record the iteration-0 snapshot."""
        self.integrator.prime(self.store, self.grid, self.reducer, self.config)
        ke, pe = self.reducer.reduce()
        self._update_energies(ke, pe)
        self.state.initial_energy = self.state.total_energy
        self._update_grid_stats(self.grid.max_occupancy, self.grid.overflow_count)
        self.history.record(0, ke, pe)
        self._log(f"Initial energy: KE={ke:.6e} eV  PE={pe:.6e} eV")

    def _update_energies(self, ke: float, pe: float) -> None:
        self.state.kinetic_energy = float(ke)
        self.state.potential_energy = float(pe)
        self.state.total_energy = float(ke + pe)

    def _update_grid_stats(self, max_occupancy: int, overflow_count: int) -> None:
        self.state.max_bin_occupancy = max_occupancy
        self.state.overflow_count = overflow_count
        if self.state.overflow_count > 0 and not self._overflow_reported:
            self._log(
                f"WARNING: bin capacity {self.config.bin_capacity} exceeded "
                f"(max occupancy {self.state.max_bin_occupancy}); "
                f"{self.state.overflow_count} particles dropped from neighbour search"
            )
            self._overflow_reported = True
        elif self.state.overflow_count == 0:
            self._overflow_reported = False

    def _apply_pending(self) -> None:
        """Apply queued parameter changes at an iteration boundary."""
        if not self._pending:
            return
        changes = self._pending
        self._pending = {}
        self.config = SimulationConfig(**{**self.config.model_dump(), **changes})
        self.history.config = self.config
        self.reducer.unit_conversion = self.config.energy_unit_conversion
        self._log(f"Applied parameter changes: {changes}")

    # ------------------------------------------------------------------
    # Frame loop
    # ------------------------------------------------------------------

    def advance(self) -> bool:
        """
        Run one frame.

        Returns
        -------
        advanced : bool
            False if the simulation is paused and nothing ran.
        """
        if self.state.paused:
            return False

        t_frame = time_module.perf_counter()
        timings = dict.fromkeys(STAGES, 0.0)

        # Grid counters are cleared every iteration; collect them per rebuild
        max_occupancy = 0
        overflow_count = 0

        n_iterations = self.config.iterations_per_frame
        for _ in range(n_iterations):
            self._apply_pending()
            step_timings = self.integrator.step(self.store, self.grid, self.reducer, self.config)
            for stage, seconds in step_timings.items():
                timings[stage] = timings.get(stage, 0.0) + seconds
            max_occupancy = max(max_occupancy, self.grid.max_occupancy)
            overflow_count += self.grid.overflow_count
            self.state.iteration += 1
            self.state.time += self.config.dt

        t0 = time_module.perf_counter()
        ke, pe = self.reducer.reduce()
        timings['reduce'] = time_module.perf_counter() - t0

        self.state.frame += 1
        self._update_energies(ke, pe)
        self._update_grid_stats(max_occupancy, overflow_count)

        if self.state.frame % self.config.readback_interval == 0:
            self._schedule_readback(self.state.iteration, self.reducer.final)

        for stage in STAGES:
            setattr(self.state, f"timing_{stage}", timings[stage])
        self.state.timing_total = time_module.perf_counter() - t_frame
        self.state.wall_time_elapsed = time_module.time() - self.state.wall_time_start
        return True

    def _schedule_readback(self, iteration: int, final: np.ndarray) -> None:
        staged = np.array(final, dtype=np.float64, copy=True)
        future = self._executor.submit(self._complete_readback, self._generation, iteration, staged)
        with self._futures_lock:
            self._futures.add(future)
        future.add_done_callback(self._forget_future)

    def _complete_readback(self, generation: int, iteration: int, staged: np.ndarray) -> None:
        # Readbacks issued before a reset belong to the discarded history
        if generation != self._generation:
            return
        self.history.record(iteration, staged[0], staged[1])

    def _forget_future(self, future) -> None:
        with self._futures_lock:
            self._futures.discard(future)

    def flush_readbacks(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for in-flight readbacks.

        Returns
        -------
        done : bool
            True if all readbacks completed within ``timeout``.
        """
        with self._futures_lock:
            pending = list(self._futures)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        for future in pending:
            if future.done() and future.exception() is not None:
                raise future.exception()
        return len(not_done) == 0

    def run(self, n_frames: int) -> None:
        """
        Advance ``n_frames`` frames (paused frames are skipped, not retried).
        """
        log_every = max(1, n_frames // 10)

        self._log("=" * 60)
        self._log("Starting simulation")
        self._log("=" * 60)

        for frame in range(n_frames):
            self.advance()

            if (frame + 1) % log_every == 0:
                drift = 0.0
                if self.state.initial_energy:
                    drift = (self.state.total_energy - self.state.initial_energy) / abs(self.state.initial_energy)
                self._log(
                    f"Frame {self.state.frame:6d}  "
                    f"t={self.state.time:.4f} ps  "
                    f"KE={self.state.kinetic_energy:.6e}  "
                    f"PE={self.state.potential_energy:.6e}  "
                    f"ΔE/E={drift:.2e}  "
                    f"max_bin={self.state.max_bin_occupancy}"
                )

        self.flush_readbacks()

        self.state.wall_time_elapsed = time_module.time() - self.state.wall_time_start
        self._log("=" * 60)
        self._log("Simulation complete")
        self._log(f"  Iterations: {self.state.iteration}")
        self._log(f"  Final time: {self.state.time:.4f} ps")
        self._log(f"  Wall time: {self.state.wall_time_elapsed:.2f} s")
        self._log(f"  Snapshots: {len(self.history)}")
        self._log("=" * 60)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def pause(self) -> None:
        self.state.paused = True

    def resume(self) -> None:
        self.state.paused = False

    def toggle_pause(self) -> bool:
        """Flip the paused flag and return the new value."""
        self.state.paused = not self.state.paused
        return self.state.paused

    def reset(self) -> None:
        """
        Restore the initial particle state and clear the statistics.

        Parameter changes already made are kept. Readbacks still in flight
        are finished into the old history before it is cleared.
        """
        self.flush_readbacks()
        self._generation += 1
        self.history.clear()
        self.store.reset_from(self._initial)
        self.grid.clear()
        self.integrator.primed = False

        paused = self.state.paused
        self.state = SimulationState(paused=paused)
        self._overflow_reported = False
        self._apply_pending()
        self._log("Simulation reset")
        self._prime()

    def perturb(self, **changes) -> None:
        """
        Request parameter changes, applied at the next iteration boundary.

        Raises
        ------
        ValueError
            If a field cannot change during a run or the new values fail
            validation.
        """
        unknown = set(changes) - PERTURBABLE_FIELDS
        if unknown:
            raise ValueError(
                f"Cannot change {sorted(unknown)} during a run; "
                f"allowed: {sorted(PERTURBABLE_FIELDS)}"
            )
        merged = {**self._pending, **changes}
        # Validate now so bad values are rejected before they are queued
        SimulationConfig(**{**self.config.model_dump(), **merged})
        self._pending = merged

    def scale_timestep(self, factor: float) -> None:
        """Multiply dt by ``factor`` from the next iteration."""
        if factor <= 0.0:
            raise ValueError(f"factor must be positive, got {factor}")
        current = self._pending.get('dt', self.config.dt)
        self.perturb(dt=current * factor)

    def export_stats(self, path: Union[str, Path] = "stats.csv", format: Optional[str] = None) -> bool:
        """
        Write the statistics history.

        Waits for in-flight readbacks first. Failures are logged, not raised.

        Returns
        -------
        ok : bool
        """
        self.flush_readbacks()
        try:
            written = self.history.export(path, format=format)
        except StatsExportError as e:
            self._log(f"ERROR: stats export failed: {e}")
            return False
        self._log(f"Exported {len(self.history)} snapshots to {written}")
        return True

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def current_particles(self) -> ParticleBuffer:
        """Read-only view of the authoritative particle buffer."""
        return self.store.current()

    def latest_stats(self) -> Optional[EnergySnapshot]:
        """Most recent snapshot that has reached the history."""
        return self.history.latest()

    def get_history(self) -> List[EnergySnapshot]:
        """Iteration-sorted copy of the statistics history."""
        return self.history.sorted()

    @property
    def max_bin_occupancy(self) -> int:
        return self.state.max_bin_occupancy

    def close(self) -> None:
        """Finish outstanding readbacks and stop the worker."""
        if self._closed:
            return
        self.flush_readbacks()
        self._executor.shutdown(wait=True)
        self._closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self) -> str:
        return (
            f"Simulation(n_particles={self.config.n_particles}, "
            f"iteration={self.state.iteration}, paused={self.state.paused})"
        )
