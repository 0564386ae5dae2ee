"""
Energy statistics history for LJ-SIM runs.

The simulation loop records the initial snapshot directly; later snapshots
arrive from the asynchronous readback worker. Both writers and the exporter
share one lock, so the history can be appended to and exported concurrently.
Snapshots may arrive out of iteration order; ``sorted()`` and ``export()``
always order by iteration.

Usage:
    >>> history = StatsHistory(config)
    >>> history.record(0, ke, pe)
    >>> history.export("energy.csv")
"""

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np

from lj_sim.core.units import (
    BOLTZMANN_CONSTANT_J,
    AMU_KG,
    temperature_from_kinetic_energy,
)
from lj_sim.io.diagnostics import write_stats, read_stats

# Names accepted by StatsHistory.series()
SERIES_QUANTITIES = ('KE', 'PE', 'TE')


@dataclass(frozen=True)
class EnergySnapshot:
    """Reduced energies (eV) at one iteration."""
    iteration: int
    kinetic_energy: float
    potential_energy: float

    @property
    def total_energy(self) -> float:
        return self.kinetic_energy + self.potential_energy

    def as_row(self):
        return (self.iteration, self.kinetic_energy, self.potential_energy)


class StatsHistory:
    """
    Append-only, lock-guarded sequence of energy snapshots.

    Parameters
    ----------
    config : SimulationConfig, optional
        Used for the particle count (temperature), the first species mass
        (RMS velocity) and as the header of exported files.

    Attributes
    ----------
    snapshots : List[EnergySnapshot]
        Snapshots in arrival order. Read through ``sorted()`` or ``snapshot()``.
    """

    def __init__(self, config: Any = None):
        self.config = config
        self.snapshots: List[EnergySnapshot] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self.snapshots)

    def record(self, iteration: int, kinetic_energy: float, potential_energy: float) -> EnergySnapshot:
        """Append one snapshot; safe to call from the readback worker."""
        snap = EnergySnapshot(int(iteration), float(kinetic_energy), float(potential_energy))
        with self._lock:
            self.snapshots.append(snap)
        return snap

    def clear(self) -> None:
        with self._lock:
            self.snapshots = []

    def snapshot(self) -> List[EnergySnapshot]:
        """Copy of the snapshots in arrival order."""
        with self._lock:
            return list(self.snapshots)

    def sorted(self) -> List[EnergySnapshot]:
        """Copy of the snapshots ordered by iteration."""
        return sorted(self.snapshot(), key=lambda s: s.iteration)

    def latest(self) -> Optional[EnergySnapshot]:
        """Snapshot with the highest iteration, or None if empty."""
        snaps = self.snapshot()
        if not snaps:
            return None
        return max(snaps, key=lambda s: s.iteration)

    def as_array(self) -> np.ndarray:
        """Iteration-sorted (M, 3) array of ``iteration, KE, PE``."""
        rows = [s.as_row() for s in self.sorted()]
        if not rows:
            return np.zeros((0, 3), dtype=np.float64)
        return np.array(rows, dtype=np.float64)

    def temperature(self, snapshot: Optional[EnergySnapshot] = None) -> float:
        """
        Equipartition temperature (K) of a snapshot (latest by default).

        In 2-D, KE / N = k_B T. The snapshot KE is converted back to code
        units with the configured ``energy_unit_conversion``.
        """
        snap = snapshot if snapshot is not None else self.latest()
        if snap is None or self.config is None:
            return 0.0
        return temperature_from_kinetic_energy(
            snap.kinetic_energy,
            self.config.n_particles,
            self.config.energy_unit_conversion,
        )

    def velocity_rms(self, snapshot: Optional[EnergySnapshot] = None) -> float:
        """RMS speed (m/s) implied by the temperature, for the first species mass."""
        if self.config is None:
            return 0.0
        T = self.temperature(snapshot)
        mass_kg = self.config.species[0].mass * AMU_KG
        return float(np.sqrt(2.0 * BOLTZMANN_CONSTANT_J * T / mass_kg))

    def series(self, quantity: str = 'TE', sample_rate: int = 1) -> Dict[str, np.ndarray]:
        """
        Time series for plotting.

        Parameters
        ----------
        quantity : str
            'KE', 'PE' or 'TE' (total).
        sample_rate : int
            Keep every ``sample_rate``-th snapshot of the sorted history.

        Returns
        -------
        series : Dict[str, np.ndarray]
            'iteration' and ``quantity`` arrays.
        """
        if quantity not in SERIES_QUANTITIES:
            raise ValueError(f"Quantity '{quantity}' not found. Available: {list(SERIES_QUANTITIES)}")
        if sample_rate < 1:
            raise ValueError(f"sample_rate must be >= 1, got {sample_rate}")

        rows = self.as_array()[::sample_rate]
        if quantity == 'KE':
            values = rows[:, 1]
        elif quantity == 'PE':
            values = rows[:, 2]
        else:
            values = rows[:, 1] + rows[:, 2]
        return {'iteration': rows[:, 0].astype(np.int64), quantity: values}

    def energy_drift(self) -> float:
        """
        Maximum |E - E_0| / |E_0| over the sorted history.

        Returns 0.0 for fewer than two snapshots or when E_0 is zero.
        """
        rows = self.as_array()
        if rows.shape[0] < 2:
            return 0.0
        total = rows[:, 1] + rows[:, 2]
        if total[0] == 0.0:
            return 0.0
        return float(np.max(np.abs(total - total[0])) / abs(total[0]))

    def _config_dict(self) -> Dict[str, Any]:
        if self.config is None:
            return {}
        return self.config.model_dump(mode='json')

    def export(self, path: Union[str, Path], format: Optional[str] = None) -> Path:
        """
        Write the iteration-sorted history.

        Holds the lock while copying, so concurrent readbacks are either in
        the file or wait for the copy to finish.

        Raises
        ------
        StatsExportError
            If the file cannot be written.
        """
        with self._lock:
            rows = [s.as_row() for s in sorted(self.snapshots, key=lambda s: s.iteration)]
        return write_stats(path, rows, self._config_dict(), format=format)

    @classmethod
    def load(cls, path: Union[str, Path], config: Any = None) -> "StatsHistory":
        """Rebuild a history from an exported file."""
        rows, _ = read_stats(path)
        history = cls(config)
        for iteration, ke, pe in rows:
            history.record(int(iteration), ke, pe)
        return history

    def __repr__(self) -> str:
        return f"StatsHistory(snapshots={len(self)})"
