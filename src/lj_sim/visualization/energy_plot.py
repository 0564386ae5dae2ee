"""
Matplotlib plots for LJ-SIM statistics and particle snapshots.

- plot_energy_history: KE, PE and total energy against iteration, with the
  relative drift of the total in a second panel.
- plot_particles: scatter of a particle buffer coloured by species.
"""

import numpy as np
import matplotlib.pyplot as plt
from matplotlib.figure import Figure
from matplotlib.axes import Axes
from typing import Optional, Tuple, Union
from pathlib import Path

from lj_sim.core.energy_diagnostics import StatsHistory


def plot_energy_history(
    history: StatsHistory,
    sample_rate: int = 1,
    title: str = "Energy Evolution",
    figsize: Tuple[float, float] = (10, 8),
    save_path: Optional[Union[str, Path]] = None
) -> Tuple[Figure, Tuple[Axes, Axes]]:
    """
    Plot energy evolution with conservation error.

    Parameters
    ----------
    history : StatsHistory
        Recorded statistics.
    sample_rate : int, optional
        Plot every ``sample_rate``-th snapshot.
    title : str, optional
        Plot title.
    figsize : tuple, optional
        Figure size.
    save_path : str or Path, optional
        Path to save figure.

    Returns
    -------
    fig : Figure
    axes : tuple of Axes
        (ax_energy, ax_error)
    """
    ke = history.series('KE', sample_rate)
    pe = history.series('PE', sample_rate)
    te = history.series('TE', sample_rate)
    iterations = te['iteration']

    fig, (ax1, ax2) = plt.subplots(2, 1, figsize=figsize, sharex=True)

    ax1.plot(iterations, ke['KE'], 'r-', label='Kinetic', linewidth=2)
    ax1.plot(iterations, pe['PE'], 'b-', label='Potential', linewidth=2)
    ax1.plot(iterations, te['TE'], 'k--', label='Total', linewidth=2.5)

    ax1.set_ylabel('Energy (eV)', fontsize=12)
    ax1.set_title(title, fontsize=14, fontweight='bold')
    ax1.legend(loc='best', fontsize=10)
    ax1.grid(True, alpha=0.3)

    total = te['TE']
    if total.size > 0 and total[0] != 0.0:
        error = (total - total[0]) / abs(total[0])
    else:
        error = np.zeros_like(total)
    ax2.plot(iterations, error, 'k-', linewidth=2)
    ax2.axhline(y=0, color='r', linestyle='--', alpha=0.5, linewidth=1.5)

    ax2.set_xlabel('Iteration', fontsize=12)
    ax2.set_ylabel('ΔE / E₀', fontsize=12)
    ax2.set_title('Energy Conservation Error', fontsize=12)
    ax2.grid(True, alpha=0.3)

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')

    return fig, (ax1, ax2)


def plot_particles(
    particles,
    box_size: float,
    title: str = "Particles",
    figsize: Tuple[float, float] = (8, 8),
    point_size: float = 4.0,
    save_path: Optional[Union[str, Path]] = None
) -> Tuple[Figure, Axes]:
    """
    Scatter plot of particle positions coloured by species.

    Parameters
    ----------
    particles : ParticleBuffer
        Typically ``Simulation.current_particles()``.
    box_size : float
        Domain edge (nm), used for the axis limits.
    """
    fig, ax = plt.subplots(figsize=figsize)

    colors = np.clip(np.asarray(particles.colors, dtype=np.float64), 0.0, 1.0)
    ax.scatter(particles.positions[:, 0], particles.positions[:, 1],
               c=colors, s=point_size, edgecolors='none')

    ax.set_xlim(0.0, box_size)
    ax.set_ylim(0.0, box_size)
    ax.set_aspect('equal')
    ax.set_xlabel('x (nm)', fontsize=12)
    ax.set_ylabel('y (nm)', fontsize=12)
    ax.set_title(title, fontsize=14, fontweight='bold')

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')

    return fig, ax
