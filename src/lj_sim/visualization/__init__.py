"""
Visualization module: matplotlib energy and particle plots.
"""

from lj_sim.visualization.energy_plot import plot_energy_history, plot_particles

__all__ = ['plot_energy_history', 'plot_particles']
