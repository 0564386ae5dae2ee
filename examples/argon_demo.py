#!/usr/bin/env python3
"""
LJ-SIM demo: load a configuration, run, steer and export.

Demonstrates:
1. Loading configs from YAML files with overrides
2. Running frames and reading back statistics
3. Perturbing parameters mid-run
4. Exporting the statistics history and plotting it

Run from project root:
    python examples/argon_demo.py
"""

from pathlib import Path

from lj_sim import Simulation
from lj_sim.config import load_config
from lj_sim.visualization import plot_energy_history, plot_particles


def main():
    config_path = Path(__file__).parent.parent / "configs" / "argon_gas.yaml"
    config = load_config(config_path, n_particles=512, bin_count=16, verbose=False)

    output_dir = Path("output")
    output_dir.mkdir(exist_ok=True)

    with Simulation(config) as sim:
        print("=" * 70)
        print("Equilibration")
        print("=" * 70)
        sim.run(50)
        print(f"T = {sim.history.temperature():.2f} K   "
              f"v_rms = {sim.history.velocity_rms():.1f} m/s   "
              f"max bin = {sim.max_bin_occupancy}")

        print("=" * 70)
        print("Cooling with friction")
        print("=" * 70)
        sim.perturb(friction=2.0)
        sim.run(50)
        print(f"T = {sim.history.temperature():.2f} K")

        sim.export_stats(output_dir / "argon_stats.csv")
        plot_energy_history(sim.history, save_path=output_dir / "argon_energy.png")
        plot_particles(sim.current_particles(), config.box_size,
                       save_path=output_dir / "argon_particles.png")

    print(f"Outputs written to {output_dir}/")


if __name__ == "__main__":
    main()
