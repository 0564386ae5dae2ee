#!/usr/bin/env python3
"""
Command-line entrypoint for headless LJ-SIM runs.

Workflow:
1. Load a configuration (YAML/JSON) or use the defaults
2. Place particles on a lattice with Maxwell-Boltzmann velocities
3. Advance the requested number of frames
4. Export the energy statistics history
5. Optionally plot the energy evolution

Usage:
    python scripts/run_simulation.py
    python scripts/run_simulation.py --config configs/argon_gas.yaml --frames 500
    python scripts/run_simulation.py --particles 4096 --output output/stats.csv
    python scripts/run_simulation.py --help
"""

import argparse
import sys
from pathlib import Path

# Add src to path if running from repository root
src_path = Path(__file__).parent.parent / "src"
if src_path.exists():
    sys.path.insert(0, str(src_path))

from lj_sim.core import Simulation, SimulationConfig
from lj_sim.config import load_config


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run a headless 2-D Lennard-Jones simulation",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument("--config", "-c", type=str, default=None,
                        help="YAML or JSON configuration file")
    parser.add_argument("--frames", "-f", type=int, default=100,
                        help="Number of frames to run")
    parser.add_argument("--particles", "-n", type=int, default=None,
                        help="Override the particle count")
    parser.add_argument("--output", "-o", type=str, default="output/stats.csv",
                        help="Statistics file (.csv, .json or .h5)")
    parser.add_argument("--plot", action="store_true",
                        help="Save an energy plot next to the statistics file")
    parser.add_argument("--quiet", "-q", action="store_true",
                        help="Suppress progress output")

    args = parser.parse_args()

    overrides = {}
    if args.particles is not None:
        overrides['n_particles'] = args.particles
    if args.quiet:
        overrides['verbose'] = False

    if args.config:
        config = load_config(args.config, **overrides)
    else:
        config = SimulationConfig(**overrides)

    if not args.quiet:
        print("=" * 70)
        print("LJ-SIM: 2-D Lennard-Jones molecular dynamics")
        print("=" * 70)
        print()

    with Simulation(config) as sim:
        sim.run(args.frames)
        ok = sim.export_stats(args.output)

        if ok and args.plot:
            from lj_sim.visualization import plot_energy_history
            plot_path = Path(args.output).with_suffix('.png')
            plot_energy_history(sim.history, save_path=plot_path)
            if not args.quiet:
                print(f"Energy plot: {plot_path}")

    if not args.quiet:
        print("\n" + "=" * 70)
        print("Simulation complete!" if ok else "Simulation complete, but the stats export failed.")
        print(f"Statistics: {args.output}")
        print("=" * 70)

    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
