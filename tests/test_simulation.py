"""
Tests for the Simulation orchestrator: frame loop, readbacks and commands.
"""

import csv
import threading

import numpy as np
import pytest

from lj_sim.core.simulation import Simulation, SimulationConfig, SimulationState, SpeciesParams
from lj_sim.integration.leapfrog import LeapfrogIntegrator


def small_config(**kwargs):
    params = dict(
        n_particles=100,
        dt=1.0e-3,
        iterations_per_frame=10,
        neighbourhood_size=2.5,
        bin_size=2.5,
        bin_count=8,
        bin_capacity=100,
        species=[SpeciesParams(name="lj", size=1.0, mass=1.0, sigma=1.0, epsilon=1.0)],
        verbose=False,
    )
    params.update(kwargs)
    return SimulationConfig(**params)


@pytest.fixture
def sim():
    simulation = Simulation(small_config())
    yield simulation
    simulation.close()


class TestEndToEnd:

    def test_thousand_iterations(self, sim):
        """100 particles for 1000 iterations: finite, in-box, fully recorded."""
        sim.run(100)

        assert sim.state.iteration == 1000
        assert sim.state.frame == 100
        assert sim.state.time == pytest.approx(1.0)

        particles = sim.current_particles()
        assert np.all(np.isfinite(particles.positions))
        assert np.all(np.isfinite(particles.velocities))
        assert np.all(particles.positions >= 0.0)
        assert np.all(particles.positions <= sim.config.box_size)

        history = sim.get_history()
        assert len(history) == 101
        assert [s.iteration for s in history] == list(range(0, 1001, 10))
        assert all(np.isfinite(s.kinetic_energy) and np.isfinite(s.potential_energy)
                   for s in history)
        assert sim.latest_stats().iteration == 1000
        assert 1 <= sim.max_bin_occupancy < sim.config.bin_capacity
        assert sim.state.overflow_count == 0

    def test_wrap_boundary_run(self):
        with Simulation(small_config(boundary="wrap")) as sim:
            sim.run(20)
            positions = sim.current_particles().positions
            assert np.all((positions >= 0.0) & (positions <= sim.config.box_size))
            assert len(sim.get_history()) == 21

    def test_initial_snapshot_recorded(self, sim):
        history = sim.get_history()
        assert len(history) == 1
        assert history[0].iteration == 0
        assert sim.state.initial_energy == pytest.approx(history[0].total_energy)

    def test_state_timings(self, sim):
        sim.advance()
        assert isinstance(sim.state, SimulationState)
        for stage in ('drift', 'clear', 'insert', 'kick', 'reduce'):
            assert getattr(sim.state, f"timing_{stage}") >= 0.0
        assert sim.state.timing_total >= sim.state.timing_kick

    def test_current_particles_read_only(self, sim):
        with pytest.raises(ValueError):
            sim.current_particles().positions[0, 0] = 0.0


class TestReadback:

    def test_readback_interval(self):
        with Simulation(small_config(readback_interval=3)) as sim:
            for _ in range(9):
                sim.advance()
            assert sim.flush_readbacks(timeout=10.0)
            assert [s.iteration for s in sim.get_history()] == [0, 30, 60, 90]

    def test_readback_matches_state(self, sim):
        sim.advance()
        sim.flush_readbacks()
        latest = sim.latest_stats()
        assert latest.iteration == sim.state.iteration
        assert latest.kinetic_energy == pytest.approx(sim.state.kinetic_energy)
        assert latest.potential_energy == pytest.approx(sim.state.potential_energy)

    def test_unit_conversion_perturb(self, sim):
        sim.advance()
        sim.flush_readbacks()
        ke_ev = sim.latest_stats().kinetic_energy

        sim.perturb(energy_unit_conversion=1.0)
        sim.advance()
        sim.flush_readbacks()
        # Same physics, now reported in code units (~96x larger)
        assert sim.latest_stats().kinetic_energy > 10.0 * ke_ev


    def test_reset_waits_for_readback_in_flight(self, sim):
        release = threading.Event()
        record = sim.history.record

        def slow_record(iteration, kinetic_energy, potential_energy):
            if threading.current_thread().name.startswith("stats-readback"):
                release.wait(timeout=5.0)
            return record(iteration, kinetic_energy, potential_energy)

        sim.history.record = slow_record
        sim.advance()

        timer = threading.Timer(0.2, release.set)
        timer.start()
        sim.reset()
        timer.join()
        sim.flush_readbacks()

        assert [s.iteration for s in sim.get_history()] == [0]

    def test_temperature_independent_of_reporting_units(self):
        temperatures = []
        for conversion in (SimulationConfig().energy_unit_conversion, 1.0):
            config = small_config(init_temperature=50.0, energy_unit_conversion=conversion)
            with Simulation(config) as sim:
                sim.run(2)
                temperatures.append(sim.history.temperature())

        assert temperatures[0] > 0.0
        assert temperatures[0] == pytest.approx(temperatures[1], rel=1e-6)


class TestCommands:

    def test_pause_blocks_advance(self, sim):
        sim.pause()
        assert sim.advance() is False
        assert sim.state.iteration == 0

        sim.resume()
        assert sim.advance() is True
        assert sim.state.iteration == 10

    def test_toggle_pause(self, sim):
        assert sim.toggle_pause() is True
        assert sim.state.paused
        assert sim.toggle_pause() is False

    def test_reset_restores_initial_state(self, sim):
        initial = np.array(sim.current_particles().positions)
        sim.run(5)
        assert not np.allclose(sim.current_particles().positions, initial)

        sim.reset()
        assert sim.state.iteration == 0
        assert sim.state.frame == 0
        np.testing.assert_array_equal(sim.current_particles().positions, initial)
        assert [s.iteration for s in sim.get_history()] == [0]

        sim.advance()
        sim.flush_readbacks()
        assert [s.iteration for s in sim.get_history()] == [0, 10]

    def test_reset_keeps_pause(self, sim):
        sim.pause()
        sim.reset()
        assert sim.state.paused

    def test_perturb_applied_at_next_iteration(self, sim):
        sim.perturb(dt=2.0e-3, friction=0.5)
        assert sim.config.dt == 1.0e-3

        sim.advance()
        assert sim.config.dt == 2.0e-3
        assert sim.config.friction == 0.5
        assert sim.state.time == pytest.approx(10 * 2.0e-3)

    def test_perturb_rejects_structural_fields(self, sim):
        with pytest.raises(ValueError, match="Cannot change"):
            sim.perturb(n_particles=10)
        with pytest.raises(ValueError, match="Cannot change"):
            sim.perturb(bin_count=4)

    def test_perturb_validates_values(self, sim):
        with pytest.raises(ValueError):
            sim.perturb(dt=-1.0)
        with pytest.raises(ValueError):
            sim.perturb(neighbourhood_size=5.0)
        sim.advance()
        assert sim.config.dt == 1.0e-3

    def test_iterations_per_frame_perturb(self, sim):
        sim.perturb(iterations_per_frame=3)
        sim.advance()
        # The change lands inside the first frame; the next frame uses it
        assert sim.state.iteration == 10
        sim.advance()
        assert sim.state.iteration == 13

    def test_scale_timestep(self, sim):
        sim.scale_timestep(0.5)
        sim.scale_timestep(0.5)
        sim.advance()
        assert sim.config.dt == pytest.approx(2.5e-4)
        with pytest.raises(ValueError):
            sim.scale_timestep(0.0)

    def test_export_stats(self, sim, tmp_path):
        sim.run(3)
        path = tmp_path / "stats.csv"
        assert sim.export_stats(path) is True

        with open(path, newline='') as f:
            rows = list(csv.reader(f))
        assert rows[1] == ['iteration', 'KE', 'PE']
        assert [int(r[0]) for r in rows[2:]] == [0, 10, 20, 30]

    def test_export_failure_returns_false(self, sim, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        assert sim.export_stats(blocker / "stats.csv") is False
        assert sim.export_stats(tmp_path / "stats.xlsx") is False


class CrowdedFirstRebuild(LeapfrogIntegrator):
    """Leaves the grid overfull after the first iteration only."""

    def __init__(self):
        super().__init__()
        self.steps = 0

    def step(self, store, grid, reducer, config):
        timings = super().step(store, grid, reducer, config)
        self.steps += 1
        if self.steps == 1:
            grid.rebuild(np.full((config.n_particles, 2), 0.5 * grid.bin_size))
        return timings


class TestCapacityOverflow:

    def test_overflow_reported_not_fatal(self):
        config = small_config(n_particles=400, bin_capacity=2)
        with Simulation(config) as sim:
            sim.advance()
            assert sim.state.overflow_count > 0
            assert sim.max_bin_occupancy > 2
            assert np.all(np.isfinite(sim.current_particles().positions))

    def test_overflow_early_in_frame_is_reported(self):
        config = small_config(bin_capacity=20)
        with Simulation(config, integrator=CrowdedFirstRebuild()) as sim:
            sim.advance()
            # the last rebuild of the frame is back under capacity
            assert sim.grid.overflow_count == 0
            assert sim.state.max_bin_occupancy == 100
            assert sim.state.overflow_count >= 80

            sim.advance()
            assert sim.state.max_bin_occupancy < 20
            assert sim.state.overflow_count == 0

    def test_verbose_logging(self, capsys):
        with Simulation(small_config(verbose=True)) as sim:
            sim.run(2)
        out = capsys.readouterr().out
        assert "[0] Initialized LJ-SIM simulation" in out
        assert "Simulation complete" in out
