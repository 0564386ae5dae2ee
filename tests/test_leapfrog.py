"""
Tests for the drift/kick leapfrog integrator and the LJ force kernel.
"""

import numpy as np
import pytest

from lj_sim.core.reduction import ReductionEngine
from lj_sim.core.simulation import SimulationConfig, SpeciesParams
from lj_sim.integration.leapfrog import LeapfrogIntegrator
from lj_sim.md.forces import drift_kernel, lennard_jones_pair
from lj_sim.md.grid import SpatialGrid
from lj_sim.md.particles import ParticleBuffer, ParticleStore

CUTOFF = 2.5


def lj_potential(r, sigma=1.0, epsilon=1.0, cutoff=CUTOFF):
    """Cut-and-shifted LJ potential."""
    raw = lambda x: 4.0 * epsilon * ((sigma / x) ** 12 - (sigma / x) ** 6)
    return raw(r) - raw(cutoff)


def make_setup(positions, velocities=None, accelerations=None, species=None,
               boundary="clamp", **config_kwargs):
    positions = np.asarray(positions, dtype=np.float64)
    n = positions.shape[0]
    params = dict(
        n_particles=n,
        bin_size=2.5,
        bin_count=4,
        neighbourhood_size=CUTOFF,
        boundary=boundary,
        species=[
            SpeciesParams(name="light", size=1.0, mass=1.0, sigma=1.0, epsilon=1.0),
            SpeciesParams(name="heavy", size=1.0, mass=3.0, sigma=1.0, epsilon=1.0),
        ],
        precision="float64",
        verbose=False,
    )
    params.update(config_kwargs)
    config = SimulationConfig(**params)

    buf = ParticleBuffer(
        n,
        positions=positions,
        velocities=velocities,
        last_accelerations=accelerations,
        species=species if species is not None else np.zeros(n),
        dtype=np.float64,
    )
    store = ParticleStore(buf)
    grid = SpatialGrid.from_config(config)
    reducer = ReductionEngine(n, unit_conversion=1.0)
    return config, store, grid, reducer


class TestPairForce:

    def test_zero_force_at_potential_minimum(self):
        r_min = 2.0 ** (1.0 / 6.0)
        f_over_r, u = lennard_jones_pair(r_min ** 2, 1.0, 1.0, CUTOFF, 1e6)
        assert f_over_r == pytest.approx(0.0, abs=1e-9)
        assert u == pytest.approx(lj_potential(r_min))

    def test_repulsive_inside_attractive_outside(self):
        f_in, _ = lennard_jones_pair(1.0, 1.0, 1.0, CUTOFF, 1e6)
        f_out, _ = lennard_jones_pair(1.5 ** 2, 1.0, 1.0, CUTOFF, 1e6)
        assert f_in == pytest.approx(24.0)
        assert f_out < 0.0

    def test_potential_vanishes_at_cutoff(self):
        _, u = lennard_jones_pair(CUTOFF ** 2, 1.0, 1.0, CUTOFF, 1e6)
        assert u == pytest.approx(0.0, abs=1e-12)

    def test_force_capped(self):
        f_over_r, _ = lennard_jones_pair(0.5 ** 2, 1.0, 1.0, CUTOFF, 10.0)
        assert f_over_r * 0.5 == pytest.approx(10.0)

    def test_tiny_separation_is_finite(self):
        f_over_r, u = lennard_jones_pair(1e-30, 1.0, 1.0, CUTOFF, 100.0)
        assert np.isfinite(f_over_r)
        assert np.isfinite(u)


class TestDrift:

    def test_free_particle_update(self):
        config, store, grid, reducer = make_setup(
            [[5.0, 5.0]],
            velocities=[[1.0, -2.0]],
            accelerations=[[0.5, 0.5]],
            dt=0.01,
        )
        integrator = LeapfrogIntegrator()
        integrator.primed = True
        integrator.step(store, grid, reducer, config)

        cur = store.current()
        dt = 0.01
        np.testing.assert_allclose(cur.positions[0], [5.0 + dt + 0.25 * dt ** 2,
                                                      5.0 - 2.0 * dt + 0.25 * dt ** 2])
        # a_new = 0 for an isolated particle
        np.testing.assert_allclose(cur.velocities[0], [1.0 + 0.25 * dt, -2.0 + 0.25 * dt])
        np.testing.assert_allclose(cur.last_accelerations[0], [0.0, 0.0])

    def test_clamp_reflects(self):
        config, store, grid, reducer = make_setup(
            [[0.05, 5.0]], velocities=[[-1.0, 0.0]], dt=0.1
        )
        integrator = LeapfrogIntegrator()
        integrator.primed = True
        integrator.step(store, grid, reducer, config)

        cur = store.current()
        np.testing.assert_allclose(cur.positions[0], [0.05, 5.0])
        np.testing.assert_allclose(cur.velocities[0], [1.0, 0.0])

    def test_clamp_reflects_far_wall(self):
        config, store, grid, reducer = make_setup(
            [[5.0, 9.95]], velocities=[[0.0, 1.0]], dt=0.1
        )
        integrator = LeapfrogIntegrator()
        integrator.primed = True
        integrator.step(store, grid, reducer, config)

        cur = store.current()
        np.testing.assert_allclose(cur.positions[0], [5.0, 9.95])
        np.testing.assert_allclose(cur.velocities[0], [0.0, -1.0])

    def test_clamp_reflection_mirrors_acceleration(self):
        positions = np.array([[0.05, 5.0]])
        velocities = np.array([[-1.0, 0.0]])
        accelerations = np.array([[-2.0, 0.5]])

        drift_kernel(positions, velocities, accelerations, 0.1, 10.0, False)

        np.testing.assert_allclose(positions[0], [0.06, 5.0025])
        np.testing.assert_allclose(velocities[0], [1.0, 0.0])
        # only the reflected axis flips
        np.testing.assert_allclose(accelerations[0], [2.0, 0.5])

    def test_wrap_folds_position(self):
        config, store, grid, reducer = make_setup(
            [[9.95, 5.0]], velocities=[[1.0, 0.0]], dt=0.1, boundary="wrap"
        )
        integrator = LeapfrogIntegrator()
        integrator.primed = True
        integrator.step(store, grid, reducer, config)

        cur = store.current()
        np.testing.assert_allclose(cur.positions[0], [0.05, 5.0], atol=1e-12)
        np.testing.assert_allclose(cur.velocities[0], [1.0, 0.0])


class TestKick:

    def test_newtons_third_law(self):
        config, store, grid, reducer = make_setup(
            [[4.0, 5.0], [5.0, 5.3]], species=np.array([0.0, 1.0])
        )
        LeapfrogIntegrator().prime(store, grid, reducer, config)

        acc = store.current().last_accelerations
        masses = np.array([1.0, 3.0])
        np.testing.assert_allclose(masses[0] * acc[0], -masses[1] * acc[1], rtol=1e-12)
        # r < 2^(1/6) sigma: repulsive, particle 0 pushed towards -x
        assert acc[0, 0] < 0.0

    def test_potential_energy_counts_each_pair_once(self):
        config, store, grid, reducer = make_setup([[4.0, 5.0], [5.3, 5.0]])
        LeapfrogIntegrator().prime(store, grid, reducer, config)

        pe = reducer.input[:2, 1]
        assert pe.sum() == pytest.approx(lj_potential(1.3), rel=1e-9)
        assert pe[0] == pytest.approx(pe[1])

    def test_kinetic_energy_recorded(self):
        config, store, grid, reducer = make_setup(
            [[2.0, 2.0], [8.0, 8.0]],
            velocities=[[1.0, 1.0], [0.0, 2.0]],
            species=np.array([0.0, 1.0]),
        )
        LeapfrogIntegrator().prime(store, grid, reducer, config)
        np.testing.assert_allclose(reducer.input[:2, 0], [0.5 * 1.0 * 2.0, 0.5 * 3.0 * 4.0])

    def test_force_cap_limits_acceleration(self):
        config, store, grid, reducer = make_setup(
            [[5.0, 5.0], [5.05, 5.0]], max_force=100.0
        )
        LeapfrogIntegrator().prime(store, grid, reducer, config)
        acc = store.current().last_accelerations
        np.testing.assert_allclose(np.abs(acc[:, 0]), [100.0, 100.0])

    def test_coincident_particles_exert_no_force(self):
        config, store, grid, reducer = make_setup([[5.0, 5.0], [5.0, 5.0]])
        LeapfrogIntegrator().prime(store, grid, reducer, config)
        assert np.all(store.current().last_accelerations == 0.0)
        assert np.all(np.isfinite(reducer.input))

    def test_beyond_cutoff_no_interaction(self):
        config, store, grid, reducer = make_setup([[1.0, 1.0], [3.6, 1.0]])
        LeapfrogIntegrator().prime(store, grid, reducer, config)
        assert np.all(store.current().last_accelerations == 0.0)
        assert np.all(reducer.input[:2, 1] == 0.0)

    def test_wrap_interacts_across_boundary(self):
        config, store, grid, reducer = make_setup([[0.3, 5.0], [9.5, 5.0]], boundary="wrap")
        LeapfrogIntegrator().prime(store, grid, reducer, config)
        acc = store.current().last_accelerations
        # separation 0.8 sigma through the boundary: strongly repulsive
        assert acc[0, 0] > 0.0
        assert acc[1, 0] < 0.0

    def test_friction_damps_velocity(self):
        config, store, grid, reducer = make_setup(
            [[5.0, 5.0]], velocities=[[2.0, 0.0]], friction=500.0, dt=1e-3
        )
        integrator = LeapfrogIntegrator()
        integrator.step(store, grid, reducer, config)
        np.testing.assert_allclose(store.current().velocities[0], [1.0, 0.0])

    def test_friction_never_reverses_velocity(self):
        config, store, grid, reducer = make_setup(
            [[5.0, 5.0]], velocities=[[2.0, 0.0]], friction=5000.0, dt=1e-3
        )
        LeapfrogIntegrator().step(store, grid, reducer, config)
        np.testing.assert_allclose(store.current().velocities[0], [0.0, 0.0])

    def test_dense_cluster_stays_finite(self):
        rng = np.random.default_rng(0)
        positions = 5.0 + rng.uniform(-0.25, 0.25, (50, 2))
        config, store, grid, reducer = make_setup(positions, max_force=1.0e3, dt=1e-3)
        integrator = LeapfrogIntegrator()
        for _ in range(20):
            integrator.step(store, grid, reducer, config)

        cur = store.current()
        assert np.all(np.isfinite(cur.positions))
        assert np.all(np.isfinite(cur.velocities))
        assert np.all(np.isfinite(reducer.input))
        assert np.all((cur.positions >= 0.0) & (cur.positions <= config.box_size))


class TestStep:

    def test_step_primes_and_swaps(self):
        config, store, grid, reducer = make_setup([[4.0, 5.0], [5.2, 5.0]])
        integrator = LeapfrogIntegrator()
        timings = integrator.step(store, grid, reducer, config)

        assert integrator.primed
        assert set(timings) == {'drift', 'clear', 'insert', 'kick'}
        assert all(t >= 0.0 for t in timings.values())
        # one swap for priming, one for the step
        assert store.swap_count == 2

    def test_grid_reflects_drifted_positions(self):
        config, store, grid, reducer = make_setup(
            [[2.45, 5.0]], velocities=[[1.0, 0.0]], dt=0.1
        )
        integrator = LeapfrogIntegrator()
        integrator.primed = True
        integrator.step(store, grid, reducer, config)
        assert grid.occupancy((1, 2)) == 1
        assert grid.occupancy((0, 2)) == 0
